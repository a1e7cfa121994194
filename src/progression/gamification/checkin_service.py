"""Geofenced check-ins.

A check-in is verified when the user stands within ``checkin_radius_meters``
of the venue. Unverified check-ins are still stored for history but never
earn XP or mission progress. Repeated check-ins at the same venue inside
one dedupe window collapse to a single row.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progression.config import Settings
from progression.db.models import CheckIn, Establishment
from progression.db.upsert import insert_for
from progression.errors import InternalError, NotFoundError, ValidationError
from progression.gamification.mission_service import MissionService
from progression.gamification.periods import utcnow
from progression.gamification.types import EntityType, TrackingOutcome, XPSource
from progression.gamification.xp_service import XPService

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000


class Coordinates(NamedTuple):
    latitude: float
    longitude: float


def haversine_distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points, in meters."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def verify(user: Coordinates, venue: Coordinates, radius_meters: float = 100.0) -> bool:
    return haversine_distance(user, venue) <= radius_meters


def validate_coordinates(coords: Coordinates) -> None:
    lat, lon = coords
    if not all(isinstance(v, int | float) and math.isfinite(v) for v in (lat, lon)):
        raise ValidationError("Coordinates must be finite numbers")
    if not -90 <= lat <= 90:
        raise ValidationError(f"Latitude out of range: {lat}")
    if not -180 <= lon <= 180:
        raise ValidationError(f"Longitude out of range: {lon}")


@dataclass
class CheckInResult:
    check_in_id: int | None
    verified: bool
    distance_meters: float | None
    duplicate: bool = False
    xp_awarded: int = 0
    xp_failed: bool = False
    tracking: TrackingOutcome = field(default_factory=TrackingOutcome)


class CheckInService:
    def __init__(self, db: AsyncSession, missions: MissionService, xp: XPService, settings: Settings) -> None:
        self.db = db
        self.missions = missions
        self.xp = xp
        self.settings = settings

    async def check_in(
        self,
        user_id: str,
        establishment_id: str,
        coords: Coordinates,
        now: datetime | None = None,
    ) -> CheckInResult:
        """Record a check-in and feed rewards and missions.

        Raises ``ValidationError`` for bad input, ``NotFoundError`` for an
        unknown venue and ``InternalError`` if the row cannot be stored.
        A duplicate inside the dedupe window returns ``duplicate=True``.
        A failed XP award sets ``xp_failed`` and missions are still tracked.
        """
        now = now or utcnow()
        if not user_id:
            raise ValidationError("user_id is required")
        coords = Coordinates(*coords)
        validate_coordinates(coords)

        venue = await self.db.get(Establishment, establishment_id)
        if venue is None:
            raise NotFoundError(f"Establishment {establishment_id} not found")

        distance = None
        if venue.latitude is not None and venue.longitude is not None:
            distance = haversine_distance(coords, Coordinates(venue.latitude, venue.longitude))
        verified = self.settings.mission_dev_mode or (
            distance is not None and distance <= self.settings.checkin_radius_meters
        )

        bucket = int(now.timestamp() // self.settings.checkin_dedupe_window_seconds)
        stmt = (
            insert_for(self.db, CheckIn)
            .values(
                user_id=user_id,
                establishment_id=venue.id,
                zone=venue.zone,
                latitude=coords.latitude,
                longitude=coords.longitude,
                distance_meters=distance,
                verified=verified,
                dedupe_bucket=bucket,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "establishment_id", "dedupe_bucket"])
            .returning(CheckIn.id)
        )
        try:
            check_in_id = (await self.db.execute(stmt)).scalar_one_or_none()
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Check-in insert failed for user %s at %s", user_id, establishment_id, exc_info=True)
            raise InternalError("Check-in could not be recorded") from exc

        if check_in_id is None:
            logger.info("Duplicate check-in ignored: user %s at %s", user_id, establishment_id)
            return CheckInResult(None, verified, distance, duplicate=True)

        result = CheckInResult(check_in_id, verified, distance)
        if verified:
            try:
                grant = await self.xp.award_with_retry(
                    user_id,
                    self.settings.checkin_xp_reward,
                    XPSource.CHECK_IN,
                    entity_type=EntityType.ESTABLISHMENT,
                    entity_id=venue.id,
                    description=f"Checked in at {venue.name}",
                    idempotency_key=f"check_in:{check_in_id}",
                )
                result.xp_awarded = grant.amount if grant else 0
            except InternalError:
                # Stored check-ins are deduped, so a replay would never reach the missions below.
                logger.error("Check-in XP lost for user %s (check-in %s)", user_id, check_in_id, exc_info=True)
                result.xp_failed = True

        result.tracking = await self.missions.on_check_in(user_id, venue.id, venue.zone, verified, now)
        return result

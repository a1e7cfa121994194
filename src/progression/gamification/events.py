"""Trigger events: Redis stream names and payload routing.

Producers publish ``XADD progression:<event> * data '<json>'``. The payload
carries the identities the matching ``on_*`` operation needs, plus an
optional ISO-8601 ``occurred_at``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from progression.errors import ProgressionError, ValidationError
from progression.gamification.checkin_service import Coordinates
from progression.gamification.engine import ProgressionEngine
from progression.gamification.types import TrackingOutcome

logger = logging.getLogger(__name__)

STREAM_PREFIX = "progression:"

CHECK_IN = f"{STREAM_PREFIX}check_in"
REVIEW_CREATED = f"{STREAM_PREFIX}review_created"
VOTE_CAST = f"{STREAM_PREFIX}vote_cast"
FOLLOW = f"{STREAM_PREFIX}follow"
HELPFUL_VOTE_RECEIVED = f"{STREAM_PREFIX}helpful_vote_received"
PHOTO_UPLOADED = f"{STREAM_PREFIX}photo_uploaded"

STREAMS = [CHECK_IN, REVIEW_CREATED, VOTE_CAST, FOLLOW, HELPFUL_VOTE_RECEIVED, PHOTO_UPLOADED]


def _field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"Event payload missing {key!r}")
    return str(value)


def _occurred_at(data: dict[str, Any]) -> datetime | None:
    raw = data.get("occurred_at")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Bad occurred_at: {raw!r}") from exc


async def dispatch_event(engine: ProgressionEngine, stream: str, data: dict[str, Any]) -> TrackingOutcome:
    """Route one stream message to its ``on_*`` operation."""
    try:
        now = _occurred_at(data)

        if stream == CHECK_IN:
            try:
                coords = Coordinates(float(data["latitude"]), float(data["longitude"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("Check-in payload needs numeric latitude/longitude") from exc
            result = await engine.checkins.check_in(
                _field(data, "user_id"), _field(data, "establishment_id"), coords, now
            )
            return result.tracking

        missions = engine.missions
        if stream == REVIEW_CREATED:
            return await missions.on_review_created(_field(data, "user_id"), _field(data, "review_id"), now)
        if stream == VOTE_CAST:
            return await missions.on_vote_cast(
                _field(data, "user_id"), _field(data, "review_id"), _field(data, "vote_type"), now
            )
        if stream == FOLLOW:
            return await missions.on_follow_action(_field(data, "follower_id"), _field(data, "following_id"), now)
        if stream == HELPFUL_VOTE_RECEIVED:
            return await missions.on_helpful_vote_received(
                _field(data, "user_id"), _field(data, "review_id"), _field(data, "voter_id"), now
            )
        if stream == PHOTO_UPLOADED:
            return await missions.on_photo_uploaded(_field(data, "user_id"), _field(data, "photo_id"), now)

        raise ValidationError(f"Unknown event stream: {stream}")
    except ProgressionError as exc:
        logger.warning("Rejected %s event: %s", stream, exc.message)
        return TrackingOutcome(error=exc.kind)

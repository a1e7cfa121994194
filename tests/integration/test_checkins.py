"""Geofenced check-ins: verification, XP, dedupe window."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from progression.db.models import CheckIn, XPTransaction
from progression.errors import NotFoundError, ValidationError
from progression.gamification.checkin_service import Coordinates
from progression.gamification.engine import ProgressionEngine

USER = "user-1"


class TestCheckIn:
    @pytest.mark.asyncio
    async def test_verified_check_in_awards_xp(self, engine, factory, db_session, now) -> None:
        venue = await factory.establishment(zone="LK Metro")

        result = await engine.checkins.check_in(USER, venue.id, Coordinates(12.9352, 100.8831), now)

        assert result.verified
        assert result.distance_meters < 100
        assert result.xp_awarded == 15
        row = await db_session.get(CheckIn, result.check_in_id)
        assert row.zone == "LK Metro"
        key = (
            await db_session.execute(select(XPTransaction.idempotency_key).where(XPTransaction.user_id == USER))
        ).scalar_one()
        assert key == f"check_in:{result.check_in_id}"

    @pytest.mark.asyncio
    async def test_far_away_check_in_is_stored_unverified(self, engine, factory, db_session, now) -> None:
        venue = await factory.establishment()

        result = await engine.checkins.check_in(USER, venue.id, Coordinates(12.95, 100.90), now)

        assert not result.verified
        assert result.xp_awarded == 0
        assert result.check_in_id is not None
        assert await engine.xp.get_points(USER) is None

    @pytest.mark.asyncio
    async def test_dev_mode_skips_geofence(self, engine, factory, settings, now) -> None:
        settings.mission_dev_mode = True
        venue = await factory.establishment()

        result = await engine.checkins.check_in(USER, venue.id, Coordinates(13.7563, 100.5018), now)

        assert result.verified
        assert result.xp_awarded == 15

    @pytest.mark.asyncio
    async def test_venue_without_coordinates_cannot_verify(self, engine, factory, now) -> None:
        venue = await factory.establishment(latitude=None, longitude=None)
        result = await engine.checkins.check_in(USER, venue.id, Coordinates(12.935, 100.883), now)
        assert not result.verified
        assert result.distance_meters is None

    @pytest.mark.asyncio
    async def test_repeat_inside_window_is_duplicate(self, engine, factory, db_session, now) -> None:
        venue = await factory.establishment()
        coords = Coordinates(venue.latitude, venue.longitude)

        first = await engine.checkins.check_in(USER, venue.id, coords, now)
        repeat = await engine.checkins.check_in(USER, venue.id, coords, now + timedelta(minutes=10))
        later = await engine.checkins.check_in(USER, venue.id, coords, now + timedelta(hours=1))

        assert not first.duplicate
        assert repeat.duplicate
        assert repeat.xp_awarded == 0
        assert not later.duplicate
        assert (await db_session.execute(select(func.count(CheckIn.id)))).scalar_one() == 2
        assert await engine.ledger.total_for_user(USER) == 30

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_store_one_row(
        self, factory, session_factory, settings, db_session, now
    ) -> None:
        venue = await factory.establishment()
        coords = Coordinates(venue.latitude, venue.longitude)

        async def attempt():  # noqa: ANN202
            async with session_factory() as session:
                return await ProgressionEngine(session, settings=settings).checkins.check_in(
                    USER, venue.id, coords, now
                )

        results = await asyncio.gather(attempt(), attempt())

        assert sorted(r.duplicate for r in results) == [False, True]
        assert (await db_session.execute(select(func.count(CheckIn.id)))).scalar_one() == 1
        assert await ProgressionEngine(db_session, settings=settings).ledger.total_for_user(USER) == 15

    @pytest.mark.asyncio
    async def test_failed_xp_award_still_tracks_missions(self, engine, factory, db_session, now) -> None:
        mission = await factory.mission(type="daily", requirement_type="check_in", target=2)
        venue = await factory.establishment()
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with patch.object(engine.xp.ledger, "append", side_effect=error):
            result = await engine.checkins.check_in(USER, venue.id, Coordinates(venue.latitude, venue.longitude), now)

        assert result.check_in_id is not None
        assert result.xp_failed
        assert result.xp_awarded == 0
        assert result.tracking.ok
        progress = await engine.missions.repo.get(USER, mission.id, "2026-10-14")
        assert progress.progress_counter == 1
        assert (await engine.xp.get_points(USER)).current_streak_days == 1
        assert await engine.ledger.total_for_user(USER) == 0

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_count_once_toward_missions(
        self, factory, session_factory, settings, db_session, now
    ) -> None:
        mission = await factory.mission(type="daily", requirement_type="check_in", target=5)
        venue = await factory.establishment()
        coords = Coordinates(venue.latitude, venue.longitude)

        async def attempt():  # noqa: ANN202
            async with session_factory() as session:
                return await ProgressionEngine(session, settings=settings).checkins.check_in(
                    USER, venue.id, coords, now
                )

        await asyncio.gather(attempt(), attempt())

        progress = await ProgressionEngine(db_session, settings=settings).missions.repo.get(
            USER, mission.id, "2026-10-14"
        )
        assert progress.progress_counter == 1

    @pytest.mark.asyncio
    async def test_unknown_venue(self, engine, now) -> None:
        with pytest.raises(NotFoundError):
            await engine.checkins.check_in(USER, "nowhere", Coordinates(12.9, 100.8), now)

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, engine, factory, db_session, now) -> None:
        venue = await factory.establishment()
        with pytest.raises(ValidationError):
            await engine.checkins.check_in(USER, venue.id, Coordinates(95.0, 100.8), now)
        assert (await db_session.execute(select(func.count(CheckIn.id)))).scalar_one() == 0

    @pytest.mark.asyncio
    async def test_missing_user(self, engine, factory, now) -> None:
        venue = await factory.establishment()
        with pytest.raises(ValidationError):
            await engine.checkins.check_in("", venue.id, Coordinates(12.9, 100.8), now)

"""Daily activity streaks on reference-timezone calendar days."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

USER = "user-1"


class TestRecordActivity:
    @pytest.mark.asyncio
    async def test_first_activity_starts_at_one(self, engine) -> None:
        update = await engine.streaks.record_activity(USER, date(2026, 10, 14))
        assert (update.current_streak_days, update.longest_streak_days) == (1, 1)
        assert update.changed

    @pytest.mark.asyncio
    async def test_same_day_is_unchanged(self, engine) -> None:
        await engine.streaks.record_activity(USER, date(2026, 10, 14))
        update = await engine.streaks.record_activity(USER, date(2026, 10, 14))
        assert update.current_streak_days == 1
        assert not update.changed

    @pytest.mark.asyncio
    async def test_consecutive_days_extend(self, engine) -> None:
        for offset in range(3):
            update = await engine.streaks.record_activity(USER, date(2026, 10, 14) + timedelta(days=offset))
        assert (update.current_streak_days, update.longest_streak_days) == (3, 3)
        assert update.last_activity_date == date(2026, 10, 16)

    @pytest.mark.asyncio
    async def test_gap_resets_but_keeps_longest(self, engine) -> None:
        for offset in range(4):
            await engine.streaks.record_activity(USER, date(2026, 10, 1) + timedelta(days=offset))
        update = await engine.streaks.record_activity(USER, date(2026, 10, 10))
        assert (update.current_streak_days, update.longest_streak_days) == (1, 4)

    @pytest.mark.asyncio
    async def test_older_date_is_ignored(self, engine) -> None:
        await engine.streaks.record_activity(USER, date(2026, 10, 14))
        update = await engine.streaks.record_activity(USER, date(2026, 10, 12))
        assert update.last_activity_date == date(2026, 10, 14)
        assert not update.changed


class TestLocalDayBoundary:
    @pytest.mark.asyncio
    async def test_events_use_bangkok_calendar_days(self, engine, factory) -> None:
        """16:30 UTC and 17:30 UTC on the same UTC day are different local days."""
        evening = datetime(2026, 10, 14, 16, 30, tzinfo=timezone.utc)
        after_midnight = datetime(2026, 10, 14, 17, 30, tzinfo=timezone.utc)

        await engine.missions.on_review_created(USER, (await factory.review(USER, created_at=evening)).id, evening)
        await engine.missions.on_review_created(
            USER, (await factory.review(USER, created_at=after_midnight)).id, after_midnight
        )

        points = await engine.xp.get_points(USER)
        assert points.current_streak_days == 2
        assert points.last_activity_date == date(2026, 10, 15)

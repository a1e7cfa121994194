"""Daily activity streaks, evaluated on reference-timezone calendar days."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import UserPoints
from progression.db.upsert import insert_for
from progression.gamification.periods import utcnow
from progression.gamification.types import StreakUpdate

logger = logging.getLogger(__name__)


class StreakService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record_activity(self, user_id: str, activity_date: date) -> StreakUpdate:
        """Record activity on ``activity_date`` (a local calendar day).

        Same day: unchanged. The day after the last activity: +1. Any
        larger gap, or first activity: back to 1. Dates older than the
        last activity are ignored.
        """
        await self.db.execute(
            insert_for(self.db, UserPoints)
            .values(user_id=user_id, updated_at=utcnow())
            .on_conflict_do_nothing(index_elements=["user_id"])
        )

        yesterday = activity_date - timedelta(days=1)
        continued = case(
            (UserPoints.last_activity_date == yesterday, UserPoints.current_streak_days + 1),
            else_=1,
        )
        result = await self.db.execute(
            update(UserPoints)
            .where(
                UserPoints.user_id == user_id,
                or_(UserPoints.last_activity_date.is_(None), UserPoints.last_activity_date < activity_date),
            )
            .values(
                current_streak_days=continued,
                longest_streak_days=case(
                    (continued > UserPoints.longest_streak_days, continued),
                    else_=UserPoints.longest_streak_days,
                ),
                last_activity_date=activity_date,
                updated_at=utcnow(),
            )
            .returning(
                UserPoints.current_streak_days,
                UserPoints.longest_streak_days,
                UserPoints.last_activity_date,
            )
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is not None:
            return StreakUpdate(row.current_streak_days, row.longest_streak_days, row.last_activity_date, True)

        current = await self.db.execute(
            select(
                UserPoints.current_streak_days,
                UserPoints.longest_streak_days,
                UserPoints.last_activity_date,
            ).where(UserPoints.user_id == user_id)
        )
        row = current.one()
        return StreakUpdate(row.current_streak_days, row.longest_streak_days, row.last_activity_date, False)

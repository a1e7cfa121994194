"""Read-only leaderboards.

Points boards break ties by the earliest last activity (nulls last) and
then user_id; counter boards and the weekly ledger board break ties by
user_id. Ordering is therefore
total and repeatable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import CheckIn, PhotoUpload, Review, ReviewVote, UserPoints, XPTransaction
from progression.errors import ValidationError
from progression.gamification.periods import start_of_week, utcnow
from progression.gamification.types import LeaderboardCategory


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    score: int


class LeaderboardService:
    def __init__(self, db: AsyncSession, max_limit: int = 100) -> None:
        self.db = db
        self.max_limit = max_limit

    def _check_limit(self, n: int) -> None:
        if isinstance(n, bool) or not isinstance(n, int) or not 1 <= n <= self.max_limit:
            raise ValidationError(f"Leaderboard size must be between 1 and {self.max_limit}, got {n!r}")

    async def global_top(self, n: int) -> list[LeaderboardEntry]:
        return await self._points_board(UserPoints.total_xp, n)

    async def monthly_top(self, n: int) -> list[LeaderboardEntry]:
        return await self._points_board(UserPoints.monthly_xp, n)

    async def weekly_top(self, n: int, now: datetime | None = None) -> list[LeaderboardEntry]:
        """Users ranked by XP earned since this local Monday, summed from the ledger."""
        self._check_limit(n)
        score = func.sum(XPTransaction.amount)
        stmt = (
            select(XPTransaction.user_id, score.label("score"))
            .where(XPTransaction.created_at >= start_of_week(now or utcnow()))
            .group_by(XPTransaction.user_id)
            .order_by(score.desc(), XPTransaction.user_id)
            .limit(n)
        )
        return await self._entries(stmt)

    async def zone_top(self, zone: str, n: int) -> list[LeaderboardEntry]:
        """Users ranked by verified check-ins in one zone."""
        self._check_limit(n)
        score = func.count(CheckIn.id)
        stmt = (
            select(CheckIn.user_id, score.label("score"))
            .where(CheckIn.zone == zone, CheckIn.verified.is_(True))
            .group_by(CheckIn.user_id)
            .order_by(score.desc(), CheckIn.user_id)
            .limit(n)
        )
        return await self._entries(stmt)

    async def category_top(self, category: str, n: int) -> list[LeaderboardEntry]:
        self._check_limit(n)
        if category not in LeaderboardCategory._value2member_map_:
            raise ValidationError(f"Unknown leaderboard category: {category!r}")

        if category == LeaderboardCategory.REVIEWERS:
            user_col, score = Review.user_id, func.count(Review.id)
            stmt = select(user_col, score.label("score"))
        elif category == LeaderboardCategory.PHOTOGRAPHERS:
            user_col, score = PhotoUpload.user_id, func.count(PhotoUpload.id)
            stmt = select(user_col, score.label("score"))
        elif category == LeaderboardCategory.CHECKINS:
            user_col, score = CheckIn.user_id, func.count(CheckIn.id)
            stmt = select(user_col, score.label("score")).where(CheckIn.verified.is_(True))
        else:
            user_col, score = Review.user_id, func.count(ReviewVote.id)
            stmt = (
                select(user_col, score.label("score"))
                .join(ReviewVote, ReviewVote.review_id == Review.id)
                .where(ReviewVote.vote_type == "helpful")
            )

        stmt = stmt.group_by(user_col).order_by(score.desc(), user_col).limit(n)
        return await self._entries(stmt)

    async def _points_board(self, metric, n: int) -> list[LeaderboardEntry]:  # noqa: ANN001
        self._check_limit(n)
        stmt = (
            select(UserPoints.user_id, metric.label("score"))
            .where(metric > 0)
            .order_by(
                metric.desc(),
                UserPoints.last_activity_date.asc().nulls_last(),
                UserPoints.user_id,
            )
            .limit(n)
        )
        return await self._entries(stmt)

    async def _entries(self, stmt) -> list[LeaderboardEntry]:  # noqa: ANN001
        rows = (await self.db.execute(stmt)).all()
        return [LeaderboardEntry(rank=i, user_id=row[0], score=int(row.score)) for i, row in enumerate(rows, start=1)]

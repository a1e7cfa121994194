"""Mission progress rows and the activity counters that feed them.

Every write here is a single statement against the
``(user_id, mission_id, period_key)`` row, so concurrent events never
read-modify-write a counter in Python.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, delete, distinct, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import (
    CheckIn,
    Mission,
    MissionProgress,
    PhotoUpload,
    Review,
    ReviewVote,
    UserFollow,
    UserPoints,
)
from progression.db.upsert import insert_for
from progression.gamification.periods import utcnow
from progression.gamification.types import EntityType

HELPFUL = "helpful"


@dataclass(frozen=True)
class Window:
    """Lower bound of a counted activity range.

    Periods and event windows include their start instant. A quest step
    unlocked at ``start`` excludes it, so the event that unlocked the step
    is not counted again.
    """

    start: datetime
    exclusive: bool = False

    def bound(self, column):  # noqa: ANN001, ANN201
        return column > self.start if self.exclusive else column >= self.start


@dataclass(frozen=True)
class ProgressSnapshot:
    """State of a progress row right after a write."""

    id: int
    progress_counter: int
    target: int
    completed_at: datetime | None

    @property
    def reached_target(self) -> bool:
        return self.completed_at is None and self.progress_counter >= self.target


class ProgressRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, user_id: str, mission_id: int, period_key: str) -> MissionProgress | None:
        result = await self.db.execute(
            select(MissionProgress).where(
                MissionProgress.user_id == user_id,
                MissionProgress.mission_id == mission_id,
                MissionProgress.period_key == period_key,
            )
        )
        return result.scalar_one_or_none()

    async def unlocked_mission_ids(self, user_id: str, mission_ids: list[int]) -> set[int]:
        """Subset of ``mission_ids`` the user already has a progress row for."""
        if not mission_ids:
            return set()
        result = await self.db.execute(
            select(MissionProgress.mission_id)
            .where(
                MissionProgress.user_id == user_id,
                MissionProgress.mission_id.in_(mission_ids),
            )
            .distinct()
        )
        return set(result.scalars())

    async def ensure(
        self,
        user_id: str,
        mission: Mission,
        period_key: str,
        period_start: datetime | None,
        now: datetime | None = None,
    ) -> bool:
        """Create an empty row if missing. Returns True if this call created it."""
        now = now or utcnow()
        stmt = (
            insert_for(self.db, MissionProgress)
            .values(
                user_id=user_id,
                mission_id=mission.id,
                period_key=period_key,
                period_start=period_start,
                progress_counter=0,
                target=mission.target,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "mission_id", "period_key"])
            .returning(MissionProgress.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def increment(
        self,
        user_id: str,
        mission: Mission,
        period_key: str,
        period_start: datetime | None,
        delta: int = 1,
    ) -> ProgressSnapshot | None:
        """Add ``delta`` capped at target. None if the row is already completed."""
        bumped = MissionProgress.progress_counter + delta
        return await self._upsert(
            user_id,
            mission,
            period_key,
            period_start,
            initial=min(delta, mission.target),
            counter=case((bumped > MissionProgress.target, MissionProgress.target), else_=bumped),
        )

    async def set_absolute(
        self,
        user_id: str,
        mission: Mission,
        period_key: str,
        period_start: datetime | None,
        value: int,
    ) -> ProgressSnapshot | None:
        """Overwrite the counter with ``value`` capped at target. Idempotent."""
        capped = max(min(value, mission.target), 0)
        return await self._upsert(user_id, mission, period_key, period_start, initial=capped, counter=capped)

    async def _upsert(
        self,
        user_id: str,
        mission: Mission,
        period_key: str,
        period_start: datetime | None,
        initial: int,
        counter: object,
    ) -> ProgressSnapshot | None:
        now = utcnow()
        stmt = insert_for(self.db, MissionProgress).values(
            user_id=user_id,
            mission_id=mission.id,
            period_key=period_key,
            period_start=period_start,
            progress_counter=initial,
            target=mission.target,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "mission_id", "period_key"],
            set_={"progress_counter": counter, "updated_at": now},
            where=MissionProgress.completed_at.is_(None),
        ).returning(
            MissionProgress.id,
            MissionProgress.progress_counter,
            MissionProgress.target,
            MissionProgress.completed_at,
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None
        return ProgressSnapshot(row.id, row.progress_counter, row.target, row.completed_at)

    async def try_complete(self, progress_id: int, now: datetime) -> bool:
        """Stamp ``completed_at`` once. Only the caller that wins the update gets True."""
        result = await self.db.execute(
            update(MissionProgress)
            .where(
                MissionProgress.id == progress_id,
                MissionProgress.completed_at.is_(None),
                MissionProgress.progress_counter >= MissionProgress.target,
            )
            .values(completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_periods(self, mission_type: str, current_key: str, now: datetime) -> int:
        """Close unfinished rows of earlier periods for one mission type."""
        mission_ids = select(Mission.id).where(Mission.type == mission_type)
        result = await self.db.execute(
            update(MissionProgress)
            .where(
                MissionProgress.mission_id.in_(mission_ids),
                MissionProgress.period_key != current_key,
                MissionProgress.completed_at.is_(None),
                MissionProgress.expired_at.is_(None),
            )
            .values(expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def prune_history(self, mission_type: str, cutoff: datetime) -> int:
        """Delete periodic rows whose period started before ``cutoff``."""
        mission_ids = select(Mission.id).where(Mission.type == mission_type)
        result = await self.db.execute(
            delete(MissionProgress)
            .where(
                MissionProgress.mission_id.in_(mission_ids),
                MissionProgress.period_start.is_not(None),
                MissionProgress.period_start < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class ActivityCounters:
    """Counts recomputed from the authoritative activity tables.

    ``since`` scopes a count to the current mission period; None means
    all time.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _scalar(self, stmt) -> int:  # noqa: ANN001
        return int((await self.db.execute(stmt)).scalar() or 0)

    # --- check-ins ---

    async def verified_check_ins(self, user_id: str, since: Window | None = None, zone: str | None = None) -> int:
        stmt = select(func.count(CheckIn.id)).where(CheckIn.user_id == user_id, CheckIn.verified.is_(True))
        if zone is not None:
            stmt = stmt.where(CheckIn.zone == zone)
        if since is not None:
            stmt = stmt.where(since.bound(CheckIn.created_at))
        return await self._scalar(stmt)

    async def distinct_establishments(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(distinct(CheckIn.establishment_id))).where(
            CheckIn.user_id == user_id, CheckIn.verified.is_(True)
        )
        if since is not None:
            stmt = stmt.where(since.bound(CheckIn.created_at))
        return await self._scalar(stmt)

    async def distinct_zones(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(distinct(CheckIn.zone))).where(
            CheckIn.user_id == user_id, CheckIn.verified.is_(True)
        )
        if since is not None:
            stmt = stmt.where(since.bound(CheckIn.created_at))
        return await self._scalar(stmt)

    # --- reviews & photos ---

    async def reviews(
        self,
        user_id: str,
        since: Window | None = None,
        min_length: int | None = None,
        with_photo: bool = False,
    ) -> int:
        stmt = select(func.count(Review.id)).where(Review.user_id == user_id)
        if since is not None:
            stmt = stmt.where(since.bound(Review.created_at))
        if min_length:
            stmt = stmt.where(func.length(Review.content) >= min_length)
        if with_photo:
            stmt = stmt.where(
                exists().where(
                    PhotoUpload.entity_type == EntityType.REVIEW,
                    PhotoUpload.entity_id == Review.id,
                )
            )
        return await self._scalar(stmt)

    async def photos(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(PhotoUpload.id)).where(PhotoUpload.user_id == user_id)
        if since is not None:
            stmt = stmt.where(since.bound(PhotoUpload.uploaded_at))
        return await self._scalar(stmt)

    # --- votes ---

    async def helpful_votes_cast(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(ReviewVote.id)).where(
            ReviewVote.user_id == user_id, ReviewVote.vote_type == HELPFUL
        )
        if since is not None:
            stmt = stmt.where(since.bound(ReviewVote.created_at))
        return await self._scalar(stmt)

    async def helpful_votes_received(self, user_id: str, since: Window | None = None) -> int:
        stmt = (
            select(func.count(ReviewVote.id))
            .join(Review, Review.id == ReviewVote.review_id)
            .where(Review.user_id == user_id, ReviewVote.vote_type == HELPFUL)
        )
        if since is not None:
            stmt = stmt.where(since.bound(ReviewVote.created_at))
        return await self._scalar(stmt)

    # --- follows ---

    async def following(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(UserFollow.id)).where(UserFollow.follower_id == user_id)
        if since is not None:
            stmt = stmt.where(since.bound(UserFollow.created_at))
        return await self._scalar(stmt)

    async def followers(self, user_id: str, since: Window | None = None) -> int:
        stmt = select(func.count(UserFollow.id)).where(UserFollow.following_id == user_id)
        if since is not None:
            stmt = stmt.where(since.bound(UserFollow.created_at))
        return await self._scalar(stmt)

    # --- streaks ---

    async def longest_streak(self, user_id: str) -> int:
        stmt = select(UserPoints.longest_streak_days).where(UserPoints.user_id == user_id)
        return await self._scalar(stmt)

"""Feature unlocks: rewards granted on reaching a level, an XP total or a badge.

Grants run inside the caller's transaction, next to the XP or badge write
that made the user eligible. Granted rows are stored as claimed; ``claim``
covers rewards the user became eligible for before the reward existed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import FeatureUnlock, UserBadge, UserPoints, UserUnlock
from progression.db.upsert import insert_for
from progression.errors import ConflictError, InternalError, NotFoundError, ValidationError
from progression.gamification.notifications import NotificationOutbox
from progression.gamification.periods import utcnow
from progression.gamification.types import REWARD_UNLOCKED_TEMPLATE, UnlockType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardStatus:
    unlock: FeatureUnlock
    unlocked_at: datetime | None
    claimed: bool

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None


class RewardService:
    def __init__(self, db: AsyncSession, outbox: NotificationOutbox) -> None:
        self.db = db
        self.outbox = outbox

    async def grant_for_progress(self, user_id: str, level: int, total_xp: int) -> list[int]:
        """Grant every active level or XP reward the totals now reach."""
        return await self._grant_matching(
            user_id,
            or_(
                and_(FeatureUnlock.unlock_type == UnlockType.LEVEL, FeatureUnlock.unlock_value <= level),
                and_(FeatureUnlock.unlock_type == UnlockType.XP, FeatureUnlock.unlock_value <= total_xp),
            ),
        )

    async def grant_for_badge(self, user_id: str, badge_id: int) -> list[int]:
        return await self._grant_matching(
            user_id,
            and_(FeatureUnlock.unlock_type == UnlockType.BADGE, FeatureUnlock.unlock_badge_id == badge_id),
        )

    async def _grant_matching(self, user_id: str, condition) -> list[int]:  # noqa: ANN001
        result = await self.db.execute(
            select(FeatureUnlock)
            .where(
                FeatureUnlock.is_active.is_(True),
                condition,
                ~exists().where(UserUnlock.user_id == user_id, UserUnlock.unlock_id == FeatureUnlock.id),
            )
            .order_by(FeatureUnlock.sort_order, FeatureUnlock.id)
        )
        granted: list[int] = []
        for unlock in list(result.scalars()):
            if await self._insert(user_id, unlock):
                granted.append(unlock.id)
        return granted

    async def _insert(self, user_id: str, unlock: FeatureUnlock) -> bool:
        now = utcnow()
        stmt = (
            insert_for(self.db, UserUnlock)
            .values(user_id=user_id, unlock_id=unlock.id, unlocked_at=now, claimed=True, claimed_at=now)
            .on_conflict_do_nothing(index_elements=["user_id", "unlock_id"])
            .returning(UserUnlock.id)
        )
        if (await self.db.execute(stmt)).scalar_one_or_none() is None:
            return False

        self.outbox.queue(
            user_id,
            REWARD_UNLOCKED_TEMPLATE,
            {"rewardId": unlock.id, "rewardName": unlock.name, "category": unlock.category, "icon": unlock.icon},
        )
        logger.info("Reward %s unlocked for user %s", unlock.name, user_id)
        return True

    async def catalog(self) -> list[FeatureUnlock]:
        result = await self.db.execute(
            select(FeatureUnlock)
            .where(FeatureUnlock.is_active.is_(True))
            .order_by(FeatureUnlock.sort_order, FeatureUnlock.unlock_value, FeatureUnlock.id)
        )
        return list(result.scalars())

    async def user_rewards(self, user_id: str) -> list[RewardStatus]:
        """Active catalog with the user's unlock state, catalog order."""
        result = await self.db.execute(
            select(FeatureUnlock, UserUnlock)
            .outerjoin(
                UserUnlock,
                and_(UserUnlock.unlock_id == FeatureUnlock.id, UserUnlock.user_id == user_id),
            )
            .where(FeatureUnlock.is_active.is_(True))
            .order_by(FeatureUnlock.sort_order, FeatureUnlock.unlock_value, FeatureUnlock.id)
        )
        return [
            RewardStatus(
                unlock=row.FeatureUnlock,
                unlocked_at=row.UserUnlock.unlocked_at if row.UserUnlock else None,
                claimed=bool(row.UserUnlock and row.UserUnlock.claimed),
            )
            for row in result
        ]

    async def claim(self, user_id: str, unlock_id: int) -> FeatureUnlock:
        """Claim a reward the user is eligible for, in its own transaction.

        Raises ``NotFoundError`` for unknown or inactive rewards,
        ``ValidationError`` when the user does not qualify and
        ``ConflictError`` when it is already claimed.
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError("user_id is required")
        unlock = await self.db.get(FeatureUnlock, unlock_id)
        if unlock is None or not unlock.is_active:
            raise NotFoundError(f"Reward {unlock_id} not found")

        existing = (
            await self.db.execute(
                select(UserUnlock).where(UserUnlock.user_id == user_id, UserUnlock.unlock_id == unlock.id)
            )
        ).scalar_one_or_none()
        name = unlock.name
        if existing is not None and existing.claimed:
            raise ConflictError(f"Reward {name} already claimed")
        if existing is None and not await self._eligible(user_id, unlock):
            raise ValidationError(f"Not eligible for reward {name} ({unlock.unlock_type} {unlock.unlock_value})")

        now = utcnow()
        try:
            if existing is not None:
                claimed = await self.db.execute(
                    update(UserUnlock)
                    .where(UserUnlock.id == existing.id, UserUnlock.claimed.is_(False))
                    .values(claimed=True, claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                won = claimed.rowcount == 1
            else:
                won = await self._insert(user_id, unlock)
            if not won:
                await self.db.rollback()
                self.outbox.discard()
                raise ConflictError(f"Reward {name} already claimed")
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            self.outbox.discard()
            raise InternalError(f"Reward claim failed for user {user_id}") from exc

        await self.outbox.flush()
        return unlock

    async def _eligible(self, user_id: str, unlock: FeatureUnlock) -> bool:
        if unlock.unlock_type == UnlockType.BADGE:
            held = await self.db.execute(
                select(UserBadge.id).where(UserBadge.user_id == user_id, UserBadge.badge_id == unlock.unlock_badge_id)
            )
            return held.first() is not None
        if unlock.unlock_type not in (UnlockType.LEVEL, UnlockType.XP) or unlock.unlock_value is None:
            # Achievement rewards are claimable only once a row exists.
            return False
        result = await self.db.execute(
            select(UserPoints).where(UserPoints.user_id == user_id).execution_options(populate_existing=True)
        )
        points = result.scalar_one_or_none()
        if points is None:
            return False
        if unlock.unlock_type == UnlockType.LEVEL:
            return points.current_level >= unlock.unlock_value
        return points.total_xp >= unlock.unlock_value

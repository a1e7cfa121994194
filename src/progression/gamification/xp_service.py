"""XP grant service with idempotency and level-up detection."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import UserPoints
from progression.db.upsert import insert_for
from progression.errors import InternalError, ValidationError
from progression.gamification.ledger import LedgerStore
from progression.gamification.levels import calculate_level, level_expression
from progression.gamification.notifications import NotificationOutbox
from progression.gamification.periods import start_of_month, utcnow
from progression.gamification.reward_service import RewardService
from progression.gamification.types import LEVEL_UP_TEMPLATE, EntityType, XPGrant, XPSource

logger = logging.getLogger(__name__)


def validate_award(user_id: str, amount: int, source: str, entity_type: str | None) -> None:
    """Reject malformed grants before anything is written."""
    if not isinstance(user_id, str) or not user_id:
        raise ValidationError("user_id is required")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"XP amount must be a positive integer, got {amount!r}")
    if source not in XPSource._value2member_map_:
        raise ValidationError(f"Unknown XP source: {source!r}")
    if entity_type is not None and entity_type not in EntityType._value2member_map_:
        raise ValidationError(f"Unknown entity type: {entity_type!r}")


class XPService:
    """Writes the ledger row and the materialized points row together.

    ``grant`` works inside the caller's transaction and never commits;
    ``award`` is the standalone entry point that commits.
    """

    def __init__(self, db: AsyncSession, outbox: NotificationOutbox, retry_backoff_seconds: float = 0.5) -> None:
        self.db = db
        self.outbox = outbox
        self.ledger = LedgerStore(db)
        self.rewards = RewardService(db, outbox)
        self.retry_backoff_seconds = retry_backoff_seconds

    async def grant(
        self,
        user_id: str,
        amount: int,
        source: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> XPGrant | None:
        """Grant XP within the current transaction. Returns None on a replayed key.

        1. Append the ledger row (skipped entirely if the key exists)
        2. Upsert user_points, adding to total/monthly XP
        3. Recompute current_level in the same statement
        4. Queue a level-up notification if the level changed
        5. Unlock level and XP rewards the new totals reach
        """
        validate_award(user_id, amount, source, entity_type)

        tx_id = await self.ledger.append(
            user_id,
            amount,
            source,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata={"description": description} if description else None,
            idempotency_key=idempotency_key,
        )
        if tx_id is None:
            logger.info("Duplicate XP grant ignored: %s", idempotency_key)
            return None

        now = utcnow()
        stmt = insert_for(self.db, UserPoints).values(
            user_id=user_id,
            total_xp=amount,
            monthly_xp=amount,
            current_level=calculate_level(amount),
            updated_at=now,
        )
        new_total = UserPoints.total_xp + stmt.excluded.total_xp
        new_level = level_expression(new_total)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "total_xp": new_total,
                "monthly_xp": UserPoints.monthly_xp + stmt.excluded.monthly_xp,
                "current_level": case(
                    (new_level > UserPoints.current_level, new_level),
                    else_=UserPoints.current_level,
                ),
                "updated_at": now,
            },
        ).returning(UserPoints.total_xp, UserPoints.monthly_xp)
        row = (await self.db.execute(stmt)).one()

        grant = XPGrant(
            transaction_id=tx_id,
            user_id=user_id,
            amount=amount,
            total_xp=row.total_xp,
            monthly_xp=row.monthly_xp,
            old_level=calculate_level(row.total_xp - amount),
            new_level=calculate_level(row.total_xp),
        )
        if grant.leveled_up:
            self.outbox.queue(
                user_id,
                LEVEL_UP_TEMPLATE,
                {"oldLevel": grant.old_level, "newLevel": grant.new_level, "totalXp": grant.total_xp},
            )
            logger.info("User %s leveled up %d -> %d", user_id, grant.old_level, grant.new_level)
        await self.rewards.grant_for_progress(user_id, grant.new_level, grant.total_xp)
        return grant

    async def award(
        self,
        user_id: str,
        amount: int,
        source: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> XPGrant | None:
        """Grant XP in its own transaction, then dispatch notifications.

        Raises ``ValidationError`` before any write and ``InternalError``
        (after rolling back) when storage fails.
        """
        validate_award(user_id, amount, source, entity_type)
        try:
            grant = await self.grant(
                user_id, amount, source, entity_type, entity_id, description, idempotency_key
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            self.outbox.discard()
            logger.error("XP award failed for user %s (%s, %d)", user_id, source, amount, exc_info=True)
            raise InternalError(f"XP award failed for user {user_id}") from exc

        await self.outbox.flush()
        return grant

    async def award_with_retry(
        self,
        user_id: str,
        amount: int,
        source: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> XPGrant | None:
        """``award`` with one retry on ``InternalError``.

        Both attempts share one idempotency key, so an attempt whose
        outcome was unknown can never be credited twice.
        """
        key = idempotency_key or f"award:{uuid.uuid4()}"
        try:
            return await self.award(user_id, amount, source, entity_type, entity_id, description, key)
        except InternalError:
            logger.warning("Retrying XP award for user %s (key=%s)", user_id, key)
            await asyncio.sleep(self.retry_backoff_seconds)
            return await self.award(user_id, amount, source, entity_type, entity_id, description, key)

    async def get_points(self, user_id: str) -> UserPoints | None:
        result = await self.db.execute(
            select(UserPoints).where(UserPoints.user_id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reconcile(self, user_id: str) -> int:
        """Realign total_xp and current_level with the ledger sum.

        Returns the drift that was corrected (ledger total minus stored
        total); 0 means the row was already consistent.
        """
        ledger_total = await self.ledger.total_for_user(user_id)
        points = await self.get_points(user_id)
        stored_total = points.total_xp if points is not None else 0
        drift = ledger_total - stored_total
        if drift == 0:
            return 0

        logger.warning(
            "XP drift for user %s: ledger=%d stored=%d, reconciling", user_id, ledger_total, stored_total
        )
        now = utcnow()
        stmt = insert_for(self.db, UserPoints).values(
            user_id=user_id,
            total_xp=ledger_total,
            monthly_xp=0,
            current_level=calculate_level(ledger_total),
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "total_xp": stmt.excluded.total_xp,
                "current_level": stmt.excluded.current_level,
                "updated_at": now,
            },
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise InternalError(f"XP reconciliation failed for user {user_id}") from exc
        return drift

    async def reset_monthly_xp(self, now: datetime | None = None) -> int:
        """Zero monthly_xp for everyone not yet reset this month. Returns the count."""
        now = now or utcnow()
        month_start = start_of_month(now)
        try:
            result = await self.db.execute(
                update(UserPoints)
                .where(
                    UserPoints.monthly_xp > 0,
                    or_(UserPoints.last_monthly_reset.is_(None), UserPoints.last_monthly_reset < month_start),
                )
                .values(monthly_xp=0, last_monthly_reset=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise InternalError("Monthly XP reset failed") from exc
        logger.info("Monthly XP reset: %d users", result.rowcount)
        return result.rowcount

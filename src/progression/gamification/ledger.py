"""Append-only XP ledger.

Rows are never updated or deleted. A non-null ``idempotency_key`` makes an
append a no-op when the same grant is replayed.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import XPTransaction
from progression.db.upsert import insert_for


class LedgerStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def append(
        self,
        user_id: str,
        amount: int,
        source: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> int | None:
        """Insert one ledger row. Returns its id, or None if the key was already used."""
        stmt = insert_for(self.db, XPTransaction).values({
            XPTransaction.user_id: user_id,
            XPTransaction.amount: amount,
            XPTransaction.source: source,
            XPTransaction.related_entity_type: entity_type,
            XPTransaction.related_entity_id: entity_id,
            XPTransaction.tx_metadata: metadata,
            XPTransaction.idempotency_key: idempotency_key,
        })
        if idempotency_key is not None:
            stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
        result = await self.db.execute(stmt.returning(XPTransaction.id))
        return result.scalar_one_or_none()

    async def exists(self, idempotency_key: str) -> bool:
        result = await self.db.execute(
            select(XPTransaction.id).where(XPTransaction.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none() is not None

    async def total_for_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(XPTransaction.amount), 0)).where(XPTransaction.user_id == user_id)
        )
        return int(result.scalar_one())

    async def history(self, user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[XPTransaction], int]:
        """Newest-first page of a user's ledger plus the total row count."""
        result = await self.db.execute(
            select(XPTransaction)
            .where(XPTransaction.user_id == user_id)
            .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        entries = list(result.scalars())
        count = await self.db.execute(
            select(func.count()).select_from(XPTransaction).where(XPTransaction.user_id == user_id)
        )
        return entries, int(count.scalar_one())

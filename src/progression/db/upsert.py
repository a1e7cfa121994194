"""Dialect-aware INSERT ... ON CONFLICT builder.

Production runs on PostgreSQL; the test suite runs on SQLite. Both
dialects expose the same ``on_conflict_do_update`` / ``on_conflict_do_nothing``
/ ``excluded`` API, so services build upserts through ``insert_for`` and
stay dialect-agnostic.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: Any) -> Any:  # noqa: ANN401
    """Return an ``insert(model)`` supporting ON CONFLICT for the session's dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)

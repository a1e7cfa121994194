"""Engine options and session factory lifecycle."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from progression.database import _engine_options, close_db, get_session_factory, init_db


def test_postgres_gets_pool_and_no_statement_cache() -> None:
    options = _engine_options("postgresql+asyncpg://u:p@db/progression")
    assert options["pool_size"] == 20
    assert options["connect_args"] == {"statement_cache_size": 0}


def test_sqlite_skips_pool_options() -> None:
    options = _engine_options("sqlite+aiosqlite:///local.db")
    assert "pool_size" not in options
    assert options["connect_args"] == {"timeout": 30}


@pytest.mark.asyncio
async def test_session_factory_lifecycle(tmp_path) -> None:  # noqa: ANN001
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    try:
        async with get_session_factory()() as session:
            assert (await session.execute(text("SELECT 1"))).scalar() == 1
    finally:
        await close_db()

    with pytest.raises(RuntimeError, match="not initialized"):
        get_session_factory()

"""Shared test fixtures.

Integration tests run against a throwaway SQLite file through aiosqlite.
The connection is put in autocommit mode and every transaction is opened
with ``BEGIN IMMEDIATE`` so savepoints work and concurrent sessions
serialize their writes instead of failing.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from progression.config import Settings
from progression.db import models  # noqa: F401
from progression.db.base import Base
from progression.db.models import (
    Badge,
    Establishment,
    FeatureUnlock,
    Mission,
    PhotoUpload,
    Review,
    ReviewVote,
    UserFollow,
)
from progression.gamification.engine import ProgressionEngine

# Wednesday 2026-10-14, 12:00 in Asia/Bangkok.
NOW = datetime(2026, 10, 14, 5, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    """Collects dispatched notifications instead of publishing them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def dispatch(self, user_id: str, template_key: str, params: dict[str, Any]) -> bool:
        self.sent.append((user_id, template_key, params))
        return True

    def templates(self, user_id: str | None = None) -> list[str]:
        return [t for u, t, _ in self.sent if user_id is None or u == user_id]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        award_retry_backoff_seconds=0,
        mission_dev_mode=False,
        checkin_radius_meters=100.0,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:  # noqa: ANN001
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'progression.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit(dbapi_connection, _record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def engine(db_session: AsyncSession, dispatcher: RecordingDispatcher, settings: Settings) -> ProgressionEngine:
    return ProgressionEngine(db_session, dispatcher, settings)


class Factory:
    """Inserts catalog and collaborator rows, committing each one."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    async def _add(self, obj: Any) -> Any:  # noqa: ANN401
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def establishment(
        self,
        zone: str = "Soi 6",
        latitude: float | None = 12.9350,
        longitude: float | None = 100.8830,
        establishment_id: str | None = None,
    ) -> Establishment:
        return await self._add(
            Establishment(
                id=establishment_id or self._next("venue"),
                name=f"Bar in {zone}",
                zone=zone,
                latitude=latitude,
                longitude=longitude,
            )
        )

    async def mission(self, **fields: Any) -> Mission:
        values: dict[str, Any] = {
            "slug": self._next("mission"),
            "name": "Test mission",
            "type": "daily",
            "requirement_type": "check_in",
            "target": 1,
            "requirements": {},
            "reward_xp": 10,
        }
        values.update(fields)
        return await self._add(Mission(**values))

    async def badge(self, **fields: Any) -> Badge:
        values: dict[str, Any] = {
            "slug": self._next("badge"),
            "name": "Test badge",
            "category": "test",
            "rarity": "common",
            "requirement_type": "review_count",
            "requirement_value": 1,
            "requirement_metadata": {},
            "xp_reward": 0,
        }
        values.update(fields)
        return await self._add(Badge(**values))

    async def unlock(self, **fields: Any) -> FeatureUnlock:
        values: dict[str, Any] = {
            "name": self._next("reward"),
            "description": "Test reward",
            "unlock_type": "level",
            "unlock_value": 2,
            "category": "feature",
        }
        values.update(fields)
        return await self._add(FeatureUnlock(**values))

    async def review(
        self,
        user_id: str,
        content: str = "Nice place",
        created_at: datetime = NOW,
        with_photo: bool = False,
    ) -> Review:
        review = await self._add(
            Review(id=self._next("review"), user_id=user_id, content=content, created_at=created_at)
        )
        if with_photo:
            await self.photo(user_id, entity_type="review", entity_id=review.id, uploaded_at=created_at)
        return review

    async def photo(
        self,
        user_id: str,
        entity_type: str = "establishment",
        entity_id: str | None = None,
        uploaded_at: datetime = NOW,
    ) -> PhotoUpload:
        return await self._add(
            PhotoUpload(
                user_id=user_id,
                photo_url=f"https://cdn.example.test/{self._next('photo')}.jpg",
                entity_type=entity_type,
                entity_id=entity_id,
                uploaded_at=uploaded_at,
            )
        )

    async def vote(
        self, review_id: str, voter_id: str, vote_type: str = "helpful", created_at: datetime = NOW
    ) -> ReviewVote:
        return await self._add(
            ReviewVote(review_id=review_id, user_id=voter_id, vote_type=vote_type, created_at=created_at)
        )

    async def follow(self, follower_id: str, following_id: str, created_at: datetime = NOW) -> UserFollow:
        return await self._add(UserFollow(follower_id=follower_id, following_id=following_id, created_at=created_at))


@pytest.fixture
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


@pytest.fixture
def now() -> datetime:
    return NOW

"""Stream consumer: one session per event, ack after processing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from progression.db.models import UserPoints
from progression.gamification import worker
from progression.gamification.events import CHECK_IN, REVIEW_CREATED


@pytest.fixture
def ctx(monkeypatch, session_factory) -> dict:  # noqa: ANN001
    monkeypatch.setattr(worker, "get_session_factory", lambda: session_factory)
    return {"stream_redis": AsyncMock()}


async def _points(session_factory, user_id: str) -> UserPoints | None:  # noqa: ANN001
    async with session_factory() as session:
        result = await session.execute(select(UserPoints).where(UserPoints.user_id == user_id))
        return result.scalar_one_or_none()


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_review_event_grants_xp_and_acks(self, ctx, session_factory) -> None:  # noqa: ANN001
        payload = {"data": json.dumps({"user_id": "alice", "review_id": "r-1"})}

        await worker.handle_message(ctx, REVIEW_CREATED, "1-0", payload)

        points = await _points(session_factory, "alice")
        assert points is not None
        assert points.total_xp == 50
        ctx["stream_redis"].xack.assert_awaited_once_with(REVIEW_CREATED, worker.CONSUMER_GROUP, "1-0")

    @pytest.mark.asyncio
    async def test_redelivered_event_is_not_credited_twice(self, ctx, session_factory) -> None:  # noqa: ANN001
        payload = {"data": json.dumps({"user_id": "alice", "review_id": "r-1"})}

        await worker.handle_message(ctx, REVIEW_CREATED, "1-0", payload)
        await worker.handle_message(ctx, REVIEW_CREATED, "1-0", payload)

        assert (await _points(session_factory, "alice")).total_xp == 50
        assert ctx["stream_redis"].xack.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_event_is_acked(self, ctx, session_factory) -> None:  # noqa: ANN001
        payload = {"data": json.dumps({"user_id": "alice", "establishment_id": "venue-1"})}

        await worker.handle_message(ctx, CHECK_IN, "2-0", payload)

        assert await _points(session_factory, "alice") is None
        ctx["stream_redis"].xack.assert_awaited_once_with(CHECK_IN, worker.CONSUMER_GROUP, "2-0")

    @pytest.mark.asyncio
    async def test_flat_fields_are_accepted(self, ctx, session_factory) -> None:  # noqa: ANN001
        await worker.handle_message(ctx, REVIEW_CREATED, "3-0", {"user_id": "bob", "review_id": "r-9"})

        assert (await _points(session_factory, "bob")).total_xp == 50


class TestScheduledResets:
    @pytest.mark.asyncio
    async def test_monthly_reset_runs_through_worker(self, ctx, session_factory, engine) -> None:  # noqa: ANN001
        await engine.xp.award("carol", 40, "admin_adjustment")

        await worker.monthly_xp_reset(ctx)

        points = await _points(session_factory, "carol")
        assert points.monthly_xp == 0
        assert points.total_xp == 40


def _claims(pages: dict[tuple[str, str], list]):  # noqa: ANN202
    """xautoclaim stand-in serving ``[next_id, entries, deleted]`` per (stream, start_id)."""

    async def xautoclaim(stream, group, consumer, min_idle_time, start_id, count):  # noqa: ANN001, ANN202
        return pages.get((stream, start_id), ["0-0", [], []])

    return xautoclaim


class TestReclaimPending:
    @pytest.mark.asyncio
    async def test_stale_entry_is_processed_and_acked(self, ctx, session_factory) -> None:  # noqa: ANN001
        payload = {"data": json.dumps({"user_id": "alice", "review_id": "r-1"})}
        ctx["stream_redis"].xautoclaim.side_effect = _claims({(REVIEW_CREATED, "0-0"): ["0-0", [("5-0", payload)], []]})

        processed = await worker.reclaim_pending_events(ctx)

        assert processed == 1
        assert (await _points(session_factory, "alice")).total_xp == 50
        ctx["stream_redis"].xack.assert_awaited_once_with(REVIEW_CREATED, worker.CONSUMER_GROUP, "5-0")
        kwargs = ctx["stream_redis"].xautoclaim.await_args.kwargs
        assert kwargs["min_idle_time"] == worker.get_settings().event_reclaim_idle_ms

    @pytest.mark.asyncio
    async def test_follows_the_cursor_until_it_wraps(self, ctx, session_factory) -> None:  # noqa: ANN001
        first = {"data": json.dumps({"user_id": "alice", "review_id": "r-1"})}
        second = {"data": json.dumps({"user_id": "bob", "review_id": "r-2"})}
        ctx["stream_redis"].xautoclaim.side_effect = _claims({
            (REVIEW_CREATED, "0-0"): ["7-0", [("5-0", first)], []],
            (REVIEW_CREATED, "7-0"): ["0-0", [("7-0", second)], []],
        })

        assert await worker.reclaim_pending_events(ctx) == 2
        assert (await _points(session_factory, "bob")).total_xp == 50

    @pytest.mark.asyncio
    async def test_trimmed_entry_is_acked_without_processing(self, ctx) -> None:  # noqa: ANN001
        ctx["stream_redis"].xautoclaim.side_effect = _claims({(CHECK_IN, "0-0"): ["0-0", [("9-0", None)], []]})

        assert await worker.reclaim_pending_events(ctx) == 0
        ctx["stream_redis"].xack.assert_awaited_once_with(CHECK_IN, worker.CONSUMER_GROUP, "9-0")

    @pytest.mark.asyncio
    async def test_failing_entry_stays_pending(self, ctx, monkeypatch) -> None:  # noqa: ANN001
        handler = AsyncMock(side_effect=[RuntimeError("database down"), None])
        monkeypatch.setattr(worker, "handle_message", handler)
        entries = [("5-0", {"user_id": "alice"}), ("6-0", {"user_id": "bob"})]
        ctx["stream_redis"].xautoclaim.side_effect = _claims({(REVIEW_CREATED, "0-0"): ["0-0", entries, []]})

        assert await worker.reclaim_pending_events(ctx) == 1
        assert handler.await_count == 2
        ctx["stream_redis"].xack.assert_not_awaited()

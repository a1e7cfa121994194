"""Notification outbox and Redis dispatcher tests."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from progression.gamification.notifications import (
    NotificationOutbox,
    NullDispatcher,
    RedisNotificationDispatcher,
)


class TestOutbox:
    @pytest.mark.asyncio
    async def test_flush_sends_in_order_and_empties(self) -> None:
        dispatcher = AsyncMock()
        dispatcher.dispatch.return_value = True
        outbox = NotificationOutbox(dispatcher)
        outbox.queue("u1", "gamification.levelUp", {"newLevel": 2})
        outbox.queue("u1", "gamification.badgeEarned", {"badgeId": 3})

        sent = await outbox.flush()

        assert sent == 2
        assert len(outbox) == 0
        keys = [call.args[1] for call in dispatcher.dispatch.await_args_list]
        assert keys == ["gamification.levelUp", "gamification.badgeEarned"]

    def test_rollback_to_mark_drops_later_entries(self) -> None:
        outbox = NotificationOutbox(NullDispatcher())
        outbox.queue("u1", "a", {})
        mark = outbox.mark()
        outbox.queue("u1", "b", {})
        outbox.queue("u1", "c", {})

        outbox.rollback_to(mark)

        assert [n.template_key for n in outbox.pending] == ["a"]

    def test_discard(self) -> None:
        outbox = NotificationOutbox(NullDispatcher())
        outbox.queue("u1", "a", {})
        outbox.discard()
        assert len(outbox) == 0

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_swallowed(self) -> None:
        """A broken transport must not fail the already-committed work."""
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = [ConnectionError("redis down"), True]
        outbox = NotificationOutbox(dispatcher)
        outbox.queue("u1", "a", {})
        outbox.queue("u2", "b", {})

        assert await outbox.flush() == 1
        assert len(outbox) == 0


class TestRedisDispatcher:
    @pytest.mark.asyncio
    async def test_publishes_on_user_channel(self) -> None:
        redis = AsyncMock()
        dispatcher = RedisNotificationDispatcher(redis, "ws:user:")

        assert await dispatcher.dispatch("u42", "gamification.missionCompleted", {"missionId": 7})

        channel, payload = redis.publish.await_args.args
        assert channel == "ws:user:u42"
        assert json.loads(payload) == {
            "type": "notification",
            "template_key": "gamification.missionCompleted",
            "params": {"missionId": 7},
        }

    @pytest.mark.asyncio
    async def test_without_redis_is_noop(self) -> None:
        assert await RedisNotificationDispatcher(None).dispatch("u1", "a", {}) is False

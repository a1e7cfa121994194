"""Stream helpers: consumer-group bootstrap and event publishing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from progression.gamification.events import CHECK_IN, REVIEW_CREATED
from progression.gamification.worker import _parse
from progression.redis_client import STREAM_MAXLEN, ensure_consumer_groups, get_redis, publish_event, redis_or_none


class TestConsumerGroups:
    @pytest.mark.asyncio
    async def test_creates_group_on_every_stream(self) -> None:
        client = AsyncMock()

        await ensure_consumer_groups(client, [CHECK_IN, REVIEW_CREATED], "g")

        streams = [call.args[0] for call in client.xgroup_create.await_args_list]
        assert streams == [CHECK_IN, REVIEW_CREATED]
        assert client.xgroup_create.await_args.kwargs == {"id": "0", "mkstream": True}

    @pytest.mark.asyncio
    async def test_existing_group_is_not_an_error(self) -> None:
        client = AsyncMock()
        client.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

        await ensure_consumer_groups(client, [CHECK_IN, REVIEW_CREATED], "g")

        assert client.xgroup_create.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        client = AsyncMock()
        client.xgroup_create.side_effect = redis.ResponseError("WRONGTYPE Operation against a key")

        with pytest.raises(redis.ResponseError):
            await ensure_consumer_groups(client, [CHECK_IN], "g")


class TestPublish:
    @pytest.mark.asyncio
    async def test_payload_is_json_under_data(self) -> None:
        client = AsyncMock()
        client.xadd.return_value = "1-0"

        entry_id = await publish_event(client, REVIEW_CREATED, {"user_id": "u1", "review_id": "r1"})

        assert entry_id == "1-0"
        stream, fields = client.xadd.await_args.args
        assert stream == REVIEW_CREATED
        assert json.loads(fields["data"]) == {"user_id": "u1", "review_id": "r1"}
        assert client.xadd.await_args.kwargs == {"maxlen": STREAM_MAXLEN, "approximate": True}

    @pytest.mark.asyncio
    async def test_published_entry_parses_back_for_the_worker(self) -> None:
        client = AsyncMock()

        await publish_event(client, CHECK_IN, {"user_id": "u1", "latitude": 12.93, "longitude": 100.88})

        _, fields = client.xadd.await_args.args
        assert _parse(fields)["latitude"] == 12.93


def test_get_redis_before_init_raises() -> None:
    with pytest.raises(RuntimeError, match="not initialized"):
        get_redis()


def test_redis_or_none_before_init() -> None:
    assert redis_or_none() is None

"""Redis access: the API's shared client plus stream helpers.

Trigger events travel over Redis Streams. Producers append with
``publish_event``; the worker reads them through a consumer group created
by ``ensure_consumer_groups``.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_pool: redis.Redis | None = None

# Streams are trimmed approximately so a stalled consumer cannot grow them unbounded.
STREAM_MAXLEN = 100_000


def create_client(url: str, max_connections: int = 50) -> redis.Redis:
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str) -> None:
    """Initialize the API's Redis client."""
    global _pool  # noqa: PLW0603
    _pool = create_client(url)


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client (FastAPI dependency)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def redis_or_none() -> redis.Redis | None:
    """The API client, or None before ``init_redis``."""
    return _pool


async def ensure_consumer_groups(client: redis.Redis, streams: Iterable[str], group: str) -> None:
    """Create ``group`` on every stream, creating missing streams. Existing groups are kept."""
    for stream in streams:
        try:
            await client.xgroup_create(stream, group, id="0", mkstream=True)
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug("Consumer group %s already exists on %s", group, stream)


async def publish_event(client: redis.Redis, stream: str, payload: dict[str, Any]) -> str:
    """Append one trigger event as ``data=<json>``. Returns the entry id."""
    return await client.xadd(
        stream,
        {"data": json.dumps(payload, default=str)},
        maxlen=STREAM_MAXLEN,
        approximate=True,
    )

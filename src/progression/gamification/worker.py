"""Progression arq worker: consumes trigger events from Redis Streams and
runs the period resets on a schedule in the reference timezone.
"""

from __future__ import annotations

import asyncio
import json
import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from progression.config import get_settings
from progression.database import close_db, get_session_factory, init_db
from progression.gamification.engine import ProgressionEngine
from progression.gamification.events import STREAMS, dispatch_event
from progression.gamification.notifications import RedisNotificationDispatcher
from progression.gamification.periods import REFERENCE_TZ
from progression.middleware.logging import setup_logging
from progression.redis_client import create_client, ensure_consumer_groups

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "progression-consumers"
CONSUMER_JOB_ID = "progression-event-consumer"


def _engine_for(session, ctx: dict) -> ProgressionEngine:  # type: ignore[type-arg]  # noqa: ANN001
    settings = get_settings()
    dispatcher = RedisNotificationDispatcher(ctx["stream_redis"], settings.notification_channel_prefix)
    return ProgressionEngine(session, dispatcher, settings)


def _parse(raw_data: dict) -> dict:  # type: ignore[type-arg]
    data_str = raw_data.get("data")
    if isinstance(data_str, str):
        try:
            return json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning("Undecodable event payload, using raw fields")
    return dict(raw_data)


async def progression_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis stream connections and start the consumer."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = create_client(settings.redis_url, max_connections=20)
    await ensure_consumer_groups(redis_client, STREAMS, CONSUMER_GROUP)

    ctx["stream_redis"] = redis_client
    await ctx["redis"].enqueue_job("consume_progression_events", _job_id=CONSUMER_JOB_ID)
    logger.info("Progression worker started")


async def progression_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("stream_redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Progression worker shut down")


async def handle_message(ctx: dict, stream: str, msg_id: str, raw_data: dict) -> None:  # type: ignore[type-arg]
    """Process one stream entry in its own session, then ack it.

    Rejected events are acked too: replaying a malformed payload cannot
    succeed. Unexpected failures leave the entry pending until
    ``reclaim_pending_events`` picks it up.
    """
    redis_client: aioredis.Redis = ctx["stream_redis"]
    data = _parse(raw_data)

    async with get_session_factory()() as session:
        outcome = await dispatch_event(_engine_for(session, ctx), stream, data)

    if outcome.error is not None:
        logger.warning("Event %s from %s finished with %s", msg_id, stream, outcome.error)
    elif outcome.completed_missions or outcome.awarded_badges:
        logger.info(
            "Event %s from %s: missions %s, badges %s",
            msg_id, stream, outcome.completed_missions, outcome.awarded_badges,
        )
    await redis_client.xack(stream, CONSUMER_GROUP, msg_id)


async def reclaim_pending_events(ctx: dict) -> int:  # type: ignore[type-arg]
    """Take over entries left unacked past the idle threshold and process them.

    Covers events whose handler raised and events read by a consumer that
    died before acking. Returns the number of entries processed.
    """
    redis_client: aioredis.Redis = ctx["stream_redis"]
    settings = get_settings()
    processed = 0

    for stream in STREAMS:
        start_id = "0-0"
        while True:
            try:
                result = await redis_client.xautoclaim(
                    stream,
                    CONSUMER_GROUP,
                    settings.event_consumer_name,
                    min_idle_time=settings.event_reclaim_idle_ms,
                    start_id=start_id,
                    count=100,
                )
            except aioredis.ResponseError as e:
                logger.error("XAUTOCLAIM error on %s: %s", stream, e)
                break

            start_id, messages = result[0], result[1]
            for msg_id, raw_data in messages:
                if raw_data is None:
                    # Trimmed from the stream while pending; nothing left to replay.
                    await redis_client.xack(stream, CONSUMER_GROUP, msg_id)
                    continue
                try:
                    await handle_message(ctx, stream, msg_id, raw_data)
                    processed += 1
                except Exception:
                    logger.exception("Failed to reprocess %s from %s", msg_id, stream)

            if start_id in ("0-0", b"0-0"):
                break

    if processed:
        logger.info("Reclaimed %d pending events", processed)
    return processed


async def consume_progression_events(ctx: dict) -> None:  # type: ignore[type-arg]
    """Main consumer loop: reads trigger events and feeds the engine.

    Pending entries are reclaimed once before reading new ones; the
    scheduled reclaim job picks up anything that fails later.
    """
    redis_client: aioredis.Redis = ctx["stream_redis"]
    consumer_name = get_settings().event_consumer_name
    streams = {s: ">" for s in STREAMS}

    await reclaim_pending_events(ctx)

    while True:
        try:
            events = await redis_client.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=consumer_name,
                streams=streams,
                count=100,
                block=5000,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            await asyncio.sleep(1)
            continue

        for stream_name, messages in events or []:
            stream_str = stream_name if isinstance(stream_name, str) else stream_name.decode()
            for msg_id, raw_data in messages:
                try:
                    await handle_message(ctx, stream_str, msg_id, raw_data)
                except Exception:
                    logger.exception("Failed to process %s from %s", msg_id, stream_str)


async def _with_engine(ctx: dict, job) -> int:  # type: ignore[type-arg]  # noqa: ANN001
    async with get_session_factory()() as session:
        return await job(_engine_for(session, ctx))


async def daily_mission_reset(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: local midnight."""
    return await _with_engine(ctx, lambda engine: engine.missions.reset_daily_missions())


async def weekly_mission_reset(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: local Monday 00:00."""
    return await _with_engine(ctx, lambda engine: engine.missions.reset_weekly_missions())


async def monthly_xp_reset(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: local 1st of the month 00:00."""
    return await _with_engine(ctx, lambda engine: engine.xp.reset_monthly_xp())


class ProgressionWorkerSettings:
    """arq worker settings for the progression consumer and reset jobs."""

    functions = [consume_progression_events]
    cron_jobs = [
        cron(daily_mission_reset, hour=0, minute=0),
        cron(weekly_mission_reset, weekday=0, hour=0, minute=0),
        cron(monthly_xp_reset, day=1, hour=0, minute=0),
        cron(reclaim_pending_events, minute=set(range(0, 60, 5))),
    ]
    timezone = REFERENCE_TZ
    on_startup = progression_startup
    on_shutdown = progression_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 0  # consume_progression_events runs forever
    allow_abort_jobs = True

"""Notification dispatch and the post-commit outbox.

Services never publish while a transaction is open: they queue into the
``NotificationOutbox`` owned by the current unit of work, and the outbox
is flushed only after a successful commit. Rolled-back work discards its
entries, so a notification is never sent for a reward that did not stick.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def dispatch(self, user_id: str, template_key: str, params: dict[str, Any]) -> bool: ...


class RedisNotificationDispatcher:
    """Publish notifications on the per-user pub/sub channel (``ws:user:{id}``)."""

    def __init__(self, redis: aioredis.Redis | None, channel_prefix: str = "ws:user:") -> None:
        self.redis = redis
        self.channel_prefix = channel_prefix

    async def dispatch(self, user_id: str, template_key: str, params: dict[str, Any]) -> bool:
        if self.redis is None:
            return False
        payload = json.dumps({"type": "notification", "template_key": template_key, "params": params})
        await self.redis.publish(f"{self.channel_prefix}{user_id}", payload)
        return True


class NullDispatcher:
    """Dispatcher used when no transport is configured."""

    async def dispatch(self, user_id: str, template_key: str, params: dict[str, Any]) -> bool:
        return False


@dataclass(frozen=True)
class PendingNotification:
    user_id: str
    template_key: str
    params: dict[str, Any]


class NotificationOutbox:
    """Notifications queued by the current transaction."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self.dispatcher = dispatcher
        self._pending: list[PendingNotification] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> list[PendingNotification]:
        return list(self._pending)

    def queue(self, user_id: str, template_key: str, params: dict[str, Any]) -> None:
        self._pending.append(PendingNotification(user_id, template_key, params))

    def mark(self) -> int:
        """Position to roll back to when a savepoint is released with an error."""
        return len(self._pending)

    def rollback_to(self, mark: int) -> None:
        del self._pending[mark:]

    def discard(self) -> None:
        self._pending.clear()

    async def flush(self) -> int:
        """Send everything queued. Dispatch failures are logged and dropped."""
        pending, self._pending = self._pending, []
        sent = 0
        for item in pending:
            try:
                if await self.dispatcher.dispatch(item.user_id, item.template_key, item.params):
                    sent += 1
            except Exception:
                logger.warning(
                    "Failed to dispatch %s notification to user %s",
                    item.template_key, item.user_id, exc_info=True,
                )
        return sent

"""
Best-effort notification fan-out over Redis pub/sub.

Permission changes are the source of truth; a notification that cannot be
delivered is logged and dropped, never allowed to fail the operation.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from app.core.config import get_settings
from app.core.redis import get_redis

log = structlog.get_logger()


class Notifier(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    """Used when notifications are disabled."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        return None


class RedisNotifier:
    def __init__(self, channel: str):
        self.channel = channel

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        message = {
            "type": event,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        r = await get_redis()
        await r.publish(self.channel, json.dumps(message, default=str))


def get_notifier() -> Notifier:
    settings = get_settings()
    if not settings.notifications_enabled:
        return NullNotifier()
    return RedisNotifier(settings.notifications_channel)


async def safe_notify(notifier: Notifier, event: str, payload: dict[str, Any]) -> bool:
    """Deliver a notification, swallowing and logging any failure."""
    try:
        await notifier.notify(event, payload)
    except Exception as exc:
        log.warning("notification.failed", notification=event, error=str(exc))
        return False
    return True

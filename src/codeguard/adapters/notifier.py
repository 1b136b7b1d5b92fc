# Author: Bradley R. Kinnard — tell the user, don't wait for them to listen

"""
Push updates keyed by user (analysis_started / analysis_complete / analysis_error).
Published on redis channel user:<id>; the socket layer fans it out from there.
Best-effort: bounded, logged, never raised.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from src.codeguard.adapters.redis_client import get_redis

log = logging.getLogger(__name__)

CHANNEL_PREFIX = "user:"


class Notifier(Protocol):
    async def publish(self, user_id: str, event: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    async def publish(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        return None


class RedisNotifier:

    def __init__(self, redis_factory: Callable[[], Awaitable[Any]] = get_redis, timeout: float = 1.0):
        self._redis_factory = redis_factory
        self.timeout = timeout

    async def _send(self, user_id: str, message: str) -> int:
        r = await self._redis_factory()
        return await r.publish(f"{CHANNEL_PREFIX}{user_id}", message)

    async def publish(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "timestamp_millis": int(time.time() * 1000), **payload}, default=str)
        try:
            receivers = await asyncio.wait_for(self._send(user_id, message), timeout=self.timeout)
            log.debug(f"published {event} for {user_id} to {receivers} subscribers")
        except Exception as e:
            log.warning(f"notify {event} for {user_id} failed: {e!r}")


def build_notifier(backend: str, timeout: float) -> Notifier:
    if backend == "redis":
        return RedisNotifier(timeout=timeout)
    return NullNotifier()

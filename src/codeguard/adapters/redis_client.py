# Author: Bradley R. Kinnard — cache money

"""
Async redis connection shared by the result cache and the notifier.
Single instance, lazy init, cleaned up in lifespan. Socket timeouts so a dead
redis can't hang a request past the storage budget.
"""

import logging
from redis.asyncio import Redis

from src.codeguard.config import settings

log = logging.getLogger(__name__)

_redis: Redis | None = None


async def get_redis() -> Redis:
    """Get or create redis connection. Call once per request is fine, it's pooled."""
    global _redis
    if _redis is None:
        log.info(f"connecting to redis at {settings.redis_url.split('@')[-1]}")
        _redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.storage_timeout,
            socket_connect_timeout=settings.storage_timeout,
        )
    return _redis


async def close_redis() -> None:
    """Shut it down. Call from lifespan on app shutdown."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
        log.info("redis connection closed")


async def redis_status() -> str:
    """Health check. "ok" or the error, never raises."""
    try:
        r = await get_redis()
        await r.ping()
        return "ok"
    except Exception as e:
        log.warning(f"redis ping failed: {e}")
        return f"error: {e}"

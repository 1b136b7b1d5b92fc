# Author: Bradley R. Kinnard — save LLM calls or go broke

"""
Result cache, keyed by fingerprint, stored as JSON.

The cache is an optimization and never a correctness dependency: every backend
call is timeout-bounded and any failure is logged and treated as a miss.
Redis in prod, a locked TTL dict for dev and tests.
"""

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from src.codeguard.adapters import metrics_client as metrics
from src.codeguard.adapters.redis_client import get_redis
from src.codeguard.adapters.telemetry import emit
from src.codeguard.core.models import AnalysisResult

log = logging.getLogger(__name__)

CACHE_PREFIX = "analysis:fp:"
USER_INDEX_PREFIX = "analysis:user:"
DEFAULT_TTL = 300  # 5 minutes
DEFAULT_TIMEOUT = 2.0


class ResultCache(ABC):
    """Fail-open wrapper. Subclasses only implement the raw string ops."""

    def __init__(self, default_ttl: int = DEFAULT_TTL, timeout: float = DEFAULT_TIMEOUT):
        self.default_ttl = default_ttl
        self.timeout = timeout

    @abstractmethod
    async def _get_raw(self, fingerprint: str) -> str | None: ...

    @abstractmethod
    async def _set_raw(self, fingerprint: str, data: str, ttl: int, user_id: str | None) -> None: ...

    @abstractmethod
    async def _delete_raw(self, fingerprint: str) -> None: ...

    @abstractmethod
    async def _invalidate_user_raw(self, user_id: str) -> int: ...

    async def _bounded(self, coro: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def get(self, fingerprint: str) -> AnalysisResult | None:
        """Cached result or None. None on miss, expiry, timeout, garbage, anything."""
        try:
            data = await self._bounded(self._get_raw(fingerprint))
            if data is None:
                metrics.cache_miss_total.inc()
                emit("cache_miss", fingerprint=fingerprint[:12])
                return None
            result = AnalysisResult.model_validate_json(data)
        except Exception as e:
            # don't crash if the backend is down, just miss
            log.warning(f"cache get failed for {fingerprint[:8]}: {e!r}")
            metrics.cache_error_total.labels(op="get").inc()
            return None
        metrics.cache_hit_total.inc()
        emit("cache_hit", fingerprint=fingerprint[:12])
        return result

    async def put(self, fingerprint: str, result: AnalysisResult, ttl: int | None = None, user_id: str | None = None) -> bool:
        """Store (or overwrite) a result. user_id makes it reachable by invalidate_by_user."""
        if ttl is None:
            ttl = self.default_ttl
        try:
            data = result.model_dump_json()
            await self._bounded(self._set_raw(fingerprint, data, ttl, user_id))
            return True
        except Exception as e:
            log.warning(f"cache set failed for {fingerprint[:8]}: {e!r}")
            metrics.cache_error_total.labels(op="put").inc()
            return False

    async def delete(self, fingerprint: str) -> bool:
        try:
            await self._bounded(self._delete_raw(fingerprint))
            return True
        except Exception as e:
            log.warning(f"cache delete failed for {fingerprint[:8]}: {e!r}")
            metrics.cache_error_total.labels(op="delete").inc()
            return False

    async def invalidate_by_user(self, user_id: str) -> int:
        """Drop every entry put for this user. Returns how many went."""
        try:
            removed = await self._bounded(self._invalidate_user_raw(user_id))
        except Exception as e:
            log.warning(f"cache invalidation failed for user {user_id}: {e!r}")
            metrics.cache_error_total.labels(op="invalidate").inc()
            return 0
        log.info(f"invalidated {removed} cached analyses for user {user_id}")
        return removed


class RedisResultCache(ResultCache):
    """
    analysis:fp:<fingerprint> holds the JSON. analysis:user:<user_id> is a SET of
    fingerprints so invalidation doesn't need a KEYS scan.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[Any]] = get_redis,
        default_ttl: int = DEFAULT_TTL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(default_ttl=default_ttl, timeout=timeout)
        self._redis_factory = redis_factory

    async def _get_raw(self, fingerprint: str) -> str | None:
        r = await self._redis_factory()
        return await r.get(f"{CACHE_PREFIX}{fingerprint}")

    async def _set_raw(self, fingerprint: str, data: str, ttl: int, user_id: str | None) -> None:
        r = await self._redis_factory()
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(f"{CACHE_PREFIX}{fingerprint}", data, ex=ttl)
            if user_id is not None:
                index = f"{USER_INDEX_PREFIX}{user_id}"
                pipe.sadd(index, fingerprint)
                # index outlives the longest entry it could point at
                pipe.expire(index, max(ttl, self.default_ttl))
            await pipe.execute()

    async def _delete_raw(self, fingerprint: str) -> None:
        r = await self._redis_factory()
        await r.delete(f"{CACHE_PREFIX}{fingerprint}")

    async def _invalidate_user_raw(self, user_id: str) -> int:
        r = await self._redis_factory()
        index = f"{USER_INDEX_PREFIX}{user_id}"
        members = await r.smembers(index)
        if not members:
            return 0
        removed = await r.delete(*[f"{CACHE_PREFIX}{fp}" for fp in members])
        await r.delete(index)
        return int(removed)


class MemoryResultCache(ResultCache):
    """
    Process-local TTL dict. Locked so it's safe from threads too, not just tasks.
    Expired entries go on read, and in a sweep on write at most every sweep_interval seconds,
    so a write-heavy process can't pile up dead entries or stale user index members.
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 1.0,
    ):
        super().__init__(default_ttl=default_ttl, timeout=timeout)
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}  # fingerprint -> (json, expires_at)
        self._by_user: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def _sweep(self, now: float) -> None:
        """Drop expired entries and index members pointing nowhere. Caller holds the lock."""
        for fp in [fp for fp, (_, expires_at) in self._entries.items() if now >= expires_at]:
            del self._entries[fp]
        for user_id in list(self._by_user):
            live = {fp for fp in self._by_user[user_id] if fp in self._entries}
            if live:
                self._by_user[user_id] = live
            else:
                del self._by_user[user_id]
        self._next_sweep = now + self.sweep_interval

    async def _get_raw(self, fingerprint: str) -> str | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            data, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[fingerprint]
                return None
            return data

    async def _set_raw(self, fingerprint: str, data: str, ttl: int, user_id: str | None) -> None:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[fingerprint] = (data, now + ttl)
            if user_id is not None:
                self._by_user.setdefault(user_id, set()).add(fingerprint)

    async def _delete_raw(self, fingerprint: str) -> None:
        with self._lock:
            self._entries.pop(fingerprint, None)

    async def _invalidate_user_raw(self, user_id: str) -> int:
        with self._lock:
            removed = 0
            for fp in self._by_user.pop(user_id, set()):
                if self._entries.pop(fp, None) is not None:
                    removed += 1
            return removed

    def indexed_fingerprints(self, user_id: str) -> set[str]:
        with self._lock:
            return set(self._by_user.get(user_id, ()))

    def __len__(self) -> int:
        """Live entries only."""
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._entries.values() if now < expires_at)

# Author: Bradley R. Kinnard — one LLM call per fingerprint, no matter who's asking

"""
In-flight dedup. First caller for a fingerprint starts the computation, everyone
else who shows up before it settles gets the same result (or the same exception).
Different fingerprints never wait on each other.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from src.codeguard.adapters import metrics_client as metrics

log = logging.getLogger(__name__)

T = TypeVar("T")


class DedupGate:

    def __init__(self):
        # registry only touched from the event loop thread, no awaits between check and insert
        self._inflight: dict[str, asyncio.Task] = {}
        self._waiters: dict[str, int] = {}

    async def run_exclusive(self, fingerprint: str, compute: Callable[[], Awaitable[T]]) -> T:
        """
        Run compute() unless it's already running for this fingerprint, in which case join it.
        Shielded: a caller giving up doesn't cancel the work for everyone else.
        """
        task = self._inflight.get(fingerprint)
        if task is not None:
            self._waiters[fingerprint] = self._waiters.get(fingerprint, 0) + 1
            metrics.dedup_join_total.inc()
            log.info(f"joining in-flight analysis for {fingerprint[:8]}")
        else:
            task = asyncio.ensure_future(compute())
            self._inflight[fingerprint] = task
            self._waiters[fingerprint] = 1
            task.add_done_callback(lambda t, fp=fingerprint: self._settle(fp, t))

        return await asyncio.shield(task)

    def _settle(self, fingerprint: str, task: asyncio.Task) -> None:
        if self._inflight.get(fingerprint) is task:
            del self._inflight[fingerprint]
            waiters = self._waiters.pop(fingerprint, 0)
            if waiters > 1:
                log.debug(f"released {waiters} waiters for {fingerprint[:8]}")
        # mark the exception retrieved; every awaiting caller re-raises it from shield()
        if not task.cancelled():
            task.exception()

    def in_flight(self) -> int:
        return len(self._inflight)

    def waiter_count(self, fingerprint: str) -> int:
        return self._waiters.get(fingerprint, 0)

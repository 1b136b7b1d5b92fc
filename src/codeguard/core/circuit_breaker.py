# Author: Bradley R. Kinnard — stop hitting it when it's down

"""
Per-service circuit breaker. Purely time-gated: closed -> open after N transient
failures inside the window, open -> closed once the window has passed since it
opened. No half-open probing. Closing wipes the failure history.

One lock guards all services. Every read-modify-write happens under it, so two
failures landing together can't lose an update and under- or over-trip.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.codeguard.adapters import metrics_client as metrics
from src.codeguard.adapters.telemetry import emit
from src.codeguard.core.errors import ErrorKind, counts_toward_breaker
from src.codeguard.core.models import ServiceErrorStats

log = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = 5
DEFAULT_RESET_WINDOW = 60.0  # seconds


@dataclass(frozen=True)
class BreakerPolicy:
    max_errors: int = DEFAULT_MAX_ERRORS
    reset_window: float = DEFAULT_RESET_WINDOW


@dataclass
class CircuitState:
    recent_errors: deque[float] = field(default_factory=deque)  # wall-clock seconds, oldest first
    is_open: bool = False
    opened_at: float | None = None


class CircuitBreaker:
    """
    Registry of CircuitState per upstream service name.

    Usage:
        breaker = CircuitBreaker()
        if breaker.is_open("analysis"):
            ...serve fallback...
        try:
            await call()
        except Exception as e:
            breaker.record_failure("analysis", classify_error(e))
    """

    def __init__(
        self,
        default_policy: BreakerPolicy | None = None,
        overrides: dict[str, BreakerPolicy] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.default_policy = default_policy if default_policy is not None else BreakerPolicy()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._states: dict[str, CircuitState] = {}
        self._lock = threading.Lock()

    def policy_for(self, service: str) -> BreakerPolicy:
        return self._overrides.get(service, self.default_policy)

    def _prune(self, state: CircuitState, now: float, window: float) -> None:
        # deque is time ordered, so stale entries are all at the left
        while state.recent_errors and now - state.recent_errors[0] >= window:
            state.recent_errors.popleft()

    def _maybe_close(self, service: str, state: CircuitState, now: float, window: float) -> bool:
        """Open -> closed once the window has passed. Caller holds the lock. True if it closed."""
        if state.is_open and state.opened_at is not None and now - state.opened_at > window:
            del self._states[service]
            return True
        return False

    def record_failure(self, service: str, kind: ErrorKind = ErrorKind.GENERIC) -> bool:
        """
        Count one failed upstream call. Auth/validation kinds are ignored.
        Returns True if the breaker is open after this call.
        """
        if not counts_toward_breaker(kind):
            log.debug(f"{service} failure of kind {kind.value} does not count toward breaker")
            return self.is_open(service)

        policy = self.policy_for(service)
        tripped = False
        expired = False
        with self._lock:
            now = self._clock()
            state = self._states.get(service)
            if state is not None and self._maybe_close(service, state, now, policy.reset_window):
                expired = True
                state = None
            if state is None:
                state = self._states[service] = CircuitState()

            state.recent_errors.append(now)
            self._prune(state, now, policy.reset_window)

            if not state.is_open and len(state.recent_errors) >= policy.max_errors:
                state.is_open = True
                state.opened_at = now
                tripped = True
            is_open = state.is_open
            count = len(state.recent_errors)

        if expired:
            self._announce_close(service)
        if tripped:
            log.warning(f"circuit breaker opened for {service} after {count} errors")
            metrics.circuit_trip_total.labels(service=service).inc()
            metrics.circuit_open.labels(service=service).set(1)
            emit("circuit_open", service=service, error_count=count, error_kind=kind.value)
        return is_open

    def is_open(self, service: str) -> bool:
        """Check (and lazily expire) the breaker for a service."""
        policy = self.policy_for(service)
        with self._lock:
            state = self._states.get(service)
            if state is None or not state.is_open:
                return False
            closed = self._maybe_close(service, state, self._clock(), policy.reset_window)

        if closed:
            self._announce_close(service)
            return False
        return True

    def _announce_close(self, service: str) -> None:
        """Window ran out on an open breaker. Called outside the lock."""
        log.info(f"circuit breaker reset for {service}")
        metrics.circuit_open.labels(service=service).set(0)
        emit("circuit_reset", service=service, manual=False)

    def failure_count(self, service: str) -> int:
        policy = self.policy_for(service)
        with self._lock:
            state = self._states.get(service)
            if state is None:
                return 0
            self._prune(state, self._clock(), policy.reset_window)
            return len(state.recent_errors)

    def stats(self) -> dict[str, ServiceErrorStats]:
        """error_count / circuit_open / last_error_time per service we've seen fail."""
        out: dict[str, ServiceErrorStats] = {}
        with self._lock:
            now = self._clock()
            for service, state in self._states.items():
                self._prune(state, now, self.policy_for(service).reset_window)
                last = max(state.recent_errors) if state.recent_errors else None
                out[service] = ServiceErrorStats(
                    error_count=len(state.recent_errors),
                    circuit_open=state.is_open,
                    last_error_time=datetime.fromtimestamp(last, tz=timezone.utc).isoformat() if last else None,
                )
        return out

    def reset(self, service: str | None = None) -> None:
        """Manual recovery. One service, or everything when service is None."""
        with self._lock:
            if service is None:
                services = list(self._states)
                self._states.clear()
            else:
                services = [service] if self._states.pop(service, None) is not None else []

        for s in services:
            metrics.circuit_open.labels(service=s).set(0)
        if service is None:
            log.info("all circuit breakers reset")
        else:
            log.info(f"circuit breaker manually reset for {service}")
        emit("circuit_reset", service=service or "*", manual=True)

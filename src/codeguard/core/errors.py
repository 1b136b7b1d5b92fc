# Author: Bradley R. Kinnard — name your failures

"""
Exception taxonomy plus the rule table that sorts upstream failures into kinds.

Only InputError and UpstreamRejectedError ever reach a caller. Transient upstream
failures become fallback results, storage failures are swallowed at the call site,
and TypeError from bad fingerprint input is a bug and propagates as-is.
"""

from collections.abc import Callable
from enum import Enum


class CodeguardError(Exception):
    """Base for everything the pipeline raises on purpose."""


class InputError(CodeguardError):
    """Malformed request. 4xx."""


class PayloadTooLargeError(InputError):
    pass


class AnalysisNotFoundError(InputError):
    pass


class StorageError(CodeguardError):
    """Cache or persisted store misbehaved. Always absorbed."""


class UpstreamError(CodeguardError):
    """Raw failure from the upstream analyzer: status code if there was one, message always."""

    def __init__(self, message: str, status_code: int | None = None, service: str = "analysis"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.service = service


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    AUTH_FAILURE = "auth_failure"
    VALIDATION_FAILURE = "validation_failure"
    GENERIC = "generic"


# auth/validation are the caller's problem, they don't count against the upstream
TRIPPING_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.UNAVAILABLE, ErrorKind.GENERIC})


class UpstreamRejectedError(CodeguardError):
    """Upstream said no because of auth or bad input. Surfaced to the caller, never trips the breaker."""

    def __init__(self, kind: ErrorKind, message: str, service: str = "analysis"):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.service = service


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


Predicate = Callable[[int | None, str, BaseException], bool]

# evaluated top to bottom, first match wins. order IS the precedence.
CLASSIFICATION_RULES: list[tuple[ErrorKind, Predicate]] = [
    (ErrorKind.RATE_LIMITED, lambda status, msg, exc: status == 429 or "rate limit" in msg),
    (ErrorKind.TIMEOUT, lambda status, msg, exc: (
        status in (408, 504) or isinstance(exc, TimeoutError) or "timeout" in msg or "timed out" in msg
    )),
    (ErrorKind.UNAVAILABLE, lambda status, msg, exc: (
        status in (502, 503) or isinstance(exc, ConnectionError) or "unavailable" in msg
    )),
    (ErrorKind.AUTH_FAILURE, lambda status, msg, exc: status in (401, 403) or "auth" in msg),
    (ErrorKind.VALIDATION_FAILURE, lambda status, msg, exc: status in (400, 422) or "validation" in msg),
]


def classify_error(exc: BaseException) -> ErrorKind:
    """Run the rule table. Anything unmatched is GENERIC."""
    status = _status_of(exc)
    msg = str(getattr(exc, "message", None) or exc).lower()
    for kind, matches in CLASSIFICATION_RULES:
        if matches(status, msg, exc):
            return kind
    return ErrorKind.GENERIC


def counts_toward_breaker(kind: ErrorKind) -> bool:
    return kind in TRIPPING_KINDS

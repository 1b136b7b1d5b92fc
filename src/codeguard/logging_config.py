# Author: Bradley R. Kinnard — logs or it didn't happen

"""Structlog config. JSON in prod, pretty in dev. Request and user IDs injected from context."""

import logging
import os
import sys
from contextvars import ContextVar
import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)

QUIET_LOGGERS = ("botocore", "aiobotocore", "httpx", "openai")


def set_request_id(rid: str) -> None:
    request_id_ctx.set(rid)


def set_user_id(uid: str | None) -> None:
    user_id_ctx.set(uid)


def get_request_id() -> str:
    return request_id_ctx.get() or "unknown"


def _add_context_ids(logger, method, event_dict):
    event_dict.setdefault("request_id", request_id_ctx.get() or "none")
    uid = user_id_ctx.get()
    if uid is not None:
        event_dict.setdefault("user_id", uid)
    return event_dict


def setup_logging(level: str = "INFO", verbose: bool | None = None) -> None:
    """Wire up structlog once from lifespan. verbose (or VERBOSE env) for colorful dev output."""
    if verbose is None:
        verbose = os.getenv("VERBOSE", "").lower() in ("1", "true", "yes")

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_context_ids,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.dev.ConsoleRenderer(colors=True) if verbose else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # sdk clients are chatty at INFO
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

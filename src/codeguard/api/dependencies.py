# Author: Bradley R. Kinnard — gatekeepers

"""FastAPI dependencies: the shared orchestrator and who's asking."""

import logging

from fastapi import Header

from src.codeguard.config import settings
from src.codeguard.core.errors import InputError
from src.codeguard.logging_config import set_user_id
from src.codeguard.services.analyzer_service import AnalysisOrchestrator, build_orchestrator

log = logging.getLogger(__name__)

_orchestrator: AnalysisOrchestrator | None = None


def get_orchestrator() -> AnalysisOrchestrator:
    """One per process. Cache, breaker and dedup state only work if everyone shares them."""
    global _orchestrator
    if _orchestrator is None:
        log.info(f"building orchestrator cache={settings.cache_backend} store={settings.store_backend}")
        _orchestrator = build_orchestrator(settings)
    return _orchestrator


def reset_orchestrator() -> None:
    """For testing. Next request builds a fresh one."""
    global _orchestrator
    _orchestrator = None


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Identity is settled upstream of us (gateway/JWT). We just need the id
    it resolved to, because fingerprints and cache invalidation are per user.
    """
    if not x_user_id or not x_user_id.strip():
        raise InputError("X-User-ID header is required")
    uid = x_user_id.strip()
    set_user_id(uid)  # push to structlog context
    return uid

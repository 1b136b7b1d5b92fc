# Author: Bradley R. Kinnard — the app's pulse check

"""Health with actual connectivity checks, /metrics, and the breaker admin endpoints."""

import logging
import subprocess
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from src.codeguard.adapters.analysis_store import DynamoAnalysisStore
from src.codeguard.adapters.metrics_client import get_metrics
from src.codeguard.adapters.redis_client import redis_status
from src.codeguard.api.dependencies import get_orchestrator
from src.codeguard.api.schemas import ErrorStatsResponse, HealthResponse, ResetResponse
from src.codeguard.config import settings
from src.codeguard.services.analyzer_service import AnalysisOrchestrator

router = APIRouter(tags=["health"])
log = logging.getLogger(__name__)


def _git_sha() -> str | None:
    try:
        r = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True, text=True, timeout=1, check=False
        )
        return r.stdout.strip() or None
    except Exception:
        return None


async def _check_redis() -> str:
    """ping redis, return ok or error message. skipped when nothing uses it."""
    if settings.cache_backend != "redis" and settings.notifier_backend != "redis":
        return "skipped"
    return await redis_status()


async def _check_store(orchestrator: AnalysisOrchestrator) -> str:
    """describe the analyses table. skipped for the memory store or with no endpoint and no creds."""
    store = orchestrator.store
    if not isinstance(store, DynamoAnalysisStore):
        return "skipped"
    if not settings.dynamodb_endpoint and not settings.aws_access_key_id:
        return "skipped"
    return await store.ping()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]
) -> HealthResponse:
    """full health check: redis, store, and which breakers are open"""
    rid = getattr(request.state, "request_id", "unknown")

    redis_check = await _check_redis()
    store_check = await _check_store(orchestrator)
    open_circuits = sorted(s for s, st in orchestrator.get_error_stats().items() if st.circuit_open)

    # ok or skipped counts as healthy. an open breaker still serves fallbacks, so degraded
    all_ok = all(s in ("ok", "skipped") for s in [redis_check, store_check])
    status = "ok" if all_ok and not open_circuits else "degraded"

    log.info(f"health | redis={redis_check} store={store_check} open={open_circuits}")

    return HealthResponse(
        status=status,
        request_id=rid,
        git_sha=_git_sha(),
        redis=redis_check,
        store=store_check,
        circuits_open=open_circuits
    )


@router.get("/metrics")
async def metrics() -> Response:
    """prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type="text/plain; charset=utf-8")


@router.get("/errors/stats", response_model=ErrorStatsResponse)
async def error_stats(
    request: Request,
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]
) -> ErrorStatsResponse:
    """per-service error counts and breaker state"""
    rid = getattr(request.state, "request_id", "unknown")
    return ErrorStatsResponse(services=orchestrator.get_error_stats(), request_id=rid)


@router.post("/errors/circuit-breakers/reset", response_model=ResetResponse)
async def reset_circuit_breakers(
    request: Request,
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)],
    service: str | None = None
) -> ResetResponse:
    """manual recovery. ?service=analysis for one, nothing for all"""
    rid = getattr(request.state, "request_id", "unknown")
    orchestrator.reset_circuit_breaker(service)
    message = f"Circuit breaker reset for {service}" if service else "All circuit breakers reset"
    log.info(f"breaker reset | service={service or '*'}")
    return ResetResponse(message=message, service=service, request_id=rid)

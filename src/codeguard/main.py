# Author: Bradley R. Kinnard — because the AI backend will go down, and the user shouldn't notice.

"""
Routes code to an upstream AI analyzer and keeps answering when it doesn't.
Fingerprint cache, dedup of identical in-flight requests, a circuit breaker, and
fallback results when the upstream is slow, rate limited or down.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn
from src.codeguard.adapters.redis_client import close_redis
from src.codeguard.api.dependencies import get_orchestrator
from src.codeguard.api.routes_analysis import router as analysis_router
from src.codeguard.api.routes_health import router as health_router
from src.codeguard.api.schemas import ErrorResponse
from src.codeguard.config import settings
from src.codeguard.core.errors import (
    AnalysisNotFoundError,
    ErrorKind,
    InputError,
    PayloadTooLargeError,
    StorageError,
    UpstreamRejectedError,
)
from src.codeguard.logging_config import get_request_id, set_request_id, set_user_id, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging(level=settings.log_level, verbose=settings.verbose)
    get_orchestrator()  # wire components up front so the first request doesn't pay for it
    logger.info("Service started; waiting for requests")
    yield
    logger.info("Shutdown signal received; wrapping up")
    await close_redis()


app = FastAPI(
    title="Codeguard",
    version="0.1.0",
    lifespan=lifespan
)


@app.middleware("http")
async def inject_request_id(request: Request, call_next):
    # ALB might send one, otherwise make it up
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    set_request_id(rid)  # push to structlog context
    set_user_id(None)
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, request_id=get_request_id())
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(PayloadTooLargeError)
async def payload_too_large(request: Request, exc: PayloadTooLargeError) -> JSONResponse:
    return _error(413, "payload_too_large", str(exc))


@app.exception_handler(AnalysisNotFoundError)
async def not_found(request: Request, exc: AnalysisNotFoundError) -> JSONResponse:
    return _error(404, "not_found", str(exc))


@app.exception_handler(InputError)
async def bad_input(request: Request, exc: InputError) -> JSONResponse:
    return _error(400, "invalid_request", str(exc))


@app.exception_handler(UpstreamRejectedError)
async def upstream_rejected(request: Request, exc: UpstreamRejectedError) -> JSONResponse:
    if exc.kind == ErrorKind.AUTH_FAILURE:
        return _error(401, "upstream_auth_failure", exc.message)
    return _error(400, "upstream_validation_failure", exc.message)


@app.exception_handler(StorageError)
async def storage_unavailable(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"storage error surfaced: {exc}")
    return _error(503, "storage_unavailable", str(exc))


app.include_router(health_router, prefix="/api/v1")
app.include_router(analysis_router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run("src.codeguard.main:app", host="0.0.0.0", port=8000, reload=True)

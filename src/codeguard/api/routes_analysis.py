# Author: Bradley R. Kinnard — where code goes to be judged

"""POST /analyze, /analyze/batch, suggestion status updates, and the read side: history and filtered suggestions."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from src.codeguard.api.dependencies import get_orchestrator, get_user_id
from src.codeguard.api.schemas import (
    AnalysisHistory,
    AnalysisResult,
    AnalyzeRequest,
    BatchAnalyzeRequest,
    BatchResult,
    FilteredSuggestions,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from src.codeguard.core.errors import InputError
from src.codeguard.core.models import AnalysisRequest, Severity, SuggestionStatus, SuggestionType
from src.codeguard.services.analyzer_service import AnalysisOrchestrator

router = APIRouter(prefix="/analyze", tags=["analyze"])
log = logging.getLogger(__name__)


@router.post("", response_model=AnalysisResult)
async def analyze_code(
    body: AnalyzeRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]
) -> AnalysisResult:
    """one file in, one analysis out. may be cached, may be a fallback, check the flags."""
    log.info(f"analyze | path={body.file_path} len={len(body.code_content)}")

    result = await orchestrator.analyze(AnalysisRequest(
        code_content=body.code_content,
        file_path=body.file_path,
        user_id=user_id,
        options=body.options
    ))

    log.info(f"analyze done | id={result.analysis_id} cache={result.from_cache} fallback={result.is_fallback}")
    return result


@router.post("/batch", response_model=BatchResult)
async def analyze_batch(
    body: BatchAnalyzeRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]
) -> BatchResult:
    """every file analyzed independently. one bad file doesn't sink the batch."""
    if not body.files:
        raise InputError("files array is required and must not be empty")

    log.info(f"batch | files={len(body.files)}")
    return await orchestrator.analyze_batch([
        AnalysisRequest(code_content=f.code_content, file_path=f.file_path, user_id=user_id, options=f.options)
        for f in body.files
    ])


@router.post("/{analysis_id}/suggestions/{suggestion_id}/status", response_model=StatusUpdateResponse)
async def update_suggestion_status(
    request: Request,
    analysis_id: str,
    suggestion_id: str,
    body: StatusUpdateRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]
) -> StatusUpdateResponse:
    """accept/reject/apply a suggestion. drops the user's cached analyses."""
    request_id = getattr(request.state, "request_id", "unknown")

    suggestion = await orchestrator.update_suggestion_status(
        analysis_id=analysis_id,
        suggestion_id=suggestion_id,
        status=body.status,
        user_id=user_id,
        feedback=body.feedback
    )
    return StatusUpdateResponse(suggestion=suggestion, request_id=request_id)


@router.get("/suggestions", response_model=FilteredSuggestions)
async def filtered_suggestions(
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)],
    file_path: Annotated[str, Query(min_length=1)],
    severity: Annotated[list[Severity] | None, Query()] = None,
    type: Annotated[list[SuggestionType] | None, Query()] = None,
    status: Annotated[list[SuggestionStatus] | None, Query()] = None,
    min_confidence: Annotated[float | None, Query(ge=0.0, le=1.0)] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0
) -> FilteredSuggestions:
    """latest analysis of one file, narrowed by ?severity=&type=&status= (repeatable)"""
    return await orchestrator.get_filtered_suggestions(
        user_id=user_id,
        file_path=file_path,
        severity=severity,
        type=type,
        status=status,
        min_confidence=min_confidence,
        limit=limit,
        offset=offset
    )


@router.get("/history", response_model=AnalysisHistory)
async def analysis_history(
    user_id: Annotated[str, Depends(get_user_id)],
    orchestrator: Annotated[AnalysisOrchestrator, Depends(get_orchestrator)],
    file_path: str | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0
) -> AnalysisHistory:
    """completed analyses, newest first"""
    return await orchestrator.get_history(user_id=user_id, file_path=file_path, limit=limit, offset=offset)

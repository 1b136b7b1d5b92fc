# Author: Bradley R. Kinnard — the contract between client and server

"""
API schemas. Re-exports from models.py plus any API-specific wrappers.
Keep request/response definitions in one place for OpenAPI docs.
"""

from typing import Any

from pydantic import BaseModel, Field

# re-export the core models for API use
from src.codeguard.core.models import (
    AnalysisHistory,
    AnalysisResult,
    BatchResult,
    FilteredSuggestions,
    HealthResponse,
    ServiceErrorStats,
    Suggestion,
    SuggestionFeedback,
)

__all__ = [
    "AnalyzeRequest",
    "AnalysisHistory",
    "AnalysisResult",
    "BatchAnalyzeRequest",
    "BatchResult",
    "ErrorResponse",
    "ErrorStatsResponse",
    "FilteredSuggestions",
    "HealthResponse",
    "ResetResponse",
    "ServiceErrorStats",
    "StatusUpdateRequest",
    "StatusUpdateResponse",
    "Suggestion",
]


class AnalyzeRequest(BaseModel):
    """POST /analyze body. User comes from the X-User-ID header, not the body."""
    code_content: str
    file_path: str
    options: dict[str, Any] = Field(default_factory=dict)


class BatchAnalyzeRequest(BaseModel):
    files: list[AnalyzeRequest]


class StatusUpdateRequest(BaseModel):
    status: str  # accepted | rejected | applied
    feedback: SuggestionFeedback | None = None


class StatusUpdateResponse(BaseModel):
    suggestion: Suggestion
    request_id: str


class ErrorStatsResponse(BaseModel):
    services: dict[str, ServiceErrorStats]
    request_id: str


class ResetResponse(BaseModel):
    message: str
    service: str | None = None
    request_id: str


class ErrorResponse(BaseModel):
    """Generic error for 4xx/5xx responses."""
    error: str
    detail: str | None = None
    request_id: str

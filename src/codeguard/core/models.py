# Author: Bradley R. Kinnard — where types go to be validated

"""
Pydantic models for the analysis pipeline and API responses.
String enums so the wire format stays readable and nobody guesses what 3 means.
"""

from enum import Enum
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SuggestionType(str, Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    MAINTAINABILITY = "maintainability"
    STYLE = "style"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# critical first when sorting
SEVERITY_RANK = {Severity.CRITICAL: 4, Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    APPLIED = "applied"


class RecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class SuggestionFeedback(BaseModel):
    rating: Literal["helpful", "not-helpful", "incorrect"]
    comment: str = ""
    submitted_at_millis: int | None = None


class Suggestion(BaseModel):
    """One finding. Only status/feedback ever change after creation, and only via the status endpoint."""
    id: str
    type: SuggestionType
    severity: Severity
    line: int = 0
    column: int = 0
    message: str
    description: str = ""
    suggested_fix: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = "AI analysis"
    status: SuggestionStatus = SuggestionStatus.PENDING
    feedback: SuggestionFeedback | None = None


class PatternDescriptor(BaseModel):
    name: str
    description: str = ""
    positive: bool = True


class SecurityIssue(BaseModel):
    type: str
    severity: Severity = Severity.MEDIUM
    description: str = ""
    cwe: str | None = None  # Common Weakness Enumeration id


class CodeMetrics(BaseModel):
    complexity: int = 0
    maintainability_index: int = 0
    lines_of_code: int = 0
    language: str = "unknown"


class AnalysisRequest(BaseModel):
    """What a caller submits. Frozen: the fingerprint is derived from it."""
    model_config = ConfigDict(frozen=True)

    code_content: str
    file_path: str
    user_id: str
    options: dict[str, Any] = Field(default_factory=dict)


class AnalysisResult(BaseModel):
    """What analyze() returns, what the cache stores, what the record wraps."""
    analysis_id: str
    fingerprint: str
    file_path: str
    quality_score: int = Field(ge=0, le=100)
    suggestions: list[Suggestion] = Field(default_factory=list)
    patterns: list[PatternDescriptor] = Field(default_factory=list)
    security_issues: list[SecurityIssue] = Field(default_factory=list)
    metrics: CodeMetrics = Field(default_factory=CodeMetrics)
    analyzed_by_upstream: bool
    is_fallback: bool = False
    fallback_reason: str | None = None
    computed_at_millis: int
    from_cache: bool = False
    from_database: bool = False

    @model_validator(mode="after")
    def _fallback_never_upstream(self) -> "AnalysisResult":
        if self.is_fallback and self.analyzed_by_upstream:
            raise ValueError("a fallback result cannot be marked as analyzed by upstream")
        return self


class ErrorInfo(BaseModel):
    kind: str
    message: str
    status_code: int | None = None


class AnalysisRecord(BaseModel):
    """Persisted audit row + second cache tier."""
    analysis_id: str
    user_id: str
    file_path: str
    fingerprint: str
    status: RecordStatus = RecordStatus.PENDING
    result: AnalysisResult | None = None
    error: ErrorInfo | None = None
    created_at_millis: int
    updated_at_millis: int


class BatchItemError(BaseModel):
    file_path: str
    error: str
    error_kind: str = "generic"
    success: Literal[False] = False


class BatchSummary(BaseModel):
    total_files: int
    successful_analyses: int
    failed_analyses: int
    average_quality_score: int
    total_suggestions: int


class BatchResult(BaseModel):
    batch_id: str
    results: list[AnalysisResult | BatchItemError]
    summary: BatchSummary


class ServiceErrorStats(BaseModel):
    error_count: int
    circuit_open: bool
    last_error_time: str | None = None  # ISO-8601 UTC


class FilteredSuggestions(BaseModel):
    """One page of the latest analysis' suggestions for a file."""
    file_path: str
    analysis_id: str | None = None
    quality_score: int | None = None
    suggestions: list[Suggestion] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int
    has_more: bool = False


class HistoryEntry(BaseModel):
    analysis_id: str
    file_path: str
    quality_score: int
    suggestion_count: int
    is_fallback: bool = False
    created_at_millis: int


class AnalysisHistory(BaseModel):
    history: list[HistoryEntry] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int
    has_more: bool = False


class FallbackPayload(BaseModel):
    """AnalysisResult-shaped stand-in. content carries the category-specific bits (commit title etc)."""
    model_config = ConfigDict(frozen=True)

    category: str
    quality_score: int = Field(ge=0, le=100)
    suggestions: list[Suggestion] = Field(default_factory=list)
    patterns: list[PatternDescriptor] = Field(default_factory=list)
    security_issues: list[SecurityIssue] = Field(default_factory=list)
    content: dict[str, Any] = Field(default_factory=dict)
    is_fallback: Literal[True] = True
    analyzed_by_upstream: Literal[False] = False
    reason: str | None = None


class RawImprovement(BaseModel):
    """One finding as the upstream model phrases it. Loose on purpose, the formatter cleans it up."""
    model_config = ConfigDict(extra="ignore")

    category: str = "maintainability"
    priority: str = "medium"
    description: str = ""
    message: str | None = None
    solution: str = ""
    confidence: float = 0.5
    reasoning: str = ""
    line: int = 0
    column: int = 0


class RawAnalysis(BaseModel):
    """What the upstream analyzer hands back before we shape it."""
    model_config = ConfigDict(extra="ignore")

    quality_score: int = Field(default=85, ge=0, le=100)
    improvements: list[RawImprovement] = Field(default_factory=list)
    patterns: list[str | PatternDescriptor] = Field(default_factory=list)
    vulnerabilities: list[SecurityIssue] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "down"]
    request_id: str
    git_sha: str | None = None
    redis: str | None = None
    store: str | None = None
    circuits_open: list[str] = Field(default_factory=list)

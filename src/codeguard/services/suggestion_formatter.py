# Author: Bradley R. Kinnard — deduplicate and promote the truth

"""Turn raw upstream improvements into Suggestions: normalize labels, dedupe, sort critical first."""

import re

from src.codeguard.core.models import (
    SEVERITY_RANK,
    RawImprovement,
    Severity,
    Suggestion,
    SuggestionStatus,
    SuggestionType,
)

# models don't always stick to our vocabulary
_TYPE_ALIASES = {
    "security": SuggestionType.SECURITY,
    "vulnerability": SuggestionType.SECURITY,
    "performance": SuggestionType.PERFORMANCE,
    "perf": SuggestionType.PERFORMANCE,
    "maintainability": SuggestionType.MAINTAINABILITY,
    "complexity": SuggestionType.MAINTAINABILITY,
    "readability": SuggestionType.MAINTAINABILITY,
    "style": SuggestionType.STYLE,
    "formatting": SuggestionType.STYLE,
    "naming": SuggestionType.STYLE,
}

_SEVERITY_ALIASES = {
    "critical": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.LOW,
}


def _normalize_message(msg: str) -> str:
    """strip line numbers, punctuation, and noise for fuzzy matching"""
    normalized = re.sub(r'lines?\s*\d+(-\d+)?', '', msg.lower())
    normalized = re.sub(r'[^\w\s]', '', normalized)
    return ' '.join(normalized.split())


def _is_better(new: Suggestion, existing: Suggestion) -> bool:
    """Highest severity wins. Tie: highest confidence."""
    if new.severity != existing.severity:
        return SEVERITY_RANK[new.severity] > SEVERITY_RANK[existing.severity]
    return new.confidence > existing.confidence


def _sort_key(s: Suggestion) -> tuple[int, float]:
    return (SEVERITY_RANK[s.severity], s.confidence)


def to_suggestion(raw: RawImprovement, index: int) -> Suggestion:
    message = raw.message or raw.description or "No description provided"
    return Suggestion(
        id=f"suggestion_{index}",
        type=_TYPE_ALIASES.get(raw.category.lower(), SuggestionType.MAINTAINABILITY),
        severity=_SEVERITY_ALIASES.get(raw.priority.lower(), Severity.MEDIUM),
        line=max(0, raw.line),
        column=max(0, raw.column),
        message=message,
        description=raw.description or message,
        suggested_fix=raw.solution,
        confidence=min(1.0, max(0.0, raw.confidence)),
        reasoning=raw.reasoning or "AI analysis",
    )


def format_suggestions(improvements: list[RawImprovement]) -> list[Suggestion]:
    """
    Shape, dedupe, sort. Two findings with the same type and the same message
    (ignoring line refs and punctuation) collapse to the stronger one.
    """
    seen: dict[tuple[SuggestionType, str], Suggestion] = {}
    for i, raw in enumerate(improvements, start=1):
        s = to_suggestion(raw, i)
        key = (s.type, _normalize_message(s.message))
        if key not in seen or _is_better(s, seen[key]):
            seen[key] = s

    out = list(seen.values())
    out.sort(key=_sort_key, reverse=True)
    return out


def filter_suggestions(
    suggestions: list[Suggestion],
    severity: list[Severity] | None = None,
    type: list[SuggestionType] | None = None,
    status: list[SuggestionStatus] | None = None,
    min_confidence: float | None = None,
) -> list[Suggestion]:
    """Narrow by any combination of filters, then critical/most confident first."""
    out = suggestions
    if type:
        out = [s for s in out if s.type in type]
    if severity:
        out = [s for s in out if s.severity in severity]
    if status:
        out = [s for s in out if s.status in status]
    if min_confidence is not None:
        out = [s for s in out if s.confidence >= min_confidence]
    return sorted(out, key=_sort_key, reverse=True)

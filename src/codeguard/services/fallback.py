# Author: Bradley R. Kinnard — something is better than a 500

"""
Static degraded payloads, one per request category. Served when the upstream is
rate limited, slow, down, or the breaker is open. Pure lookup, never raises.
"""

import logging
from enum import Enum

from src.codeguard.core.models import (
    FallbackPayload,
    Severity,
    Suggestion,
    SuggestionType,
)

log = logging.getLogger(__name__)

FALLBACK_QUALITY_SCORE = 70


class RequestCategory(str, Enum):
    ANALYSIS = "analysis"
    COMMIT_MESSAGE = "commit_message"
    PR_DESCRIPTION = "pr_description"
    MULTIMODAL = "multimodal"
    TEAM_ANALYTICS = "team_analytics"
    GENERIC = "generic"


# breaker service names -> what kind of answer the caller was waiting for
_SERVICE_CATEGORIES = {
    "analysis": RequestCategory.ANALYSIS,
    "commit-generation": RequestCategory.COMMIT_MESSAGE,
    "pr-generation": RequestCategory.PR_DESCRIPTION,
    "multimodal": RequestCategory.MULTIMODAL,
    "team-analytics": RequestCategory.TEAM_ANALYTICS,
}


def category_for_service(service: str) -> RequestCategory:
    return _SERVICE_CATEGORIES.get(service, RequestCategory.GENERIC)


def _analysis_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.ANALYSIS.value,
        quality_score=FALLBACK_QUALITY_SCORE,
        suggestions=[
            Suggestion(
                id="fallback_1",
                type=SuggestionType.MAINTAINABILITY,
                severity=Severity.MEDIUM,
                message="Consider adding comments for better code documentation",
                description="Consider adding comments for better code documentation",
                suggested_fix="Add doc comments to public functions",
                confidence=0.6,
                reasoning="Fallback heuristic, upstream analysis unavailable",
            )
        ],
        reason=reason,
    )


def _commit_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.COMMIT_MESSAGE.value,
        quality_score=FALLBACK_QUALITY_SCORE,
        content={"title": "Update code", "body": "Code changes made", "type": "chore", "scope": "", "confidence": 0.5},
        reason=reason,
    )


def _pr_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.PR_DESCRIPTION.value,
        quality_score=FALLBACK_QUALITY_SCORE,
        content={
            "title": "Code changes",
            "description": "This PR contains code changes",
            "labels": [],
            "reviewers": [],
            "confidence": 0.5,
        },
        reason=reason,
    )


def _multimodal_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.MULTIMODAL.value,
        quality_score=FALLBACK_QUALITY_SCORE,
        content={
            "interpretation": "Fallback processing - AI backend unavailable",
            "suggestions": ["Basic suggestion"],
            "generated_content": "Fallback content",
            "confidence": 0.5,
        },
        reason=reason,
    )


def _team_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.TEAM_ANALYTICS.value,
        quality_score=60,
        content={
            "strengths": ["Team is active"],
            "improvement_areas": ["More analysis needed"],
            "recommendations": ["Continue development"],
            "trends": {},
        },
        reason=reason,
    )


def _generic_payload(reason: str | None) -> FallbackPayload:
    return FallbackPayload(
        category=RequestCategory.GENERIC.value,
        quality_score=FALLBACK_QUALITY_SCORE,
        content={"message": "Fallback response - service unavailable"},
        reason=reason,
    )


_BUILDERS = {
    RequestCategory.ANALYSIS: _analysis_payload,
    RequestCategory.COMMIT_MESSAGE: _commit_payload,
    RequestCategory.PR_DESCRIPTION: _pr_payload,
    RequestCategory.MULTIMODAL: _multimodal_payload,
    RequestCategory.TEAM_ANALYTICS: _team_payload,
    RequestCategory.GENERIC: _generic_payload,
}


class FallbackSynthesizer:

    def synthesize(self, category: RequestCategory | str | None, reason: str | None = None) -> FallbackPayload:
        """Degraded payload for a category. Unknown or junk category gets the generic one."""
        try:
            resolved = RequestCategory(category)
        except (ValueError, TypeError):
            log.debug(f"no fallback for category {category!r}, using generic")
            resolved = RequestCategory.GENERIC
        return _BUILDERS[resolved](reason)

# Author: Bradley R. Kinnard — no redis, no dynamo, no openai, no problem

"""
Shared fixtures. Env vars go in before anything imports settings, so the
whole suite runs on the in-memory backends and the stub analyzer.
"""

import os

os.environ["CACHE_BACKEND"] = "memory"
os.environ["STORE_BACKEND"] = "memory"
os.environ["NOTIFIER_BACKEND"] = "none"
os.environ["STUB_MODE"] = "true"

import time

import pytest

from src.codeguard.core.models import AnalysisResult, Severity, Suggestion, SuggestionType


class FakeClock:
    """Manually advanced clock, seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_result():
    """AnalysisResult factory with sane defaults."""
    def _make(fingerprint: str = "a" * 64, score: int = 80, **overrides) -> AnalysisResult:
        fields = dict(
            analysis_id="an-test",
            fingerprint=fingerprint,
            file_path="a.js",
            quality_score=score,
            suggestions=[
                Suggestion(
                    id="suggestion_1",
                    type=SuggestionType.SECURITY,
                    severity=Severity.HIGH,
                    message="Validate input",
                    confidence=0.9,
                )
            ],
            analyzed_by_upstream=True,
            computed_at_millis=int(time.time() * 1000),
        )
        fields.update(overrides)
        return AnalysisResult(**fields)
    return _make

# Author: Bradley R. Kinnard — cheap checks first

import pytest

from src.codeguard.core.code_metrics import (
    calculate_complexity,
    calculate_maintainability,
    count_lines,
    detect_language,
)
from src.codeguard.core.errors import InputError, PayloadTooLargeError
from src.codeguard.core.models import AnalysisRequest, SuggestionStatus
from src.codeguard.utils.validation import validate_analysis_request, validate_suggestion_status


def _req(content="x = 1", path="a.py", user="u1"):
    return AnalysisRequest(code_content=content, file_path=path, user_id=user)


def test_valid_request_passes():
    validate_analysis_request(_req(), max_code_bytes=100)


@pytest.mark.parametrize("content, path", [("", "a.py"), ("   \n\t", "a.py"), ("x", ""), ("x", "  ")])
def test_empty_fields_rejected(content, path):
    with pytest.raises(InputError):
        validate_analysis_request(_req(content, path), max_code_bytes=100)


def test_oversize_rejected_with_specific_error():
    with pytest.raises(PayloadTooLargeError):
        validate_analysis_request(_req("x" * 101), max_code_bytes=100)


def test_size_is_measured_in_bytes():
    # 4 chars, 8 bytes
    with pytest.raises(PayloadTooLargeError):
        validate_analysis_request(_req("éééé"), max_code_bytes=6)


def test_suggestion_status_values():
    assert validate_suggestion_status("accepted") == SuggestionStatus.ACCEPTED
    assert validate_suggestion_status(SuggestionStatus.APPLIED) == SuggestionStatus.APPLIED
    for bad in ("pending", "maybe"):
        with pytest.raises(InputError):
            validate_suggestion_status(bad)


def test_language_detection():
    assert detect_language("src/app.tsx") == "typescript"
    assert detect_language("C:\\work\\main.PY") == "python"
    assert detect_language("Makefile") == "unknown"


def test_complexity_counts_branches():
    js = "function f(a){ if (a && b) { for (;;) {} } }"
    assert calculate_complexity(js, "javascript") == 4
    py = "def f(a):\n    if a and b:\n        return 1\n    for x in a:\n        pass\n"
    assert calculate_complexity(py, "python") == 4
    assert count_lines("a\nb\nc") == 3


def test_maintainability_is_clamped():
    assert calculate_maintainability(80, 5, 2) == 76
    assert calculate_maintainability(99, 0, 10) == 100
    assert calculate_maintainability(3, 10, 0) == 0

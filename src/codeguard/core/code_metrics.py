# Author: Bradley R. Kinnard — numbers we can compute without asking anyone

"""Cheap local metrics: language from extension, branch-count complexity, maintainability."""

import re
from pathlib import PurePosixPath

LANGUAGE_BY_EXTENSION = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "php": "php",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
}

# each match adds one path through the code
_C_FAMILY_BRANCHES = [
    re.compile(r"\bif\s*\("),
    re.compile(r"\bwhile\s*\("),
    re.compile(r"\bfor\s*\("),
    re.compile(r"\bswitch\s*\("),
    re.compile(r"\bcatch\s*\("),
    re.compile(r"&&|\|\|"),
]
_PYTHON_BRANCHES = [
    re.compile(r"^\s*(?:if|elif|while|for|except)\b.*:\s*$", re.MULTILINE),
    re.compile(r"\b(?:and|or)\b"),
]


def detect_language(file_path: str) -> str:
    suffix = PurePosixPath(file_path.replace("\\", "/")).suffix.lstrip(".").lower()
    return LANGUAGE_BY_EXTENSION.get(suffix, "unknown")


def count_lines(code: str) -> int:
    return len(code.split("\n"))


def calculate_complexity(code: str, language: str = "unknown") -> int:
    """1 + number of branch points. Not McCabe, but moves in the same direction."""
    patterns = _PYTHON_BRANCHES if language == "python" else _C_FAMILY_BRANCHES
    return 1 + sum(len(p.findall(code)) for p in patterns)


def calculate_maintainability(quality_score: int, suggestion_count: int, positive_patterns: int) -> int:
    """Score minus 2 per suggestion plus 3 per good pattern, clamped to 0-100."""
    value = quality_score - suggestion_count * 2 + positive_patterns * 3
    return max(0, min(100, value))

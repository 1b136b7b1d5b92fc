# Author: Bradley R. Kinnard — determinism is underrated

"""
Fingerprint an analysis request. Same content + path + user + options = same hash,
change any one of them and you get a different key. No normalization, no surprises.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from src.codeguard.core.models import AnalysisRequest

FINGERPRINT_LENGTH = 64  # sha256 hex


def canonical_options(options: Mapping[str, Any]) -> str:
    """Key order never matters. Non-JSON values are a caller bug and raise TypeError."""
    if not isinstance(options, Mapping):
        raise TypeError(f"options must be a mapping, got {type(options).__name__}")
    return json.dumps(options, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_fingerprint(code_content: str, file_path: str, user_id: str, options: Mapping[str, Any] | None = None) -> str:
    """sha256 over length-prefixed fields, so 'ab'+'c' and 'a'+'bc' can't collide."""
    fields = {"code_content": code_content, "file_path": file_path, "user_id": user_id}
    for name, value in fields.items():
        if not isinstance(value, str):
            raise TypeError(f"{name} must be str, got {type(value).__name__}")

    h = hashlib.sha256()
    for part in (code_content, file_path, user_id, canonical_options(options or {})):
        encoded = part.encode("utf-8")
        h.update(len(encoded).to_bytes(8, "big"))
        h.update(encoded)
    return h.hexdigest()


def fingerprint_request(request: AnalysisRequest) -> str:
    return compute_fingerprint(request.code_content, request.file_path, request.user_id, request.options)

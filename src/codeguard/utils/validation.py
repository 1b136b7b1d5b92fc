# Author: Bradley R. Kinnard — garbage in, 413 out

"""Input validation. Reject bad requests before they waste upstream tokens."""

from src.codeguard.core.errors import InputError, PayloadTooLargeError
from src.codeguard.core.models import AnalysisRequest, SuggestionStatus

# pending is where suggestions start, nobody gets to put one back there
SETTABLE_STATUSES = {SuggestionStatus.ACCEPTED, SuggestionStatus.REJECTED, SuggestionStatus.APPLIED}


def validate_code_size(code: str, max_code_bytes: int) -> None:
    """Reject code over the size limit. No point analyzing a 10MB file."""
    size = len(code.encode("utf-8"))
    if size > max_code_bytes:
        raise PayloadTooLargeError(f"code too large: {size} bytes, max {max_code_bytes}")


def validate_analysis_request(request: AnalysisRequest, max_code_bytes: int) -> None:
    """Empty content, empty path, oversize. Call before fingerprinting."""
    if not request.code_content or not request.code_content.strip():
        raise InputError("code_content is required")
    if not request.file_path or not request.file_path.strip():
        raise InputError("file_path is required")
    if not request.user_id:
        raise InputError("user_id is required")
    validate_code_size(request.code_content, max_code_bytes)


def validate_suggestion_status(status: str | SuggestionStatus) -> SuggestionStatus:
    try:
        parsed = SuggestionStatus(status)
    except ValueError:
        parsed = None
    if parsed not in SETTABLE_STATUSES:
        allowed = ", ".join(sorted(s.value for s in SETTABLE_STATUSES))
        raise InputError(f"invalid status: {status}. must be one of {allowed}")
    return parsed

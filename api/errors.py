"""
Domain errors and error message sanitization.

Domain errors carry the HTTP status they map to, so the HTTP layer can
translate them without knowing which component raised them. Worker failure
messages are stored verbatim on the video row and sanitized on the way out.
"""
import logging
import re
from typing import Optional

from config import ERROR_DETAIL_MAX_LENGTH, ERROR_SUMMARY_MAX_LENGTH

logger = logging.getLogger(__name__)


class VixoraError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(VixoraError):
    """Bad input from the caller."""

    status_code = 400


class NotFoundError(VixoraError):
    status_code = 404


class ForbiddenError(VixoraError):
    """Ownership or permission check failed."""

    status_code = 403


class InvalidStateError(VixoraError):
    """Operation not valid for the video's current processing status."""

    status_code = 400


class UpstreamError(VixoraError):
    """The asset store (or another remote dependency) failed or was unreachable."""

    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, upstream_status: Optional[int] = None) -> None:
        super().__init__(message, status_code)
        self.upstream_status = upstream_status


class AssetNotFoundError(Exception):
    """The asset store has no resource of the requested kind for a public id."""

    def __init__(self, public_id: str, kind: str) -> None:
        super().__init__(f"Asset {public_id} not found as {kind}")
        self.public_id = public_id
        self.kind = kind


# Patterns that indicate internal details
INTERNAL_PATTERNS = [
    r'/home/\w+/',           # Home directory paths
    r'/tmp/\w+',             # Temp paths
    r'line \d+',             # Line numbers in stack traces
    r'File "[^"]+\.py"',     # Python file paths
    r'UNIQUE constraint failed',
    r'sqlite3?\.',
    r'asyncpg\.',
    r'api_secret|signature=',  # Signed asset store requests
]

ERROR_MESSAGES = {
    "asset_store": "The media service is unavailable. Please try again later.",
    "timeout": "Video processing timed out. Please try again.",
    "database": "A database error occurred. Please try again.",
    "general": "Video processing failed. Please try again.",
}


def truncate_error(message: Optional[str], max_length: int = ERROR_DETAIL_MAX_LENGTH) -> Optional[str]:
    """Truncate an error message for storage or display."""
    if message is None:
        return None
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def sanitize_error_message(
    error: Optional[str],
    log_original: bool = True,
    context: str = ""
) -> Optional[str]:
    """
    Sanitize a stored processing error for display to API clients.

    Args:
        error: The original error message (may contain internal details)
        log_original: Whether to log the original message before sanitizing
        context: Additional context for logging (e.g., "video_id=abc")

    Returns:
        A sanitized, user-friendly error message, or None if input was None
    """
    if error is None:
        return None

    if log_original and error:
        log_msg = "Original error"
        if context:
            log_msg += f" ({context})"
        log_msg += f": {error}"
        logger.debug(log_msg)

    error_lower = error.lower()

    if "timeout" in error_lower or "timed out" in error_lower:
        return ERROR_MESSAGES["timeout"]

    if "cloudinary" in error_lower or "asset store" in error_lower:
        return ERROR_MESSAGES["asset_store"]

    if "sqlite" in error_lower or "database" in error_lower or "constraint" in error_lower:
        return ERROR_MESSAGES["database"]

    for pattern in INTERNAL_PATTERNS:
        if re.search(pattern, error, re.IGNORECASE):
            return ERROR_MESSAGES["general"]

    # Short messages without path-like segments are shown as-is
    if len(error) < ERROR_SUMMARY_MAX_LENGTH and "/" not in error and "\\" not in error:
        return error

    return ERROR_MESSAGES["general"]

from __future__ import annotations

from typing import Optional


class SessionMemoryError(RuntimeError):
    """Base error for conversation memory operations."""

    default_code = "MEMORY_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message


class InvalidArgument(SessionMemoryError):
    default_code = "INVALID_ARGUMENT"


class InvalidSessionData(SessionMemoryError):
    """Raised when a record handed to the store is not structurally well formed."""

    default_code = "INVALID_SESSION_DATA"

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(f"Invalid session data for session {session_id}: {reason}")
        self.session_id = session_id
        self.reason = reason


class StorageError(SessionMemoryError):
    """Raised when the session store itself cannot be read or written."""

    default_code = "STORAGE_ERROR"


class SummarizationUnavailable(SessionMemoryError):
    default_code = "SUMMARIZATION_UNAVAILABLE"


class SummarizationFailed(SessionMemoryError):
    """Raised for any runtime failure of a summarize call.

    ``category`` is one of: auth, safety, rate_limit, timeout, network,
    upstream, invalid_response, unknown.
    """

    default_code = "SUMMARIZATION_FAILED"

    def __init__(
        self, category: str, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(f"Summary generation failed ({category}): {message}")
        self.category = category
        self.detail = message
        self.cause = cause

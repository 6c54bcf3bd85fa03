# Error taxonomy
# utils/errors.py
"""
Tagged error type for the inference gateway.

Failures are classified where they originate (validation, store lookups,
provider HTTP responses, timeouts) and carried as an ``InferenceError`` up
to the orchestrator boundary, which maps them to an HTTP status and a
``{error, code}`` body.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error codes exposed to callers and written to the usage ledger"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    MISSING_API_KEY = "MISSING_API_KEY"
    UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    BAD_REQUEST = "BAD_REQUEST"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    # Ledger-only: the caller went away after the stream started
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.MISSING_API_KEY: 400,
    ErrorKind.UNSUPPORTED_PROVIDER: 400,
    ErrorKind.AUTH_ERROR: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INTERNAL_ERROR: 500,
    ErrorKind.STREAM_INTERRUPTED: 499,
}


class InferenceError(Exception):
    """
    A classified failure.

    ``message`` is safe to show to the user. ``detail`` holds diagnostics
    (upstream body text, exception repr) for logs and the usage ledger.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        detail: Optional[str] = None,
        upstream_status: Optional[int] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail
        self.upstream_status = upstream_status
        self.retry_after = retry_after

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def ledger_message(self) -> str:
        """Message stored in the usage record"""
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}

    def response_headers(self) -> Dict[str, str]:
        if self.retry_after is not None:
            return {"Retry-After": str(int(self.retry_after))}
        return {}

    def __repr__(self) -> str:
        return f"InferenceError(kind={self.kind.value}, message={self.message!r})"


def validation_error(message: str) -> InferenceError:
    return InferenceError(ErrorKind.VALIDATION_ERROR, message)


def internal_error(exc: BaseException) -> InferenceError:
    """Wrap an unclassified exception"""
    return InferenceError(
        ErrorKind.INTERNAL_ERROR,
        "An internal error occurred. Please try again later.",
        detail=f"{type(exc).__name__}: {exc}"
    )

"""Error taxonomy and classification for the sync engine.

Typed failures raised by the services carry a stable code, an HTTP status and a
user-facing suggestion. Anything else (driver errors, timeouts) is classified
by ``classify_error_with_response`` so callers always get an ``ErrorResponse``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCategory(Enum):
    """Categories of errors that can occur while serving a request or event."""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTHENTICATION_FAILED = "authentication_failed"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_RATE_LIMIT_EXCEEDED = "ERR_RATE_LIMIT_EXCEEDED"
    ERR_AUTHENTICATION_FAILED = "ERR_AUTHENTICATION_FAILED"
    ERR_UNAUTHORIZED = "ERR_UNAUTHORIZED"
    ERR_FORBIDDEN = "ERR_FORBIDDEN"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"
    ERR_STALE_VERSION = "ERR_STALE_VERSION"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_INVALID_REQUEST = "ERR_INVALID_REQUEST"
    ERR_ROOM_CAPACITY = "ERR_ROOM_CAPACITY"
    ERR_CONNECTION_LOST = "ERR_CONNECTION_LOST"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    details: dict[str, Any] = Field(default_factory=dict)


class EngineError(Exception):
    """Base class for typed engine failures."""

    code: str = ErrorCode.ERR_UNKNOWN
    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    status_code: int = 500
    suggestion: str = "Please try again later. If the problem persists, contact support."

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(EngineError):
    """The caller's session token could not be verified."""

    code = ErrorCode.ERR_AUTHENTICATION_FAILED
    category = ErrorCategory.AUTHENTICATION_FAILED
    severity = ErrorSeverity.MEDIUM
    status_code = 401
    suggestion = "Sign in again to obtain a fresh session."


class UnauthorizedError(EngineError):
    """The actor is not allowed to perform this action on the target."""

    code = ErrorCode.ERR_UNAUTHORIZED
    category = ErrorCategory.PERMISSION_DENIED
    status_code = 403
    suggestion = "Contact an administrator if you think this is an error."


class ForbiddenError(UnauthorizedError):
    """The actor tried to touch a record owned by somebody else."""

    code = ErrorCode.ERR_FORBIDDEN


class InvalidTransitionError(EngineError):
    """The requested status change is not an edge of the task state machine."""

    code = ErrorCode.ERR_INVALID_STATE_TRANSITION
    category = ErrorCategory.INVALID_STATE_TRANSITION
    severity = ErrorSeverity.LOW
    status_code = 409
    suggestion = "Refresh the task to see its current status and try again."


class StaleVersionError(InvalidTransitionError):
    """The task changed between validation and commit."""

    code = ErrorCode.ERR_STALE_VERSION


class RateLimitedError(EngineError):
    """A rate limit tier rejected the request."""

    code = ErrorCode.ERR_RATE_LIMIT_EXCEEDED
    category = ErrorCategory.RATE_LIMIT_EXCEEDED
    status_code = 429
    suggestion = "Please wait a moment and try again."

    def __init__(
        self,
        message: str,
        *,
        tier: str,
        limit: int,
        retry_after: str,
        retry_after_seconds: int,
    ) -> None:
        super().__init__(
            message,
            tier=tier,
            limit=limit,
            retry_after=retry_after,
            retry_after_seconds=retry_after_seconds,
        )
        self.tier = tier
        self.limit = limit
        self.retry_after = retry_after
        self.retry_after_seconds = retry_after_seconds


class NotFoundError(EngineError):
    """The referenced record does not exist."""

    code = ErrorCode.ERR_NOT_FOUND
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW
    status_code = 404
    suggestion = "Check the identifier and try again."


class InvalidRequestError(EngineError):
    """The request was well-formed but its values are unacceptable."""

    code = ErrorCode.ERR_INVALID_REQUEST
    category = ErrorCategory.INVALID_REQUEST
    severity = ErrorSeverity.LOW
    status_code = 422
    suggestion = "Correct the highlighted values and resubmit."


class RoomCapacityError(EngineError):
    """The room already holds the maximum number of sessions."""

    code = ErrorCode.ERR_ROOM_CAPACITY
    category = ErrorCategory.INVALID_REQUEST
    status_code = 409
    suggestion = "Try joining again later."


class ConnectionLostError(EngineError):
    """The realtime session went away while an operation was in flight."""

    code = ErrorCode.ERR_CONNECTION_LOST
    category = ErrorCategory.NETWORK_ERROR
    status_code = 503
    suggestion = "Reconnect and re-join your rooms."


_NETWORK_EXCEPTION_TYPES = {"ConnectionError", "TimeoutError", "ConnectionRefusedError", "RedisError"}


def to_error_response(exception: EngineError) -> ErrorResponse:
    """Build the structured response for a typed engine failure."""
    return ErrorResponse(
        code=exception.code,
        message=exception.message,
        suggestion=exception.suggestion,
        severity=exception.severity,
        details=exception.details,
    )


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify any error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, EngineError):
        return to_error_response(exception)

    exception_type = type(exception).__name__
    error_str = str(exception).lower()

    if exception_type == "PermissionError":
        return ErrorResponse(
            code=ErrorCode.ERR_UNAUTHORIZED,
            message="You don't have permission for this action.",
            suggestion=UnauthorizedError.suggestion,
            severity=ErrorSeverity.MEDIUM,
        )

    if exception_type in _NETWORK_EXCEPTION_TYPES or "timeout" in error_str or "connection" in error_str:
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please check your connection and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion=EngineError.suggestion,
        severity=ErrorSeverity.MEDIUM,
    )

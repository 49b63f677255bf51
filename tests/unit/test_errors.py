"""Unit tests for the error taxonomy and classification."""

import pytest

from src.core.errors import (
    ConnectionLostError,
    ErrorCode,
    ErrorSeverity,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RateLimitedError,
    StaleVersionError,
    UnauthorizedError,
    classify_error_with_response,
    to_error_response,
)


@pytest.mark.unit
class TestTypedErrors:
    """Tests for the typed engine failures."""

    def test_details_are_kept(self):
        """Test keyword details travel with the error."""
        error = NotFoundError("Task 5 not found", task_id="5")

        assert error.status_code == 404
        assert error.details == {"task_id": "5"}
        assert str(error) == "Task 5 not found"

    def test_subclasses_keep_parent_status(self):
        """Test refined errors still map to their parent's status."""
        assert issubclass(ForbiddenError, UnauthorizedError)
        assert ForbiddenError("x").status_code == 403
        assert ForbiddenError.code == ErrorCode.ERR_FORBIDDEN
        assert issubclass(StaleVersionError, InvalidTransitionError)
        assert StaleVersionError("x").status_code == 409

    def test_rate_limited_error_carries_retry_fields(self):
        """Test rate limit rejections expose retry information."""
        error = RateLimitedError("Slow down", tier="write", limit=50, retry_after="15 minutes", retry_after_seconds=42)

        assert error.retry_after_seconds == 42
        assert error.details["limit"] == 50

    def test_to_error_response(self):
        """Test a typed error becomes a structured response."""
        response = to_error_response(InvalidTransitionError("Cannot complete a scheduled task", status="scheduled"))

        assert response.code == ErrorCode.ERR_INVALID_STATE_TRANSITION
        assert response.severity == ErrorSeverity.LOW
        assert "Refresh" in response.suggestion
        assert response.details == {"status": "scheduled"}


@pytest.mark.unit
class TestClassifyErrorWithResponse:
    """Tests for classify_error_with_response function."""

    def test_engine_errors_pass_through(self):
        """Test typed errors keep their own code."""
        response = classify_error_with_response(ConnectionLostError("Session gone"))

        assert response.code == ErrorCode.ERR_CONNECTION_LOST
        assert response.message == "Session gone"

    def test_permission_error(self):
        """Test builtin PermissionError maps to unauthorized."""
        response = classify_error_with_response(PermissionError("nope"))

        assert response.code == ErrorCode.ERR_UNAUTHORIZED

    @pytest.mark.parametrize(
        "exception", [TimeoutError("slow"), ConnectionError("reset"), Exception("Connection refused")]
    )
    def test_network_errors(self, exception):
        """Test network failures are recognized by type or message."""
        response = classify_error_with_response(exception)

        assert response.code == ErrorCode.ERR_NETWORK_ERROR
        assert "connection" in response.suggestion.lower()

    def test_unknown_error(self):
        """Test anything else is classified as unknown."""
        response = classify_error_with_response(ValueError("boom"))

        assert response.code == ErrorCode.ERR_UNKNOWN
        assert response.severity == ErrorSeverity.MEDIUM
        assert "boom" not in response.message

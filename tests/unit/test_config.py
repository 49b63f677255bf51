"""Tests for configuration validation."""

import pytest
from pydantic import ValidationError

from src.core.config import Settings


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(secret_key="s3cret")

    assert settings.require_credential("secret_key", "Session signing") == "s3cret"


def test_require_credential_with_none_raises_error() -> None:
    """Test require_credential raises ValueError when credential is None."""
    settings = Settings(secret_key=None)

    with pytest.raises(ValueError, match="Session signing credential not configured"):
        settings.require_credential("secret_key", "Session signing")


def test_require_credential_with_empty_string_raises_error() -> None:
    """Test require_credential raises ValueError when credential is empty."""
    settings = Settings(secret_key="")

    with pytest.raises(ValueError, match="SECRET_KEY"):
        settings.require_credential("secret_key", "Session signing")


@pytest.mark.parametrize(("environment", "expected"), [("production", True), ("PRODUCTION", True), ("staging", False)])
def test_is_production(environment: str, expected: bool) -> None:
    """Test production detection is case-insensitive."""
    assert Settings(environment=environment).is_production is expected


def test_environment_variables_override_defaults(monkeypatch) -> None:
    """Test settings are read from the environment."""
    monkeypatch.setenv("AREA_ROOM_PRECISION", "3")
    monkeypatch.setenv("NOTIFICATION_TTL_DAYS", "7")

    settings = Settings()

    assert settings.area_room_precision == 3
    assert settings.notification_ttl_days == 7


def test_area_precision_is_bounded() -> None:
    """Test out-of-range bucketing precision is rejected."""
    with pytest.raises(ValidationError, match="area_room_precision"):
        Settings(area_room_precision=9)


def test_dev_multiplier_must_be_positive() -> None:
    """Test a zero multiplier is rejected."""
    with pytest.raises(ValidationError):
        Settings(rate_limit_dev_multiplier=0)

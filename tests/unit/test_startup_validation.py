"""Tests for startup validation functions."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from src.core.config import Settings
from src.main import check_redis_connectivity, validate_startup_configuration


def test_missing_secret_key_is_reported() -> None:
    settings = Settings(secret_key="")
    with pytest.raises(ValueError, match="Session token signing credential not configured"):
        settings.require_credential("secret_key", "Session token signing")


def test_configured_secret_key_is_returned() -> None:
    settings = Settings(secret_key="s3cret")
    assert settings.require_credential("secret_key", "Session token signing") == "s3cret"


@pytest.mark.asyncio
async def test_check_redis_connectivity_disabled() -> None:
    """Redis is optional, so an unconfigured client is not an error."""
    mock_redis = Mock()
    mock_redis.is_available = False
    mock_redis.ping = AsyncMock()

    with patch("src.main.redis_client", mock_redis):
        await check_redis_connectivity()

    mock_redis.ping.assert_not_called()


@pytest.mark.asyncio
async def test_check_redis_connectivity_success() -> None:
    mock_redis = Mock()
    mock_redis.is_available = True
    mock_redis.ping = AsyncMock(return_value=True)

    with patch("src.main.redis_client", mock_redis):
        await check_redis_connectivity()

    mock_redis.ping.assert_called_once()


@pytest.mark.asyncio
async def test_check_redis_connectivity_tolerates_errors() -> None:
    mock_redis = Mock()
    mock_redis.is_available = True
    mock_redis.ping = AsyncMock(side_effect=ConnectionError("refused"))

    with patch("src.main.redis_client", mock_redis):
        await check_redis_connectivity()


@pytest.mark.asyncio
async def test_production_without_secret_exits() -> None:
    with (
        patch("src.main.settings") as mock_settings,
        pytest.raises(SystemExit) as exc_info,
    ):
        mock_settings.is_production = True
        mock_settings.require_credential.side_effect = ValueError("Session token signing credential not configured")
        await validate_startup_configuration()

    assert exc_info.value.code == 1


@pytest.mark.asyncio
async def test_development_without_secret_starts() -> None:
    with (
        patch("src.main.settings") as mock_settings,
        patch("src.main.check_redis_connectivity", new=AsyncMock()) as check_redis,
    ):
        mock_settings.is_production = False
        mock_settings.secret_key = ""
        await validate_startup_configuration()

    mock_settings.require_credential.assert_not_called()
    check_redis.assert_awaited_once()

"""Configuration management for wastesync."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Deployment environment name")

    # Session token signing
    secret_key: str | None = Field(default=None, description="Secret used to sign session tokens")
    session_token_max_age_seconds: int = Field(
        default=7 * 24 * 3600, description="Maximum age of a signed session token (in seconds)"
    )

    # Storage
    sqlite_db_path: str = Field(default="wastesync.db", description="Path to the SQLite database file")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Real-time Configuration
    area_room_precision: int = Field(
        default=2, ge=0, le=6, description="Decimal places kept when bucketing coordinates into area rooms"
    )
    heartbeat_interval_seconds: int = Field(default=25, description="Interval between dead-session sweeps")
    heartbeat_timeout_seconds: int = Field(
        default=60, description="Idle time after which a session is considered dead"
    )
    max_sessions_per_room: int = Field(default=10_000, description="Maximum concurrent sessions in a single room")
    session_outbox_size: int = Field(default=256, description="Outbound event queue size per session")
    chat_backfill_limit: int = Field(default=50, description="Chat messages replayed when a session joins a room")

    # Notifications
    notification_ttl_days: int = Field(default=30, description="Days before a notification expires")
    notification_purge_interval_minutes: int = Field(
        default=60, description="Interval between expired-notification purges (in minutes)"
    )

    # Rate Limiting
    rate_limit_dev_multiplier: int = Field(
        default=10, ge=1, description="Multiplier applied to every rate limit ceiling outside production"
    )

    @property
    def is_production(self) -> bool:
        """Whether the service runs in production."""
        return self.environment.lower() == "production"

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # Pickup task limits
    MIN_ESTIMATED_DURATION_MINUTES: int = 5
    DEFAULT_ESTIMATED_DURATION_MINUTES: int = 30
    MAX_TASK_NOTES_LENGTH: int = 200
    MAX_COMPLETION_NOTES_LENGTH: int = 300

    # Notification limits
    MAX_NOTIFICATION_TITLE_LENGTH: int = 100
    MAX_NOTIFICATION_MESSAGE_LENGTH: int = 500

    # Chat limits
    MAX_CHAT_MESSAGE_LENGTH: int = 2000

    # Pagination Defaults
    DEFAULT_NOTIFICATIONS_PER_PAGE: int = 20
    MAX_NOTIFICATIONS_PER_PAGE: int = 100
    DEFAULT_MESSAGES_PER_PAGE: int = 50
    MAX_MESSAGES_PER_PAGE: int = 200
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries

    # WebSocket close codes
    WS_CLOSE_AUTH_FAILED: int = 4401
    WS_CLOSE_IDLE: int = 4408
    WS_CLOSE_RATE_LIMITED: int = 4429

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()

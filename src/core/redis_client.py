"""Redis client for shared rate-limit counters."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorator to retry async Redis calls with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.1)
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            last_exception: RedisError | None = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Redis operation failed (attempt %d/%d): %s. Retrying in %.2fs",
                            attempt + 1,
                            max_retries,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error("Redis operation failed after %d attempts: %s", max_retries, e)
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


class RedisClient:
    """Async Redis client wrapper with connection pooling."""

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        redis_url = url if url is not None else settings.redis_url
        self._enabled = bool(redis_url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        if self._enabled and redis_url:
            try:
                self._pool = ConnectionPool.from_url(
                    redis_url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", redis_url)
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Using in-process counters.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Using in-process counters.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Get Redis health status for the health endpoint."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
        }

    def _record_success(self) -> None:
        self._last_successful_operation = datetime.now(UTC)
        self._total_operations += 1

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._total_operations += 1

    async def increment_window(self, key: str, ttl_seconds: int) -> int:
        """Increment a fixed-window counter, setting its TTL on the first hit.

        Raises:
            RedisError: When Redis keeps failing after retries
        """
        if not self._client:
            msg = "Redis client not configured"
            raise RedisError(msg)

        client = self._client

        @with_retry(max_retries=2, base_delay=0.05)
        async def _incr() -> int:
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, ttl_seconds)
            return int(count)

        try:
            count = await _incr()
        except RedisError:
            self._record_failure()
            raise
        self._record_success()
        return count

    async def get_count(self, key: str) -> int:
        """Read a counter without touching it (missing keys count as zero)."""
        if not self._client:
            msg = "Redis client not configured"
            raise RedisError(msg)

        try:
            value = await self._client.get(key)
        except RedisError:
            self._record_failure()
            raise
        self._record_success()
        return int(value) if value else 0

    async def ping(self) -> bool:
        """Ping Redis to check connection."""
        if not self.is_available or not self._client:
            return False

        try:
            result = await self._client.ping()  # type: ignore[misc]
            return bool(result)
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()

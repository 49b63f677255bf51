"""Tiered rate limiting using fixed-window counters.

Counters live in Redis when ``REDIS_URL`` is configured so every worker shares
them, otherwise in process memory. Outside production every ceiling is
multiplied by ``settings.rate_limit_dev_multiplier``.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from redis.exceptions import RedisError

from src.core.config import settings
from src.core.errors import RateLimitedError
from src.core.redis_client import RedisClient, redis_client
from src.models.service_models import RateLimitDecision


logger = logging.getLogger(__name__)


class RateLimitTier(StrEnum):
    """Named rate limit tiers."""

    GENERAL = "general"
    AUTH = "auth"
    PASSWORD_RESET = "password_reset"
    READ = "read"
    WRITE = "write"
    UPLOAD = "upload"


@dataclass(frozen=True)
class TierPolicy:
    """Window and production ceiling of one tier."""

    window_seconds: int
    limit: int
    retry_after: str
    failures_only: bool = False


FIFTEEN_MINUTES = 15 * 60
ONE_HOUR = 60 * 60

TIER_POLICIES: dict[RateLimitTier, TierPolicy] = {
    RateLimitTier.GENERAL: TierPolicy(FIFTEEN_MINUTES, 100, "15 minutes"),
    RateLimitTier.AUTH: TierPolicy(FIFTEEN_MINUTES, 5, "15 minutes", failures_only=True),
    RateLimitTier.PASSWORD_RESET: TierPolicy(ONE_HOUR, 3, "1 hour"),
    RateLimitTier.READ: TierPolicy(FIFTEEN_MINUTES, 200, "15 minutes"),
    RateLimitTier.WRITE: TierPolicy(FIFTEEN_MINUTES, 50, "15 minutes"),
    RateLimitTier.UPLOAD: TierPolicy(ONE_HOUR, 20, "1 hour"),
}

_TIER_MESSAGES: dict[RateLimitTier, str] = {
    RateLimitTier.GENERAL: "Too many requests from this client, please try again later.",
    RateLimitTier.AUTH: "Too many authentication attempts, please try again later.",
    RateLimitTier.PASSWORD_RESET: "Too many password reset attempts, please try again later.",
    RateLimitTier.READ: "Too many read requests, please slow down.",
    RateLimitTier.WRITE: "Too many write operations, please slow down.",
    RateLimitTier.UPLOAD: "Too many file uploads, please try again later.",
}


class WindowStore(Protocol):
    """Counter backend for fixed windows."""

    async def increment_window(self, key: str, ttl_seconds: int) -> int: ...

    async def get_count(self, key: str) -> int: ...


class InMemoryWindowStore:
    """Process-local fixed-window counters with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}

    def _prune(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    async def increment_window(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        self._prune(now)
        count, expires_at = self._counters.get(key, (0, now + ttl_seconds))
        count += 1
        self._counters[key] = (count, expires_at)
        return count

    async def get_count(self, key: str) -> int:
        now = self._clock()
        entry = self._counters.get(key)
        if entry is None or entry[1] <= now:
            return 0
        return entry[0]

    def clear(self) -> None:
        self._counters.clear()


class RateLimiter:
    """Rate limiter using fixed windows keyed by tier, identity and window start."""

    def __init__(
        self,
        *,
        store: WindowStore | None = None,
        redis: RedisClient | None = None,
        production: bool | None = None,
        dev_multiplier: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        redis = redis if redis is not None else redis_client
        if store is not None:
            self._store: WindowStore = store
        elif redis.is_available:
            self._store = redis
        else:
            self._store = InMemoryWindowStore()
        self._production = settings.is_production if production is None else production
        self._multiplier = settings.rate_limit_dev_multiplier if dev_multiplier is None else dev_multiplier
        self._clock = clock

    def limit_for(self, tier: RateLimitTier) -> int:
        """Effective ceiling of a tier in the current environment."""
        base = TIER_POLICIES[tier].limit
        return base if self._production else base * self._multiplier

    def _window(self, identity: str, tier: RateLimitTier) -> tuple[str, int, int]:
        policy = TIER_POLICIES[tier]
        now = int(self._clock())
        window_start = now // policy.window_seconds
        key = f"ratelimit:{tier.value}:{identity}:{window_start}"
        reset_in = policy.window_seconds - (now % policy.window_seconds)
        return key, window_start, reset_in

    def _reject(self, tier: RateLimitTier, identity: str, count: int, reset_in: int) -> RateLimitedError:
        limit = self.limit_for(tier)
        logger.warning(
            "rate_limit_exceeded",
            extra={
                "tier": tier.value,
                "identifier": identity,
                "count": count,
                "limit": limit,
                "retry_after": reset_in,
            },
        )
        return RateLimitedError(
            _TIER_MESSAGES[tier],
            tier=tier.value,
            limit=limit,
            retry_after=TIER_POLICIES[tier].retry_after,
            retry_after_seconds=reset_in,
        )

    async def hit(self, tier: RateLimitTier, identity: str) -> RateLimitDecision:
        """Count one request against a tier.

        Raises:
            RateLimitedError: If the tier's ceiling is exceeded in the current window
        """
        limit = self.limit_for(tier)
        key, _, reset_in = self._window(identity, tier)

        try:
            count = await self._store.increment_window(key, TIER_POLICIES[tier].window_seconds)
        except (RedisError, ConnectionError, OSError):
            # Fail open: a counter outage must not block traffic
            logger.exception("rate_limit_check_error", extra={"tier": tier.value})
            return RateLimitDecision(tier=tier.value, count=0, limit=limit, remaining=limit, reset_in_seconds=reset_in)

        if count > limit:
            raise self._reject(tier, identity, count, reset_in)

        logger.debug(
            "rate_limit_check_passed",
            extra={"tier": tier.value, "identifier": identity, "count": count, "limit": limit},
        )
        return RateLimitDecision(
            tier=tier.value,
            count=count,
            limit=limit,
            remaining=limit - count,
            reset_in_seconds=reset_in,
        )

    async def ensure_not_blocked(self, tier: RateLimitTier, identity: str) -> None:
        """Raise if the tier is already exhausted, without counting this attempt.

        Used by tiers that only count failures.
        """
        limit = self.limit_for(tier)
        key, _, reset_in = self._window(identity, tier)
        try:
            count = await self._store.get_count(key)
        except (RedisError, ConnectionError, OSError):
            logger.exception("rate_limit_check_error", extra={"tier": tier.value})
            return
        if count >= limit:
            raise self._reject(tier, identity, count, reset_in)

    async def record_failure(self, tier: RateLimitTier, identity: str) -> int:
        """Count a failed attempt against a failures-only tier and return the new count."""
        key, _, _ = self._window(identity, tier)
        try:
            count = await self._store.increment_window(key, TIER_POLICIES[tier].window_seconds)
        except (RedisError, ConnectionError, OSError):
            logger.exception("rate_limit_record_error", extra={"tier": tier.value})
            return 0
        logger.info("auth_failure_recorded", extra={"tier": tier.value, "identifier": identity, "count": count})
        return count

    async def check(self, tier: RateLimitTier, identity: str) -> None:
        """Apply a tier: failures-only tiers are checked, the rest are counted."""
        if TIER_POLICIES[tier].failures_only:
            await self.ensure_not_blocked(tier, identity)
        else:
            await self.hit(tier, identity)

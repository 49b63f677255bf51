"""Tests for tiered rate limiting."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from src.core.errors import RateLimitedError
from src.core.rate_limiter import InMemoryWindowStore, RateLimiter, RateLimitTier


class FakeClock:
    """Settable clock shared by the limiter and its store."""

    def __init__(self, now: float = 1_800_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(store=InMemoryWindowStore(clock=clock), production=True, clock=clock)


@pytest.mark.asyncio
async def test_requests_within_limit_pass(limiter):
    """Test counting stays under the tier ceiling."""
    decision = await limiter.hit(RateLimitTier.WRITE, "user-1")

    assert decision.count == 1
    assert decision.limit == 50
    assert decision.remaining == 49
    assert 0 < decision.reset_in_seconds <= 15 * 60


@pytest.mark.asyncio
async def test_exceeding_limit_raises_with_retry_details(limiter):
    """Test the request after the ceiling is rejected."""
    for _ in range(3):
        await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-1")

    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-1")

    exc = exc_info.value
    assert exc.status_code == 429
    assert exc.tier == "password_reset"
    assert exc.limit == 3
    assert exc.retry_after == "1 hour"
    assert 0 < exc.retry_after_seconds <= 3600
    assert "password reset" in exc.message


@pytest.mark.asyncio
async def test_identities_and_tiers_are_counted_separately(limiter):
    """Test one exhausted tier does not affect another identity or tier."""
    for _ in range(3):
        await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-1")

    await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-2")
    await limiter.hit(RateLimitTier.WRITE, "user-1")


@pytest.mark.asyncio
async def test_new_window_resets_the_count(limiter, clock):
    """Test counters start over once the window rolls."""
    for _ in range(3):
        await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-1")

    clock.now += 3600

    decision = await limiter.hit(RateLimitTier.PASSWORD_RESET, "user-1")
    assert decision.count == 1


def test_development_multiplies_every_ceiling():
    """Test ceilings are relaxed outside production."""
    limiter = RateLimiter(store=InMemoryWindowStore(), production=False, dev_multiplier=10)

    assert limiter.limit_for(RateLimitTier.GENERAL) == 1000
    assert limiter.limit_for(RateLimitTier.AUTH) == 50


@pytest.mark.asyncio
async def test_auth_tier_counts_only_failures(limiter):
    """Test successful checks never count against the auth tier."""
    for _ in range(20):
        await limiter.check(RateLimitTier.AUTH, "10.0.0.1")

    for _ in range(5):
        await limiter.record_failure(RateLimitTier.AUTH, "10.0.0.1")

    with pytest.raises(RateLimitedError):
        await limiter.check(RateLimitTier.AUTH, "10.0.0.1")
    await limiter.check(RateLimitTier.AUTH, "10.0.0.2")


@pytest.mark.asyncio
async def test_counter_outage_fails_open():
    """Test a broken counter backend lets traffic through."""
    store = AsyncMock()
    store.increment_window.side_effect = RedisError("down")
    store.get_count.side_effect = RedisError("down")
    limiter = RateLimiter(store=store, production=True)

    decision = await limiter.hit(RateLimitTier.WRITE, "user-1")
    await limiter.ensure_not_blocked(RateLimitTier.AUTH, "10.0.0.1")

    assert decision.remaining == decision.limit
    assert await limiter.record_failure(RateLimitTier.AUTH, "10.0.0.1") == 0


@pytest.mark.asyncio
async def test_falls_back_to_memory_without_redis():
    """Test an unavailable Redis client selects the in-memory store."""
    redis = AsyncMock()
    redis.is_available = False
    limiter = RateLimiter(redis=redis, production=True)

    await limiter.hit(RateLimitTier.GENERAL, "10.0.0.1")

    redis.increment_window.assert_not_called()


@pytest.mark.asyncio
async def test_uses_redis_when_available():
    """Test the shared Redis counter backs the limiter when configured."""
    redis = AsyncMock()
    redis.is_available = True
    redis.increment_window.return_value = 7
    limiter = RateLimiter(redis=redis, production=True)

    decision = await limiter.hit(RateLimitTier.GENERAL, "10.0.0.1")

    assert decision.count == 7
    key, ttl = redis.increment_window.call_args.args
    assert key.startswith("ratelimit:general:10.0.0.1:")
    assert ttl == 15 * 60


class TestInMemoryWindowStore:
    @pytest.mark.asyncio
    async def test_counts_expire_with_their_window(self, clock):
        store = InMemoryWindowStore(clock=clock)

        assert await store.increment_window("k", 60) == 1
        assert await store.increment_window("k", 60) == 2
        assert await store.get_count("k") == 2

        clock.now += 61

        assert await store.get_count("k") == 0
        assert await store.increment_window("k", 60) == 1

    @pytest.mark.asyncio
    async def test_clear(self, clock):
        store = InMemoryWindowStore(clock=clock)
        await store.increment_window("k", 60)

        store.clear()

        assert await store.get_count("k") == 0

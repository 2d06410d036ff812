"""
Tests for per-tenant rate limiters.
"""

import pytest

from outbox_relay.core.outbox.rate_limit import InMemoryRateLimiter, RedisRateLimiter

from tests.helpers import ORG_A, ORG_B


class _Clock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeRedis:
    """The three redis.asyncio calls RedisRateLimiter makes."""

    def __init__(self):
        self.values = {}
        self.expiries = {}

    async def get(self, key):
        value = self.values.get(key)
        return None if value is None else str(value)

    async def incrby(self, key, amount):
        self.values[key] = self.values.get(key, 0) + amount
        return self.values[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds
        return True


class TestInMemoryRateLimiter:
    """Fixed one-minute windows per tenant."""

    @pytest.mark.asyncio
    async def test_allows_until_ceiling(self):
        limiter = InMemoryRateLimiter(max_per_minute=10, clock=_Clock(600.0))

        assert await limiter.allow(ORG_A)
        await limiter.record(ORG_A, 9)
        assert await limiter.allow(ORG_A)
        await limiter.record(ORG_A, 1)
        assert not await limiter.allow(ORG_A)

    @pytest.mark.asyncio
    async def test_tenants_are_independent(self):
        limiter = InMemoryRateLimiter(max_per_minute=5, clock=_Clock(600.0))

        await limiter.record(ORG_A, 5)

        assert not await limiter.allow(ORG_A)
        assert await limiter.allow(ORG_B)

    @pytest.mark.asyncio
    async def test_next_minute_resets(self):
        clock = _Clock(600.0)
        limiter = InMemoryRateLimiter(max_per_minute=5, clock=clock)
        await limiter.record(ORG_A, 5)
        assert not await limiter.allow(ORG_A)

        clock.now = 660.0

        assert await limiter.allow(ORG_A)
        assert limiter.current(ORG_A) == 0

    @pytest.mark.asyncio
    async def test_same_minute_bucket(self):
        """Seconds 600 through 659 share one bucket."""
        clock = _Clock(600.0)
        limiter = InMemoryRateLimiter(max_per_minute=5, clock=clock)
        await limiter.record(ORG_A, 3)

        clock.now = 659.9

        assert limiter.current(ORG_A) == 3

    @pytest.mark.asyncio
    async def test_remaining_budget(self):
        limiter = InMemoryRateLimiter(max_per_minute=10, clock=_Clock(600.0))

        assert await limiter.remaining(ORG_A) == 10
        await limiter.record(ORG_A, 7)
        assert await limiter.remaining(ORG_A) == 3
        await limiter.record(ORG_A, 5)
        assert await limiter.remaining(ORG_A) == 0

    @pytest.mark.asyncio
    async def test_record_ignores_non_positive(self):
        limiter = InMemoryRateLimiter(max_per_minute=5, clock=_Clock(600.0))
        await limiter.record(ORG_A, 0)
        assert limiter.current(ORG_A) == 0


class TestRedisRateLimiter:
    """Shared counters keyed rl:<tenant>:<minute>."""

    @pytest.mark.asyncio
    async def test_counts_and_expiry(self):
        client = _FakeRedis()
        limiter = RedisRateLimiter(max_per_minute=10, client=client, clock=_Clock(600.0))

        await limiter.record(ORG_A, 4)
        await limiter.record(ORG_A, 6)

        key = f"rl:{ORG_A}:10"
        assert client.values[key] == 10
        assert client.expiries[key] == 60
        assert await limiter.remaining(ORG_A) == 0
        assert await limiter.remaining(ORG_B) == 10
        assert not await limiter.allow(ORG_A)
        assert await limiter.allow(ORG_B)

    @pytest.mark.asyncio
    async def test_new_window_uses_new_key(self):
        client = _FakeRedis()
        clock = _Clock(600.0)
        limiter = RedisRateLimiter(max_per_minute=3, client=client, clock=clock)
        await limiter.record(ORG_A, 3)

        clock.now = 661.0

        assert await limiter.allow(ORG_A)

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisRateLimiter()

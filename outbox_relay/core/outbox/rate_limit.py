"""
Per-Tenant Rate Limiting

Fixed one-minute windows keyed by (tenant, minute bucket). The processor
asks for the remaining budget before each batch, fetches at most that
many events, and reports delivered counts with record(). A tenant can
therefore never exceed its ceiling within one process's window.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
DEFAULT_MAX_EVENTS_PER_MINUTE = 1000


class RateLimiter(ABC):
    """Interface for per-tenant delivery budgets."""

    @abstractmethod
    async def remaining(self, tenant: str) -> int:
        """Deliveries still allowed to the tenant in the current minute."""

    async def allow(self, tenant: str) -> bool:
        """True while the tenant is under its ceiling for the current minute."""
        return await self.remaining(tenant) > 0

    @abstractmethod
    async def record(self, tenant: str, count: int) -> None:
        """Charge count deliveries to the tenant's current minute."""


class InMemoryRateLimiter(RateLimiter):
    """
    Process-local counters.

    Each instance keeps its own tally, so N instances allow up to N times
    the ceiling. Use RedisRateLimiter when that matters.
    """

    def __init__(
        self,
        max_per_minute: int = DEFAULT_MAX_EVENTS_PER_MINUTE,
        clock: Callable[[], float] = time.time
    ):
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._counts: Dict[Tuple[str, int], int] = {}

    def _bucket(self) -> int:
        return int(self._clock()) // WINDOW_SECONDS

    def _evict(self, current: int) -> None:
        for key in [k for k in self._counts if k[1] < current]:
            del self._counts[key]

    async def remaining(self, tenant: str) -> int:
        bucket = self._bucket()
        self._evict(bucket)
        return max(0, self.max_per_minute - self._counts.get((tenant, bucket), 0))

    async def record(self, tenant: str, count: int) -> None:
        if count <= 0:
            return
        bucket = self._bucket()
        self._counts[(tenant, bucket)] = self._counts.get((tenant, bucket), 0) + count

    def current(self, tenant: str) -> int:
        return self._counts.get((tenant, self._bucket()), 0)


class RedisRateLimiter(RateLimiter):
    """
    Counters shared by every processor instance through Redis.

    Keys are rl:<tenant>:<minute> with an expiry of one window, so stale
    buckets clean themselves up.
    """

    def __init__(
        self,
        redis_url: str = None,
        max_per_minute: int = DEFAULT_MAX_EVENTS_PER_MINUTE,
        client: "redis.Redis" = None,
        clock: Callable[[], float] = time.time
    ):
        if client is None and redis_url is None:
            raise ValueError("RedisRateLimiter needs a redis_url or a client")
        self.r = client or redis.from_url(redis_url, decode_responses=True)
        self.max_per_minute = max_per_minute
        self._clock = clock

    def _key(self, tenant: str) -> str:
        window = int(self._clock()) // WINDOW_SECONDS
        return f"rl:{tenant}:{window}"

    async def remaining(self, tenant: str) -> int:
        val = await self.r.get(self._key(tenant))
        return max(0, self.max_per_minute - int(val or 0))

    async def record(self, tenant: str, count: int) -> None:
        if count <= 0:
            return
        rkey = self._key(tenant)
        val = await self.r.incrby(rkey, count)
        if val == count:
            await self.r.expire(rkey, WINDOW_SECONDS)

    async def close(self) -> None:
        await self.r.aclose()

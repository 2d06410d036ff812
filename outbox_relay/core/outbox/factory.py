"""
Component wiring from OutboxSettings.

Both entry points (the HTTP app and the CLI runner) build their processor,
pruner and migrator here so they agree on backends and limits.
"""

import logging
from typing import Optional

from ..config import OutboxSettings, get_settings
from ..database.adapter import DatabaseAdapter
from .broadcaster import Broadcaster, InMemoryBroadcaster, RealtimeBroadcaster
from .dlq import DLQMigrator
from .locks import (
    AdvisoryLockCoordinator,
    InProcessLockCoordinator,
    LeaseLockCoordinator,
    LockCoordinator,
)
from .processor import BatchProcessor
from .pruner import OutboxPruner
from .rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)


def create_lock_coordinator(db: DatabaseAdapter, settings: OutboxSettings) -> LockCoordinator:
    backend = settings.lock_backend
    if backend == "memory":
        return InProcessLockCoordinator()
    if backend == "advisory":
        return AdvisoryLockCoordinator(db)
    if backend == "lease":
        if settings.lock_ttl_seconds <= settings.invocation_timeout_seconds:
            raise ValueError(
                f"Lock TTL ({settings.lock_ttl_seconds}s) must exceed the invocation "
                f"timeout ({settings.invocation_timeout_seconds}s); leases are not renewed"
            )
        return LeaseLockCoordinator(db, ttl_seconds=settings.lock_ttl_seconds)
    raise ValueError(f"Unknown lock backend: {backend}")


def create_rate_limiter(settings: OutboxSettings) -> RateLimiter:
    backend = settings.rate_limit_backend
    if backend == "memory":
        return InMemoryRateLimiter(settings.max_events_per_minute)
    if backend == "redis":
        return RedisRateLimiter(settings.redis_url, settings.max_events_per_minute)
    raise ValueError(f"Unknown rate limit backend: {backend}")


def create_broadcaster(settings: OutboxSettings) -> Broadcaster:
    backend = settings.broadcast_backend
    if backend == "memory":
        return InMemoryBroadcaster()
    if backend == "realtime":
        return RealtimeBroadcaster(
            settings.realtime_url,
            api_key=settings.realtime_api_key,
            timeout=settings.broadcast_timeout_seconds,
        )
    raise ValueError(f"Unknown broadcast backend: {backend}")


def create_batch_processor(
    db: DatabaseAdapter,
    settings: Optional[OutboxSettings] = None,
    broadcaster: Optional[Broadcaster] = None,
    lock_coordinator: Optional[LockCoordinator] = None,
    rate_limiter: Optional[RateLimiter] = None
) -> BatchProcessor:
    """Build a processor, filling any component not passed in from settings."""
    settings = settings or get_settings()
    processor = BatchProcessor(
        db,
        broadcaster=broadcaster or create_broadcaster(settings),
        lock_coordinator=lock_coordinator or create_lock_coordinator(db, settings),
        rate_limiter=rate_limiter or create_rate_limiter(settings),
        processor_name=settings.processor_name,
        batch_size=settings.batch_size,
        max_attempts=settings.max_attempts,
        invocation_timeout_seconds=settings.invocation_timeout_seconds,
        timeout_buffer_seconds=settings.timeout_buffer_seconds,
    )
    logger.info(
        f"Batch processor ready: name={settings.processor_name}, "
        f"locks={settings.lock_backend}, rate_limit={settings.rate_limit_backend}, "
        f"broadcast={settings.broadcast_backend}"
    )
    return processor


def create_pruner(db: DatabaseAdapter, settings: Optional[OutboxSettings] = None) -> OutboxPruner:
    settings = settings or get_settings()
    return OutboxPruner(
        db,
        chunk_size=settings.prune_chunk_size,
        pause_seconds=settings.prune_pause_seconds,
    )


def create_dlq_migrator(db: DatabaseAdapter, settings: Optional[OutboxSettings] = None) -> DLQMigrator:
    settings = settings or get_settings()
    return DLQMigrator(db, grace_period_minutes=settings.dlq_grace_minutes)

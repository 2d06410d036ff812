"""
Outbox Delivery

Tenant-scoped, at-least-once delivery of outbox events to real-time
subscribers, with dead-lettering and pruning.

Usage:
    from outbox_relay.core.outbox import OutboxWriter, create_batch_processor

    async with db.transaction() as tx:
        # Atomic with your business transaction
        await OutboxWriter(tx).write(
            organization_id=org_id,
            event_type="cataloging_job_completed",
            entity_type="cataloging_job",
            entity_id=job_id,
        )

    result = await create_batch_processor(db).process(org_id)
"""

from .broadcaster import (
    BROADCAST_EVENT,
    Broadcaster,
    InMemoryBroadcaster,
    RealtimeBroadcaster,
    channel_for,
)
from .dlq import DLQMigrator, get_dead_letter_stats
from .exceptions import (
    BroadcastError,
    EventTooLargeError,
    InvalidTenantError,
    OutboxError,
    StoreError,
    TenantScopeError,
)
from .factory import (
    create_batch_processor,
    create_broadcaster,
    create_dlq_migrator,
    create_lock_coordinator,
    create_pruner,
    create_rate_limiter,
)
from .ids import NIL_EVENT_ID, new_event_id, validate_organization_id
from .locks import (
    AdvisoryLockCoordinator,
    InProcessLockCoordinator,
    LeaseLockCoordinator,
    LockCoordinator,
)
from .models import (
    DeadLetterEntry,
    MigrationResult,
    OutboxEvent,
    ProcessingResult,
    ProcessorCursor,
    PruneResult,
    PublicEventPayload,
)
from .monitoring import OutboxMonitor
from .processor import BatchProcessor
from .pruner import OutboxPruner
from .rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from .sanitizer import sanitize_event
from .scope import TenantLogFilter, current_tenant, tenant_scope
from .store import CursorStore, DeadLetterStore, OutboxStore
from .writer import OutboxWriter

__all__ = [
    "BROADCAST_EVENT",
    "Broadcaster",
    "InMemoryBroadcaster",
    "RealtimeBroadcaster",
    "channel_for",
    "DLQMigrator",
    "get_dead_letter_stats",
    "BroadcastError",
    "EventTooLargeError",
    "InvalidTenantError",
    "OutboxError",
    "StoreError",
    "TenantScopeError",
    "create_batch_processor",
    "create_broadcaster",
    "create_dlq_migrator",
    "create_lock_coordinator",
    "create_pruner",
    "create_rate_limiter",
    "NIL_EVENT_ID",
    "new_event_id",
    "validate_organization_id",
    "AdvisoryLockCoordinator",
    "InProcessLockCoordinator",
    "LeaseLockCoordinator",
    "LockCoordinator",
    "DeadLetterEntry",
    "MigrationResult",
    "OutboxEvent",
    "ProcessingResult",
    "ProcessorCursor",
    "PruneResult",
    "PublicEventPayload",
    "OutboxMonitor",
    "BatchProcessor",
    "OutboxPruner",
    "InMemoryRateLimiter",
    "RateLimiter",
    "RedisRateLimiter",
    "sanitize_event",
    "TenantLogFilter",
    "current_tenant",
    "tenant_scope",
    "CursorStore",
    "DeadLetterStore",
    "OutboxStore",
    "OutboxWriter",
]

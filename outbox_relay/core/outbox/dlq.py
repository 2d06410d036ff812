"""
Dead Letter Queue (DLQ) Migration

Moves events that exhausted their delivery attempts out of the outbox and
into dead_letter_entry, one atomic unit per event.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ..database.adapter import DatabaseAdapter
from ..observability import create_span, record_counter
from .models import DeadLetterEntry, MigrationResult, OutboxEvent
from .store import DeadLetterStore, OutboxStore

logger = logging.getLogger(__name__)

DEFAULT_LAST_ERROR = "Max delivery attempts exceeded"


class _DeliveredConcurrently(Exception):
    """Rolls back a migration whose outbox row was delivered meanwhile."""


class DLQMigrator:
    """
    Quarantines poison events.

    Candidates are undelivered events with delivery_attempts >= the maximum
    that are older than the grace period. For each one the dead-letter
    insert and the outbox delete commit together; if the delete finds the
    row already delivered, nothing is written and the event is skipped.
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        grace_period_minutes: int = 5,
        candidate_limit: int = 500,
        now: Callable[[], datetime] = None
    ):
        self.db = db
        self.grace_period = timedelta(minutes=grace_period_minutes)
        self.candidate_limit = candidate_limit
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def migrate(self, max_delivery_attempts: int = 5) -> MigrationResult:
        """
        Move every eligible event to the dead-letter store.

        Returns:
            MigrationResult with the number moved and the sorted tenants affected
        """
        if max_delivery_attempts <= 0:
            raise ValueError("max_delivery_attempts must be positive")

        now = self._now()
        result = MigrationResult()
        tenants = set()

        with create_span("outbox.dead_letter", {"max_delivery_attempts": max_delivery_attempts}) as span:
            candidates = await OutboxStore(self.db).dead_letter_candidates(
                max_delivery_attempts, now - self.grace_period, self.candidate_limit
            )

            for event in candidates:
                if await self._move(event, now):
                    result.moved_count += 1
                    tenants.add(event.organization_id)

            span.set_attribute("outbox.moved", result.moved_count)

        result.affected_tenants = sorted(tenants)

        if result.moved_count:
            record_counter("dlq_entries_total", result.moved_count)
            logger.warning(
                f"Moved {result.moved_count} events to the dead-letter store "
                f"for {len(result.affected_tenants)} organizations"
            )
        else:
            logger.info("No events eligible for dead-lettering")

        return result

    async def _move(self, event: OutboxEvent, failed_at: datetime) -> bool:
        entry = DeadLetterEntry(
            original_event_id=event.id,
            organization_id=event.organization_id,
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            event_data=event.event_data,
            delivery_attempts=event.delivery_attempts,
            last_error=event.last_error or DEFAULT_LAST_ERROR,
            failed_at=failed_at,
        )
        try:
            async with self.db.transaction() as tx:
                await DeadLetterStore(tx).insert(entry)
                if not await OutboxStore(tx).delete_undelivered(event.id):
                    raise _DeliveredConcurrently(event.id)
        except _DeliveredConcurrently:
            logger.info(f"Event {event.id} was delivered during migration, skipping")
            return False

        logger.debug(f"Event {event.id} ({event.event_type}) moved to dead-letter store")
        return True


async def get_dead_letter_stats(
    db: DatabaseAdapter,
    organization_id: Optional[str] = None
) -> Dict[str, Any]:
    """Read-only summary of the dead-letter store."""
    store = DeadLetterStore(db)
    oldest = await store.oldest_failed_at(organization_id)
    return {
        "total_count": await store.count(organization_id),
        "by_event_type": await store.count_by_event_type(organization_id),
        "oldest_entry": oldest.isoformat() if oldest else None,
    }

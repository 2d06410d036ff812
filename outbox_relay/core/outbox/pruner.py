"""
Outbox Pruner

Reclaims storage by deleting delivered events older than the retention
window. Undelivered rows are never touched, so running it twice is harmless.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..observability import create_span, record_counter, record_histogram
from .models import PruneResult
from .store import OutboxStore

logger = logging.getLogger(__name__)


class OutboxPruner:
    """
    Chunked deletion of delivered events.

    Each statement removes at most chunk_size rows (oldest delivered first)
    and the job stops after max_batch_size rows in total, pausing between
    chunks so it does not monopolize the table.
    """

    def __init__(
        self,
        db,
        chunk_size: int = 250,
        pause_seconds: float = 0.05,
        now: Callable[[], datetime] = None
    ):
        self.outbox = OutboxStore(db)
        self.chunk_size = chunk_size
        self.pause_seconds = pause_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def prune(self, retention_hours: int = 48, max_batch_size: int = 1000) -> PruneResult:
        """
        Delete delivered events older than retention_hours.

        Returns:
            PruneResult with the number of rows removed and the age of the
            oldest delivered row still present (0 when none remain)
        """
        if retention_hours < 0:
            raise ValueError("retention_hours must not be negative")
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

        started = time.monotonic()
        cutoff = self._now() - timedelta(hours=retention_hours)
        deleted = 0

        with create_span("outbox.prune", {"retention_hours": retention_hours}) as span:
            while deleted < max_batch_size:
                limit = min(self.chunk_size, max_batch_size - deleted)
                removed = await self.outbox.delete_delivered_before(cutoff, limit)
                deleted += removed
                if removed < limit:
                    break
                if deleted < max_batch_size and self.pause_seconds > 0:
                    await asyncio.sleep(self.pause_seconds)

            oldest = await self.outbox.oldest_delivered_at()
            age_hours = 0.0
            if oldest is not None:
                age_hours = round(max(0.0, (self._now() - oldest).total_seconds() / 3600), 2)

            elapsed_ms = int((time.monotonic() - started) * 1000)
            span.set_attribute("outbox.deleted", deleted)

        record_counter("outbox_pruned_total", deleted)
        record_histogram("outbox_prune_duration_seconds", elapsed_ms / 1000)
        logger.info(
            f"Pruned {deleted} delivered events older than {retention_hours}h in {elapsed_ms}ms"
        )

        return PruneResult(
            deleted_count=deleted,
            execution_time_ms=elapsed_ms,
            oldest_remaining_delivered_event_age_hours=age_hours,
        )

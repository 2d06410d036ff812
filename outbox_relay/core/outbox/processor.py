"""
Batch Processor

Delivers one tenant's pending outbox events per invocation. An external
scheduler (the HTTP trigger or the CLI runner) calls process(org_id); the
only state carried between invocations is the per-tenant cursor.

Delivery is at-least-once: an event may be broadcast and then fail to be
marked delivered, in which case it is sent again on a later run.
"""

import logging
import time
from typing import Callable, Optional

from ..observability import add_event_to_span, create_span, record_counter, record_histogram
from .broadcaster import BROADCAST_EVENT, Broadcaster, channel_for
from .exceptions import BroadcastError
from .ids import validate_organization_id
from .locks import LockCoordinator
from .models import ProcessingResult
from .rate_limit import RateLimiter
from .sanitizer import sanitize_event
from .scope import tenant_scope
from .store import CursorStore, OutboxStore

logger = logging.getLogger(__name__)

DEFAULT_PROCESSOR_NAME = "notification-processor"


class BatchProcessor:
    """
    Cursor-driven, per-tenant delivery loop.

    Features:
    - Non-blocking per-tenant lock; contention returns a skipped result
    - Batches in ascending id order past the stored cursor
    - Stops at the first failed broadcast and leaves the rest for the next run
    - Cooperative deadline: invocation timeout minus a safety buffer
    - Deadline checked before every broadcast, not just every batch
    - Each batch is capped at the tenant's remaining rate budget

    Usage:
        processor = BatchProcessor(db, broadcaster, locks, rate_limiter)
        result = await processor.process(org_id)
    """

    def __init__(
        self,
        db,
        broadcaster: Broadcaster,
        lock_coordinator: LockCoordinator,
        rate_limiter: RateLimiter,
        processor_name: str = DEFAULT_PROCESSOR_NAME,
        batch_size: int = 100,
        max_attempts: int = 5,
        invocation_timeout_seconds: float = 30.0,
        timeout_buffer_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.outbox = OutboxStore(db)
        self.cursors = CursorStore(db)
        self.broadcaster = broadcaster
        self.locks = lock_coordinator
        self.rate_limiter = rate_limiter
        self.processor_name = processor_name
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.processing_window = max(0.0, invocation_timeout_seconds - timeout_buffer_seconds)
        self._clock = clock

    def lock_key(self, organization_id: str) -> str:
        return f"{self.processor_name}:{organization_id}"

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    async def process(self, organization_id: str) -> ProcessingResult:
        """
        Run one invocation for one tenant.

        Raises:
            InvalidTenantError: organization_id is not UUID-shaped
            StoreError: a store call failed; the cursor keeps its last committed value
        """
        org_id = validate_organization_id(organization_id)
        start = self._clock()

        with create_span("outbox.process", {"organization_id": org_id}) as span, tenant_scope(org_id):
            async with self.locks.hold(self.lock_key(org_id)) as acquired:
                if not acquired:
                    logger.info(f"Processor already active for org {org_id}, skipping")
                    record_counter("outbox_invocations_skipped_total", 1, {"processor": self.processor_name})
                    span.set_attribute("outbox.skipped", True)
                    return ProcessingResult(
                        organization_id=org_id,
                        skipped=True,
                        duration_ms=self._elapsed_ms(start),
                    )

                result = await self._drain(org_id, start)

            result.duration_ms = self._elapsed_ms(start)
            span.set_attribute("outbox.processed", result.processed)
            span.set_attribute("outbox.completed", result.completed)
            span.set_attribute("outbox.batches", result.batches)

        record_histogram(
            "outbox_processing_duration_seconds",
            result.duration_ms / 1000,
            {"processor": self.processor_name}
        )
        logger.info(
            f"Processed {result.processed} events for org {org_id} "
            f"in {result.batches} batches ({result.duration_ms}ms, completed={result.completed})"
        )
        return result

    async def _drain(self, org_id: str, start: float) -> ProcessingResult:
        result = ProcessingResult(organization_id=org_id)
        deadline = start + self.processing_window
        channel = channel_for(org_id)

        cursor = await self.cursors.get_or_create(self.processor_name, org_id)
        position = cursor.last_processed_event_id
        logger.debug(f"Starting org {org_id} from cursor {position}")

        while self._clock() < deadline:
            budget = await self.rate_limiter.remaining(org_id)
            if budget <= 0:
                logger.warning(f"Rate limit reached for org {org_id}, stopping")
                add_event_to_span("rate_limited")
                break

            events = await self.outbox.fetch_pending(
                org_id, position, self.max_attempts, min(self.batch_size, budget)
            )
            if not events:
                result.completed = True
                break

            result.batches += 1
            delivered = 0
            last_id: Optional[str] = None

            for event in events:
                if self._clock() >= deadline:
                    logger.info(f"Deadline reached for org {org_id} mid-batch, stopping")
                    add_event_to_span("deadline_reached")
                    break

                payload = sanitize_event(event).model_dump(mode="json")
                try:
                    await self.broadcaster.publish(channel, BROADCAST_EVENT, payload)
                except BroadcastError as e:
                    logger.warning(f"Delivery failed for event {event.id} ({event.event_type}): {e}")
                    await self.outbox.increment_if_attempts_below(
                        event.id, org_id, self.max_attempts, str(e)
                    )
                    record_counter(
                        "outbox_delivery_failures_total", 1, {"event_type": event.event_type}
                    )
                    result.failed_event_id = event.id
                    break

                if not await self.outbox.mark_delivered(event.id, org_id):
                    logger.debug(f"Event {event.id} was already marked delivered")
                delivered += 1
                last_id = event.id

            if delivered:
                await self.cursors.advance(self.processor_name, org_id, last_id)
                await self.rate_limiter.record(org_id, delivered)
                record_counter("outbox_processed_total", delivered, {"processor": self.processor_name})
                result.processed += delivered
                position = last_id

            if delivered < len(events):
                break

        return result

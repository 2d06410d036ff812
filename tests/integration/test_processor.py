"""
Integration tests for the batch processor against SQLite.
"""

import asyncio
from typing import Any, Dict

import pytest

from outbox_relay.core.outbox.broadcaster import InMemoryBroadcaster, channel_for
from outbox_relay.core.outbox.exceptions import InvalidTenantError, StoreError
from outbox_relay.core.outbox.ids import NIL_EVENT_ID
from outbox_relay.core.outbox.rate_limit import InMemoryRateLimiter
from outbox_relay.core.outbox.store import CursorStore, OutboxStore

from tests.helpers import ORG_A, ORG_B, BlockingBroadcaster, ScriptedBroadcaster

PROCESSOR = "notification-processor"


class _SlowBroadcaster(InMemoryBroadcaster):
    """Moves the fake clock forward on every publish."""

    def __init__(self, clock, seconds: float):
        super().__init__()
        self.clock = clock
        self.seconds = seconds

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.clock.advance(self.seconds)
        await super().publish(channel, event, payload)


async def _cursor(db, org=ORG_A) -> str:
    cursor = await CursorStore(db).get(PROCESSOR, org)
    return cursor.last_processed_event_id if cursor else None


class TestDelivery:
    """Happy path and payload shape."""

    @pytest.mark.asyncio
    async def test_delivers_pending_in_id_order(self, db, make_processor, seed_event, broadcaster):
        events = [await seed_event() for _ in range(3)]

        result = await make_processor(broadcaster).process(ORG_A)

        assert result.processed == 3
        assert result.completed is True
        assert result.skipped is False
        assert [p["id"] for p in broadcaster.payloads_for(channel_for(ORG_A))] == [e.id for e in events]
        assert await _cursor(db) == events[-1].id

        stored = await OutboxStore(db).get(events[0].id, ORG_A)
        assert stored.delivered_at is not None
        assert stored.delivery_attempts == 1

    @pytest.mark.asyncio
    async def test_broadcast_payload_is_sanitized(self, make_processor, seed_event, broadcaster):
        await seed_event(event_data={"secret": "internal only"})

        await make_processor(broadcaster).process(ORG_A)

        message = broadcaster.published[0]
        assert message["event"] == "outbox_event"
        assert message["topic"] == f"notifications:{ORG_A}"
        assert set(message["payload"]) == {"id", "event_type", "entity_type", "entity_id", "created_at"}
        assert "internal only" not in str(message)

    @pytest.mark.asyncio
    async def test_empty_outbox_completes(self, db, make_processor):
        result = await make_processor().process(ORG_A)

        assert result.processed == 0
        assert result.completed is True
        assert await _cursor(db) == NIL_EVENT_ID

    @pytest.mark.asyncio
    async def test_uppercase_org_id_is_normalized(self, make_processor, seed_event):
        await seed_event()

        result = await make_processor().process(ORG_A.upper())

        assert result.organization_id == ORG_A
        assert result.processed == 1

    @pytest.mark.asyncio
    async def test_drains_multiple_batches(self, db, make_processor, seed_event, broadcaster):
        events = [await seed_event() for _ in range(25)]

        result = await make_processor(broadcaster, batch_size=10).process(ORG_A)

        assert result.processed == 25
        assert result.batches == 3
        assert result.completed is True
        assert await _cursor(db) == events[-1].id


class TestFailureHandling:
    """A failed broadcast stops the run and is retried later."""

    @pytest.mark.asyncio
    async def test_failure_stops_run_and_retry_succeeds(self, db, make_processor, seed_event):
        e1, e2, e3 = [await seed_event() for _ in range(3)]
        flaky = ScriptedBroadcaster(fail_ids={e2.id})

        first = await make_processor(flaky).process(ORG_A)

        assert first.processed == 1
        assert first.completed is False
        assert first.failed_event_id == e2.id
        assert await _cursor(db) == e1.id
        failed = await OutboxStore(db).get(e2.id, ORG_A)
        assert failed.delivery_attempts == 1
        assert failed.delivered_at is None
        assert "scripted failure" in failed.last_error
        untouched = await OutboxStore(db).get(e3.id, ORG_A)
        assert untouched.delivery_attempts == 0

        flaky.fail_ids.clear()
        second = await make_processor(flaky).process(ORG_A)

        assert second.processed == 2
        assert second.completed is True
        assert await _cursor(db) == e3.id
        assert flaky.attempts == [e1.id, e2.id, e2.id, e3.id]

    @pytest.mark.asyncio
    async def test_first_event_failure_leaves_cursor(self, db, make_processor, seed_event):
        await seed_event()

        result = await make_processor(ScriptedBroadcaster(fail_all=True)).process(ORG_A)

        assert result.processed == 0
        assert result.completed is False
        assert await _cursor(db) == NIL_EVENT_ID

    @pytest.mark.asyncio
    async def test_store_failure_aborts_without_losing_events(
        self, db, make_processor, seed_event, broadcaster, monkeypatch
    ):
        events = [await seed_event() for _ in range(3)]
        original = OutboxStore.mark_delivered
        calls = []

        async def failing_mark_delivered(self, event_id, organization_id, delivered_at=None):
            calls.append(event_id)
            if len(calls) == 2:
                raise StoreError("connection lost")
            return await original(self, event_id, organization_id, delivered_at)

        monkeypatch.setattr(OutboxStore, "mark_delivered", failing_mark_delivered)
        processor = make_processor(broadcaster)

        with pytest.raises(StoreError):
            await processor.process(ORG_A)

        assert await _cursor(db) == NIL_EVENT_ID
        assert not processor.locks.is_held(processor.lock_key(ORG_A))

        monkeypatch.undo()
        pending = await OutboxStore(db).fetch_pending(ORG_A, NIL_EVENT_ID, 5, 100)
        assert [e.id for e in pending] == [events[1].id, events[2].id]

        retry = await make_processor(broadcaster).process(ORG_A)

        assert retry.processed == 2
        assert retry.completed is True
        assert await _cursor(db) == events[2].id

    @pytest.mark.asyncio
    async def test_attempts_stop_at_ceiling(self, db, make_processor, seed_event):
        event = await seed_event()
        failing = ScriptedBroadcaster(fail_all=True)
        processor = make_processor(failing, max_attempts=3)

        for _ in range(5):
            await processor.process(ORG_A)

        stored = await OutboxStore(db).get(event.id, ORG_A)
        assert stored.delivery_attempts == 3
        assert len(failing.attempts) == 3

    @pytest.mark.asyncio
    async def test_exhausted_events_are_not_fetched(self, make_processor, seed_event, broadcaster):
        await seed_event(delivery_attempts=5)

        result = await make_processor(broadcaster).process(ORG_A)

        assert result.processed == 0
        assert result.completed is True
        assert broadcaster.published == []

    @pytest.mark.asyncio
    async def test_all_events_eventually_delivered(self, db, make_processor, seed_event):
        events = [await seed_event() for _ in range(6)]
        flaky = ScriptedBroadcaster(fail_ids={events[1].id, events[4].id})
        processor = make_processor(flaky)

        await processor.process(ORG_A)
        await processor.process(ORG_A)
        flaky.fail_ids.clear()
        await processor.process(ORG_A)

        pending = await OutboxStore(db).fetch_pending(ORG_A, NIL_EVENT_ID, 5, 100)
        assert pending == []
        assert await _cursor(db) == events[-1].id


class TestInvocationLimits:
    """Deadline and rate limit."""

    @pytest.mark.asyncio
    async def test_stops_at_deadline(self, db, make_processor, seed_event, clock):
        events = [await seed_event() for _ in range(10)]
        slow = _SlowBroadcaster(clock, seconds=4)

        result = await make_processor(
            slow, batch_size=1, invocation_timeout_seconds=30, timeout_buffer_seconds=5
        ).process(ORG_A)

        assert result.processed == 7
        assert result.batches == 7
        assert result.completed is False
        assert result.duration_ms < 30000
        assert await _cursor(db) == events[6].id

    @pytest.mark.asyncio
    async def test_deadline_cuts_a_full_batch_short(self, db, make_processor, seed_event, clock):
        """One slow batch of the default size must not run past the hard timeout."""
        events = [await seed_event() for _ in range(10)]
        slow = _SlowBroadcaster(clock, seconds=4)

        result = await make_processor(
            slow, invocation_timeout_seconds=30, timeout_buffer_seconds=5
        ).process(ORG_A)

        assert result.batches == 1
        assert result.processed == 7
        assert result.completed is False
        assert result.duration_ms == 28000
        assert len(slow.published) == 7
        assert await _cursor(db) == events[6].id

        pending = await OutboxStore(db).fetch_pending(ORG_A, events[6].id, 5, 100)
        assert [e.id for e in pending] == [e.id for e in events[7:]]

    @pytest.mark.asyncio
    async def test_stops_at_rate_limit(self, make_processor, seed_event, broadcaster):
        for _ in range(5):
            await seed_event()
        limiter = InMemoryRateLimiter(max_per_minute=2)

        result = await make_processor(broadcaster, batch_size=2, rate_limiter=limiter).process(ORG_A)

        assert result.processed == 2
        assert result.completed is False
        assert limiter.current(ORG_A) == 2

    @pytest.mark.asyncio
    async def test_batch_is_capped_at_remaining_budget(self, db, make_processor, seed_event, broadcaster):
        events = [await seed_event() for _ in range(5)]
        limiter = InMemoryRateLimiter(max_per_minute=3)

        result = await make_processor(broadcaster, rate_limiter=limiter).process(ORG_A)

        assert result.processed == 3
        assert result.completed is False
        assert limiter.current(ORG_A) == 3
        assert len(broadcaster.published) == 3
        assert await _cursor(db) == events[2].id


class TestConcurrency:
    """One processor per tenant at a time."""

    @pytest.mark.asyncio
    async def test_overlapping_invocation_is_skipped(self, make_processor, seed_event):
        await seed_event()
        blocking = BlockingBroadcaster()
        processor = make_processor(blocking)

        running = asyncio.create_task(processor.process(ORG_A))
        await asyncio.wait_for(blocking.entered.wait(), timeout=5)

        skipped = await processor.process(ORG_A)

        blocking.release()
        finished = await running

        assert skipped.skipped is True
        assert skipped.processed == 0
        assert finished.processed == 1
        assert len(blocking.published) == 1

    @pytest.mark.asyncio
    async def test_other_tenant_is_not_blocked(self, make_processor, seed_event):
        await seed_event(organization_id=ORG_A)
        await seed_event(organization_id=ORG_B)
        blocking = BlockingBroadcaster()
        processor = make_processor(blocking)

        running = asyncio.create_task(processor.process(ORG_A))
        await asyncio.wait_for(blocking.entered.wait(), timeout=5)
        other = asyncio.create_task(processor.process(ORG_B))
        await asyncio.sleep(0)
        blocking.release()

        results = await asyncio.gather(running, other)

        assert [r.skipped for r in results] == [False, False]
        assert [r.processed for r in results] == [1, 1]

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, make_processor, seed_event):
        processor = make_processor()

        await processor.process(ORG_A)

        assert not processor.locks.is_held(processor.lock_key(ORG_A))


class TestTenantIsolation:

    @pytest.mark.asyncio
    async def test_only_requested_tenant_is_processed(self, db, make_processor, seed_event, broadcaster):
        await seed_event(organization_id=ORG_A)
        other = await seed_event(organization_id=ORG_B)

        await make_processor(broadcaster).process(ORG_A)

        assert len(broadcaster.payloads_for(channel_for(ORG_A))) == 1
        assert broadcaster.payloads_for(channel_for(ORG_B)) == []
        stored = await OutboxStore(db).get(other.id, ORG_B)
        assert stored.delivered_at is None
        assert await _cursor(db, ORG_B) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("org_id", ["", "not-a-uuid", "a1a1a1a1-0000-4000-8000", "'; DROP TABLE outbox_event;--"])
    async def test_invalid_tenant_rejected(self, make_processor, org_id):
        with pytest.raises(InvalidTenantError):
            await make_processor().process(org_id)


class TestCursor:

    @pytest.mark.asyncio
    async def test_cursor_never_moves_backwards(self, db, seed_event):
        older = await seed_event()
        newer = await seed_event()
        cursors = CursorStore(db)
        await cursors.get_or_create(PROCESSOR, ORG_A)

        assert await cursors.advance(PROCESSOR, ORG_A, newer.id)
        assert not await cursors.advance(PROCESSOR, ORG_A, older.id)
        assert (await cursors.get(PROCESSOR, ORG_A)).last_processed_event_id == newer.id

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db):
        cursors = CursorStore(db)
        first = await cursors.get_or_create(PROCESSOR, ORG_A)
        second = await cursors.get_or_create(PROCESSOR, ORG_A)

        assert first.last_processed_event_id == NIL_EVENT_ID
        assert second.last_processed_event_id == NIL_EVENT_ID
        assert len(await cursors.list_all()) == 1

"""
Integration tests for the outbox writer.
"""

import pytest

from outbox_relay.core.outbox.exceptions import EventTooLargeError, InvalidTenantError
from outbox_relay.core.outbox.ids import event_id_timestamp_ms
from outbox_relay.core.outbox.store import OutboxStore
from outbox_relay.core.outbox.writer import MAX_EVENT_DATA_BYTES, OutboxWriter

from tests.helpers import ORG_A, ORG_B


async def _count(db) -> int:
    return await db.fetchval("SELECT COUNT(*) FROM outbox_event")


class TestOutboxWriter:
    """Writing events with and without a surrounding transaction."""

    @pytest.mark.asyncio
    async def test_write_persists_undelivered_event(self, db):
        event = await OutboxWriter(db).write(
            organization_id=ORG_A.upper(),
            event_type="cataloging_job_completed",
            entity_type="cataloging_job",
            entity_id="c0c0c0c0-0000-4000-8000-000000000001",
            event_data={"items": 12},
        )

        stored = await OutboxStore(db).get(event.id, ORG_A)
        assert stored.organization_id == ORG_A
        assert stored.event_data == {"items": 12}
        assert stored.delivered_at is None
        assert stored.delivery_attempts == 0
        assert event_id_timestamp_ms(event.id) > 0

    @pytest.mark.asyncio
    async def test_write_rolls_back_with_transaction(self, db):
        with pytest.raises(RuntimeError):
            async with db.transaction() as tx:
                await OutboxWriter(tx).write(ORG_A, "cataloging_job_completed")
                raise RuntimeError("business logic failed")

        assert await _count(db) == 0

    @pytest.mark.asyncio
    async def test_commits_with_transaction(self, db):
        async with db.transaction() as tx:
            await OutboxWriter(tx).write(ORG_A, "cataloging_job_completed")

        assert await _count(db) == 1

    @pytest.mark.asyncio
    async def test_rejects_oversized_event_data(self, db):
        with pytest.raises(EventTooLargeError):
            await OutboxWriter(db).write(
                ORG_A, "cataloging_job_completed", {"blob": "x" * MAX_EVENT_DATA_BYTES}
            )
        assert await _count(db) == 0

    @pytest.mark.asyncio
    async def test_rejects_invalid_tenant(self, db):
        with pytest.raises(InvalidTenantError):
            await OutboxWriter(db).write("not-a-uuid", "cataloging_job_completed")

    @pytest.mark.asyncio
    async def test_write_batch_is_atomic(self, db):
        writer = OutboxWriter(db)

        events = await writer.write_batch([
            (ORG_A, "cataloging_job_completed", {"n": 1}),
            (ORG_B, "export_ready", {}),
        ])
        assert len(events) == 2
        assert await _count(db) == 2

        with pytest.raises(InvalidTenantError):
            await writer.write_batch([
                (ORG_A, "cataloging_job_completed", {}),
                ("bogus", "cataloging_job_completed", {}),
            ])
        assert await _count(db) == 2

    @pytest.mark.asyncio
    async def test_ids_increase_in_write_order(self, db):
        writer = OutboxWriter(db)
        ids = [(await writer.write(ORG_A, "cataloging_job_completed")).id for _ in range(20)]
        assert ids == sorted(ids)

"""
Shared Test Fixtures

SQLite in-memory database through the production adapter, in-process
broadcasters and a controllable clock.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest

from outbox_relay.core.config import reset_settings
from outbox_relay.core.database import DatabaseAdapter, DatabaseConfig, create_schema
from outbox_relay.core.outbox.broadcaster import InMemoryBroadcaster
from outbox_relay.core.outbox.ids import new_event_id
from outbox_relay.core.outbox.locks import InProcessLockCoordinator
from outbox_relay.core.outbox.models import OutboxEvent
from outbox_relay.core.outbox.processor import BatchProcessor
from outbox_relay.core.outbox.rate_limit import InMemoryRateLimiter
from outbox_relay.core.outbox.store import OutboxStore

from tests.helpers import ORG_A, FakeClock


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
async def db():
    """Empty outbox schema on an in-memory SQLite database."""
    adapter = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=":memory:"))
    await adapter.connect()
    await create_schema(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def broadcaster() -> InMemoryBroadcaster:
    return InMemoryBroadcaster()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_processor(db, clock):
    """Build a BatchProcessor on the test database with overridable parts."""

    def _make(broadcaster=None, **overrides) -> BatchProcessor:
        options = dict(
            lock_coordinator=InProcessLockCoordinator(),
            rate_limiter=InMemoryRateLimiter(1000),
            batch_size=100,
            max_attempts=5,
            clock=clock,
        )
        options.update(overrides)
        return BatchProcessor(db, broadcaster or InMemoryBroadcaster(), **options)

    return _make


@pytest.fixture
def seed_event(db):
    """Insert an outbox row directly, bypassing the writer's checks."""

    async def _seed(
        organization_id: str = ORG_A,
        event_type: str = "cataloging_job_completed",
        created_at: Optional[datetime] = None,
        delivered_at: Optional[datetime] = None,
        delivery_attempts: int = 0,
        last_error: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> OutboxEvent:
        event = OutboxEvent(
            id=event_id or new_event_id(),
            organization_id=organization_id,
            event_type=event_type,
            entity_type="cataloging_job",
            entity_id="c0c0c0c0-0000-4000-8000-000000000001",
            event_data=event_data or {"internal": "do-not-broadcast"},
            created_at=created_at or datetime.now(timezone.utc),
            delivered_at=delivered_at,
            delivery_attempts=delivery_attempts,
            last_error=last_error,
        )
        return await OutboxStore(db).insert(event)

    return _seed

"""
Integration tests for outbox health monitoring.
"""

from datetime import timedelta

import pytest

from outbox_relay.core.outbox.ids import new_event_id
from outbox_relay.core.outbox.monitoring import OutboxMonitor

from tests.helpers import ORG_A, minutes_ago


class TestHealthMetrics:

    @pytest.mark.asyncio
    async def test_empty_outbox_is_healthy(self, db):
        metrics = await OutboxMonitor(db).health_metrics()

        assert metrics["undelivered_count"] == 0
        assert metrics["oldest_undelivered_age_seconds"] == 0.0
        assert metrics["dlq_total"] == 0
        assert metrics["alerts"] == []
        assert metrics["healthy"] is True

    @pytest.mark.asyncio
    async def test_backlog_and_delivery_time(self, db, seed_event):
        created = minutes_ago(30)
        await seed_event(created_at=created, delivered_at=created + timedelta(seconds=10))
        await seed_event(created_at=minutes_ago(1), delivery_attempts=2)

        metrics = await OutboxMonitor(db).health_metrics()

        assert metrics["undelivered_count"] == 1
        assert metrics["retry_events"] == 1
        assert metrics["events_last_hour"] == 2
        assert metrics["avg_delivery_time_seconds"] == pytest.approx(10.0, abs=0.01)
        assert metrics["healthy"] is True

    @pytest.mark.asyncio
    async def test_stale_backlog_raises_alert(self, db, seed_event):
        await seed_event(created_at=minutes_ago(10))

        metrics = await OutboxMonitor(db).health_metrics()

        assert metrics["oldest_undelivered_age_seconds"] >= 600
        assert metrics["healthy"] is False
        assert any("Oldest undelivered" in alert for alert in metrics["alerts"])


class TestCursorHealth:

    @pytest.mark.asyncio
    async def test_reports_events_ahead_and_stranded(self, db, seed_event, make_processor):
        late_id = new_event_id()
        await seed_event()
        await make_processor().process(ORG_A)

        await seed_event(event_id=late_id)
        await seed_event()

        report = await OutboxMonitor(db).cursor_health()

        assert len(report) == 1
        cursor = report[0]
        assert cursor["processor_name"] == "notification-processor"
        assert cursor["organization_id"] == ORG_A
        assert cursor["events_ahead"] == 1
        assert cursor["stranded_events"] == 1
        assert cursor["lag_seconds"] >= 0


class TestSnapshot:

    @pytest.mark.asyncio
    async def test_sections(self, db):
        snapshot = await OutboxMonitor(db).snapshot()

        assert set(snapshot) == {"timestamp", "outbox", "cursors", "dead_letter"}
        assert snapshot["dead_letter"]["total_count"] == 0
        assert snapshot["cursors"] == []

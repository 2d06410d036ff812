"""
Outbox Monitoring

Read-only health queries over the outbox, the cursors and the dead-letter
store. Nothing here mutates state.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from ..database.adapter import DatabaseAdapter, parse_timestamp
from ..observability import traced
from .dlq import get_dead_letter_stats
from .store import CursorStore, DeadLetterStore

logger = logging.getLogger(__name__)

METRICS_WINDOW = timedelta(days=7)

# Alert thresholds
MAX_UNDELIVERED = 1000
MAX_OLDEST_UNDELIVERED_SECONDS = 300
MAX_DLQ_LAST_HOUR = 10


def _age_seconds(now: datetime, value) -> float:
    ts = parse_timestamp(value)
    if ts is None:
        return 0.0
    return max(0.0, (now - ts).total_seconds())


class OutboxMonitor:
    """
    Health metrics for operators and alerting.

    Usage:
        monitor = OutboxMonitor(db)
        metrics = await monitor.health_metrics()
        if metrics["alerts"]:
            ...
    """

    def __init__(self, db: DatabaseAdapter, now: Callable[[], datetime] = None):
        self.db = db
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _delivery_seconds_expr(self) -> str:
        if self.db.is_postgres:
            return "EXTRACT(EPOCH FROM (delivered_at - created_at))"
        return "(julianday(delivered_at) - julianday(created_at)) * 86400.0"

    async def health_metrics(self) -> Dict[str, Any]:
        """Outbox backlog and dead-letter activity over the last seven days."""
        now = self._now()
        window_start = now - METRICS_WINDOW
        hour_ago = now - timedelta(hours=1)

        row = await self.db.fetchrow(
            f"""
            SELECT
                SUM(CASE WHEN delivered_at IS NULL THEN 1 ELSE 0 END) AS undelivered,
                MIN(CASE WHEN delivered_at IS NULL THEN created_at END) AS oldest_undelivered,
                AVG(CASE WHEN delivered_at IS NOT NULL THEN {self._delivery_seconds_expr()} END) AS avg_delivery_seconds,
                SUM(CASE WHEN delivery_attempts > 1 THEN 1 ELSE 0 END) AS retry_events,
                SUM(CASE WHEN created_at >= $2 THEN 1 ELSE 0 END) AS events_last_hour
            FROM outbox_event
            WHERE created_at >= $1
            """,
            window_start, hour_ago
        ) or {}

        dead_letters = DeadLetterStore(self.db)
        metrics = {
            "undelivered_count": int(row.get("undelivered") or 0),
            "oldest_undelivered_age_seconds": round(_age_seconds(now, row.get("oldest_undelivered")), 1),
            "avg_delivery_time_seconds": round(float(row.get("avg_delivery_seconds") or 0.0), 3),
            "retry_events": int(row.get("retry_events") or 0),
            "events_last_hour": int(row.get("events_last_hour") or 0),
            "dlq_total": await dead_letters.count(),
            "dlq_last_hour": await dead_letters.count(since=hour_ago),
        }

        alerts: List[str] = []
        if metrics["undelivered_count"] > MAX_UNDELIVERED:
            alerts.append(f"{metrics['undelivered_count']} undelivered events (threshold {MAX_UNDELIVERED})")
        if metrics["oldest_undelivered_age_seconds"] > MAX_OLDEST_UNDELIVERED_SECONDS:
            alerts.append(
                f"Oldest undelivered event is {metrics['oldest_undelivered_age_seconds']}s old "
                f"(threshold {MAX_OLDEST_UNDELIVERED_SECONDS}s)"
            )
        if metrics["dlq_last_hour"] > MAX_DLQ_LAST_HOUR:
            alerts.append(f"{metrics['dlq_last_hour']} events dead-lettered in the last hour (threshold {MAX_DLQ_LAST_HOUR})")

        for alert in alerts:
            logger.warning(f"Outbox health alert: {alert}")

        metrics["alerts"] = alerts
        metrics["healthy"] = not alerts
        return metrics

    async def cursor_health(self) -> List[Dict[str, Any]]:
        """
        Per (processor, organization) cursor state.

        stranded_events counts undelivered rows at or below the cursor. The
        processor never looks behind its cursor, so these are only resolved
        by the dead-letter path or by hand; a non-zero value usually means a
        writer committed an id older than events already delivered.
        """
        now = self._now()
        report = []
        for cursor in await CursorStore(self.db).list_all():
            counts = await self.db.fetchrow(
                """
                SELECT
                    SUM(CASE WHEN id > $2 THEN 1 ELSE 0 END) AS ahead,
                    SUM(CASE WHEN id <= $2 THEN 1 ELSE 0 END) AS stranded
                FROM outbox_event
                WHERE organization_id = $1 AND delivered_at IS NULL
                """,
                cursor.organization_id, cursor.last_processed_event_id
            ) or {}
            report.append({
                "processor_name": cursor.processor_name,
                "organization_id": cursor.organization_id,
                "last_processed_event_id": cursor.last_processed_event_id,
                "last_processed_at": cursor.last_processed_at.isoformat(),
                "lag_seconds": round(_age_seconds(now, cursor.last_processed_at), 1),
                "events_ahead": int(counts.get("ahead") or 0),
                "stranded_events": int(counts.get("stranded") or 0),
            })
        return report

    async def dead_letter_stats(self, organization_id: str = None) -> Dict[str, Any]:
        return await get_dead_letter_stats(self.db, organization_id)

    @traced("outbox.health")
    async def snapshot(self) -> Dict[str, Any]:
        """Everything above in one document."""
        return {
            "timestamp": self._now().isoformat(),
            "outbox": await self.health_metrics(),
            "cursors": await self.cursor_health(),
            "dead_letter": await self.dead_letter_stats(),
        }

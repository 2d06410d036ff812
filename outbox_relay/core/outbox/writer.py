"""
Outbox Writer

Records events in outbox_event. Pass the session of your business
transaction so the event commits (or rolls back) with the state change it
describes.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..database.adapter import DatabaseAdapter, DatabaseBackend, get_database
from ..config import get_settings
from .exceptions import EventTooLargeError
from .ids import new_event_id, validate_organization_id
from .models import OutboxEvent
from .store import OutboxStore

logger = logging.getLogger(__name__)

MAX_EVENT_DATA_BYTES = 1024
NOTIFY_CHANNEL = "outbox_events"


class OutboxWriter:
    """
    Writes events to the outbox for reliable delivery.

    Usage:
        async with db.transaction() as tx:
            # Your business logic here...
            await OutboxWriter(tx).write(
                organization_id=org_id,
                event_type="cataloging_job_completed",
                entity_type="cataloging_job",
                entity_id=job_id,
                event_data={"items": 12},
            )
        # Transaction commits, outbox row is persisted

    With notify enabled on PostgreSQL, each write also sends
    pg_notify('outbox_events', org_id) so a listener can trigger the
    processor early. Delivery never depends on it.
    """

    def __init__(self, db=None, notify_enabled: Optional[bool] = None):
        self._db = db
        if notify_enabled is None:
            notify_enabled = get_settings().notify_enabled
        self._notify = notify_enabled

    async def _get_db(self):
        if self._db is None:
            self._db = await get_database()
        return self._db

    async def write(
        self,
        organization_id: str,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None
    ) -> OutboxEvent:
        """
        Write an event to the outbox.

        Args:
            organization_id: Tenant the event belongs to
            event_type: Event type (e.g., "cataloging_job_completed")
            event_data: Internal payload, never broadcast; at most 1 KiB serialized
            entity_type: Type of the record that changed
            entity_id: ID of the record that changed

        Returns:
            The created OutboxEvent
        """
        org_id = validate_organization_id(organization_id)
        event_data = event_data or {}

        size = len(json.dumps(event_data).encode("utf-8"))
        if size > MAX_EVENT_DATA_BYTES:
            raise EventTooLargeError(size, MAX_EVENT_DATA_BYTES)

        db = await self._get_db()
        event = OutboxEvent(
            id=new_event_id(),
            organization_id=org_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            event_data=event_data,
        )
        await OutboxStore(db).insert(event)

        if self._notify and db.backend == DatabaseBackend.POSTGRESQL:
            await db.execute("SELECT pg_notify($1, $2)", NOTIFY_CHANNEL, org_id)

        logger.debug(
            "Wrote event to outbox: id=%s type=%s org=%s",
            event.id, event.event_type, event.organization_id
        )

        return event

    async def write_batch(
        self,
        entries: List[Tuple[str, str, Dict[str, Any]]]
    ) -> List[OutboxEvent]:
        """
        Write several events atomically.

        Args:
            entries: List of (organization_id, event_type, event_data) tuples
        """
        db = await self._get_db()
        if isinstance(db, DatabaseAdapter):
            async with db.transaction() as tx:
                writer = OutboxWriter(tx, notify_enabled=self._notify)
                return [await writer.write(org, etype, data) for org, etype, data in entries]
        return [await self.write(org, etype, data) for org, etype, data in entries]


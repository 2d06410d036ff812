"""
Outbox Stores

Query objects over the outbox tables. Each store wraps either the shared
DatabaseAdapter or a DatabaseSession from db.transaction(), so the same
methods run standalone or as part of a larger atomic unit:

    async with db.transaction() as tx:
        await DeadLetterStore(tx).insert(entry)
        await OutboxStore(tx).delete_undelivered(entry.original_event_id)

Tenant-facing calls filter by organization_id and go through check_tenant(),
so they refuse an organization other than the active tenant scope.
"""

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, List, Optional, Union

import aiosqlite
import asyncpg

from ..database.adapter import DatabaseAdapter, DatabaseSession, affected_rows, parse_timestamp
from .exceptions import StoreError
from .ids import NIL_EVENT_ID
from .models import DeadLetterEntry, OutboxEvent, ProcessorCursor
from .scope import check_tenant

logger = logging.getLogger(__name__)

Executor = Union[DatabaseAdapter, DatabaseSession]

MAX_ERROR_LENGTH = 1000

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, aiosqlite.Error, OSError)

_EVENT_COLUMNS = """
    id, organization_id, event_type, entity_type, entity_id, event_data,
    created_at, delivered_at, delivery_attempts, last_error
"""


def _store_call(func):
    """Translate driver errors into StoreError."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _DB_ERRORS as e:
            logger.error(f"Store operation {func.__qualname__} failed: {e}")
            raise StoreError(f"{func.__qualname__} failed: {e}") from e
    return wrapper


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_error(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class OutboxStore:
    """
    Persistent, tenant-partitioned set of outbox events.

    Rows are mutated only through conditional updates: a delivered row is
    never touched again, and the attempt counter only moves while it is
    below the ceiling.
    """

    def __init__(self, db: Executor):
        self.db = db

    @_store_call
    async def insert(self, event: OutboxEvent) -> OutboxEvent:
        await self.db.execute(
            """
            INSERT INTO outbox_event (
                id, organization_id, event_type, entity_type, entity_id,
                event_data, created_at, delivered_at, delivery_attempts, last_error
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            event.id,
            event.organization_id,
            event.event_type,
            event.entity_type,
            event.entity_id,
            event.event_data,
            event.created_at,
            event.delivered_at,
            event.delivery_attempts,
            event.last_error,
        )
        return event

    @_store_call
    async def get(self, event_id: str, organization_id: str) -> Optional[OutboxEvent]:
        check_tenant(organization_id)
        row = await self.db.fetchrow(
            f"SELECT {_EVENT_COLUMNS} FROM outbox_event WHERE id = $1 AND organization_id = $2",
            event_id, organization_id
        )
        return OutboxEvent(**row) if row else None

    @_store_call
    async def fetch_pending(
        self,
        organization_id: str,
        after_id: str,
        max_attempts: int,
        limit: int
    ) -> List[OutboxEvent]:
        """Undelivered events past the cursor with attempts left, oldest id first."""
        check_tenant(organization_id)
        rows = await self.db.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM outbox_event
            WHERE organization_id = $1
              AND id > $2
              AND delivered_at IS NULL
              AND delivery_attempts < $3
            ORDER BY id ASC
            LIMIT $4
            """,
            organization_id, after_id, max_attempts, limit
        )
        return [OutboxEvent(**row) for row in rows]

    @_store_call
    async def mark_delivered(
        self,
        event_id: str,
        organization_id: str,
        delivered_at: Optional[datetime] = None
    ) -> bool:
        """Set delivered_at once; False if the row was already delivered or is gone."""
        check_tenant(organization_id)
        status = await self.db.execute(
            """
            UPDATE outbox_event
            SET delivered_at = $1,
                delivery_attempts = delivery_attempts + 1
            WHERE id = $2 AND organization_id = $3 AND delivered_at IS NULL
            """,
            delivered_at or _utcnow(), event_id, organization_id
        )
        return affected_rows(status) == 1

    @_store_call
    async def increment_if_attempts_below(
        self,
        event_id: str,
        organization_id: str,
        max_attempts: int,
        error: Optional[str]
    ) -> bool:
        """
        Record a failed attempt.

        Applies only while the row is undelivered and below max_attempts, so
        concurrent failures can never push the counter past the ceiling.
        """
        check_tenant(organization_id)
        status = await self.db.execute(
            """
            UPDATE outbox_event
            SET delivery_attempts = delivery_attempts + 1,
                last_error = $1
            WHERE id = $2
              AND organization_id = $3
              AND delivered_at IS NULL
              AND delivery_attempts < $4
            """,
            _truncate_error(error), event_id, organization_id, max_attempts
        )
        return affected_rows(status) == 1

    @_store_call
    async def dead_letter_candidates(
        self,
        max_attempts: int,
        created_before: datetime,
        limit: int = 500
    ) -> List[OutboxEvent]:
        """Undelivered events across all tenants that used up their attempts."""
        rows = await self.db.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM outbox_event
            WHERE delivered_at IS NULL
              AND delivery_attempts >= $1
              AND created_at < $2
            ORDER BY created_at ASC
            LIMIT $3
            """,
            max_attempts, created_before, limit
        )
        return [OutboxEvent(**row) for row in rows]

    @_store_call
    async def delete_undelivered(self, event_id: str) -> bool:
        """Delete a row only if it is still undelivered."""
        status = await self.db.execute(
            "DELETE FROM outbox_event WHERE id = $1 AND delivered_at IS NULL",
            event_id
        )
        return affected_rows(status) == 1

    @_store_call
    async def delete_delivered_before(self, cutoff: datetime, limit: int) -> int:
        """Delete up to limit delivered rows older than cutoff, oldest first."""
        status = await self.db.execute(
            """
            DELETE FROM outbox_event
            WHERE id IN (
                SELECT id FROM outbox_event
                WHERE delivered_at IS NOT NULL
                  AND delivered_at < $1
                ORDER BY delivered_at ASC
                LIMIT $2
            )
            """,
            cutoff, limit
        )
        return affected_rows(status)

    @_store_call
    async def oldest_delivered_at(self) -> Optional[datetime]:
        value = await self.db.fetchval(
            "SELECT MIN(delivered_at) AS oldest FROM outbox_event WHERE delivered_at IS NOT NULL"
        )
        return parse_timestamp(value)


class CursorStore:
    """Per (processor, organization) high-water marks."""

    def __init__(self, db: Executor):
        self.db = db

    @_store_call
    async def get(self, processor_name: str, organization_id: str) -> Optional[ProcessorCursor]:
        check_tenant(organization_id)
        row = await self.db.fetchrow(
            """
            SELECT processor_name, organization_id, last_processed_event_id,
                   last_processed_at, updated_at
            FROM processor_cursor
            WHERE processor_name = $1 AND organization_id = $2
            """,
            processor_name, organization_id
        )
        return ProcessorCursor(**row) if row else None

    async def get_or_create(self, processor_name: str, organization_id: str) -> ProcessorCursor:
        """Load the cursor, creating it at the nil sentinel on first use."""
        check_tenant(organization_id)
        await self._create_if_missing(processor_name, organization_id)
        cursor = await self.get(processor_name, organization_id)
        if cursor is None:
            raise StoreError(f"Cursor for {processor_name}/{organization_id} vanished after create")
        return cursor

    @_store_call
    async def _create_if_missing(self, processor_name: str, organization_id: str) -> None:
        now = _utcnow()
        await self.db.execute(
            """
            INSERT INTO processor_cursor (
                processor_name, organization_id, last_processed_event_id,
                last_processed_at, updated_at
            ) VALUES ($1, $2, $3, $4, $4)
            ON CONFLICT (processor_name, organization_id) DO NOTHING
            """,
            processor_name, organization_id, NIL_EVENT_ID, now
        )

    @_store_call
    async def advance(
        self,
        processor_name: str,
        organization_id: str,
        event_id: str,
        processed_at: Optional[datetime] = None
    ) -> bool:
        """
        Move the cursor forward to event_id.

        Never moves it backwards: when a concurrent writer already advanced
        past event_id the update matches nothing and False is returned.
        """
        check_tenant(organization_id)
        now = processed_at or _utcnow()
        status = await self.db.execute(
            """
            UPDATE processor_cursor
            SET last_processed_event_id = $3,
                last_processed_at = $4,
                updated_at = $4
            WHERE processor_name = $1
              AND organization_id = $2
              AND last_processed_event_id < $3
            """,
            processor_name, organization_id, event_id, now
        )
        return affected_rows(status) == 1

    @_store_call
    async def list_all(self) -> List[ProcessorCursor]:
        rows = await self.db.fetch(
            """
            SELECT processor_name, organization_id, last_processed_event_id,
                   last_processed_at, updated_at
            FROM processor_cursor
            ORDER BY processor_name, organization_id
            """
        )
        return [ProcessorCursor(**row) for row in rows]


class DeadLetterStore:
    """Append-only quarantine for events that exhausted their attempts."""

    def __init__(self, db: Executor):
        self.db = db

    @_store_call
    async def insert(self, entry: DeadLetterEntry) -> DeadLetterEntry:
        await self.db.execute(
            """
            INSERT INTO dead_letter_entry (
                original_event_id, organization_id, event_type, entity_type,
                entity_id, event_data, delivery_attempts, last_error, failed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            entry.original_event_id,
            entry.organization_id,
            entry.event_type,
            entry.entity_type,
            entry.entity_id,
            entry.event_data,
            entry.delivery_attempts,
            _truncate_error(entry.last_error),
            entry.failed_at,
        )
        return entry

    @_store_call
    async def get(self, original_event_id: str) -> Optional[DeadLetterEntry]:
        row = await self.db.fetchrow(
            """
            SELECT original_event_id, organization_id, event_type, entity_type,
                   entity_id, event_data, delivery_attempts, last_error, failed_at
            FROM dead_letter_entry
            WHERE original_event_id = $1
            """,
            original_event_id
        )
        return DeadLetterEntry(**row) if row else None

    @_store_call
    async def count(
        self,
        organization_id: Optional[str] = None,
        since: Optional[datetime] = None
    ) -> int:
        clauses, args = [], []
        if organization_id is not None:
            args.append(organization_id)
            clauses.append(f"organization_id = ${len(args)}")
        if since is not None:
            args.append(since)
            clauses.append(f"failed_at >= ${len(args)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        value = await self.db.fetchval(
            f"SELECT COUNT(*) AS count FROM dead_letter_entry {where}", *args
        )
        return int(value or 0)

    @_store_call
    async def count_by_event_type(self, organization_id: Optional[str] = None) -> Dict[str, int]:
        if organization_id is not None:
            rows = await self.db.fetch(
                """
                SELECT event_type, COUNT(*) AS count
                FROM dead_letter_entry
                WHERE organization_id = $1
                GROUP BY event_type
                ORDER BY count DESC
                """,
                organization_id
            )
        else:
            rows = await self.db.fetch(
                """
                SELECT event_type, COUNT(*) AS count
                FROM dead_letter_entry
                GROUP BY event_type
                ORDER BY count DESC
                """
            )
        return {row["event_type"]: int(row["count"]) for row in rows}

    @_store_call
    async def oldest_failed_at(self, organization_id: Optional[str] = None) -> Optional[datetime]:
        if organization_id is not None:
            value = await self.db.fetchval(
                "SELECT MIN(failed_at) AS oldest FROM dead_letter_entry WHERE organization_id = $1",
                organization_id
            )
        else:
            value = await self.db.fetchval(
                "SELECT MIN(failed_at) AS oldest FROM dead_letter_entry"
            )
        return parse_timestamp(value)

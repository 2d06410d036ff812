"""
Database abstraction layer supporting SQLite and PostgreSQL.

Usage:
    from outbox_relay.core.database import get_database

    db = await get_database()
    rows = await db.fetch("SELECT * FROM outbox_event WHERE organization_id = $1", org_id)
    async with db.transaction() as tx:
        await tx.execute("DELETE FROM outbox_event WHERE id = $1", event_id)
"""

from .adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    DatabaseSession,
    affected_rows,
    format_timestamp,
    parse_timestamp,
    get_database,
    close_database,
)
from .schema import create_schema

__all__ = [
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "DatabaseSession",
    "affected_rows",
    "format_timestamp",
    "parse_timestamp",
    "get_database",
    "close_database",
    "create_schema",
]

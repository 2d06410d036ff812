"""
SQLite schema for local runs and tests.

PostgreSQL deployments apply db/migrations/*.sql through db/migrate.py; the
tables below mirror those definitions with SQLite column types. Identifiers
are canonical lowercase UUID text and timestamps are fixed-width UTC text
(see format_timestamp), so ordering and range predicates behave the same on
both backends.
"""

from .adapter import DatabaseAdapter

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS outbox_event (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    event_data TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    delivered_at TEXT,
    delivery_attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);

CREATE INDEX IF NOT EXISTS idx_outbox_cursor_pagination
    ON outbox_event (organization_id, id) WHERE delivered_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_outbox_pruning
    ON outbox_event (delivered_at) WHERE delivered_at IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_outbox_retry
    ON outbox_event (delivery_attempts, created_at) WHERE delivered_at IS NULL;

CREATE TABLE IF NOT EXISTS processor_cursor (
    processor_name TEXT NOT NULL,
    organization_id TEXT NOT NULL,
    last_processed_event_id TEXT NOT NULL,
    last_processed_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (processor_name, organization_id)
);

CREATE TABLE IF NOT EXISTS dead_letter_entry (
    original_event_id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    event_data TEXT NOT NULL DEFAULT '{}',
    delivery_attempts INTEGER NOT NULL,
    last_error TEXT NOT NULL,
    failed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_dlq_org_failed
    ON dead_letter_entry (organization_id, failed_at);

CREATE TABLE IF NOT EXISTS processor_lock (
    lock_key TEXT PRIMARY KEY,
    holder_id TEXT NOT NULL,
    acquired_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""


async def create_schema(db: DatabaseAdapter) -> None:
    """Create the outbox tables on a SQLite database."""
    if db.is_postgres:
        raise ValueError("PostgreSQL schema is managed by db/migrate.py")
    await db.executescript(SQLITE_SCHEMA)

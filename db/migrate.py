#!/usr/bin/env python3
"""
Outbox Schema Migrations

Applies db/migrations/*.sql to PostgreSQL in file order, recording each
version in schema_migrations. On the SQLite backend the embedded schema
from outbox_relay.core.database.schema is created instead.

Usage:
    python -m db.migrate              # Apply pending migrations
    python -m db.migrate --status     # List applied and pending versions

Environment:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: see DatabaseConfig
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

from outbox_relay.core.database import DatabaseAdapter, create_schema

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.stem


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """SQL files named <version>_<description>.sql, lowest version first."""
    found = [
        Migration(version=path.stem.split("_", 1)[0], path=path)
        for path in directory.glob("*.sql")
    ]
    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Tracks and applies migrations through the shared database adapter."""

    def __init__(self, db: DatabaseAdapter, migrations: List[Migration] = None):
        self.db = db
        self.migrations = migrations if migrations is not None else discover_migrations()

    async def _applied_versions(self) -> Set[str]:
        await self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        rows = await self.db.fetch("SELECT version FROM schema_migrations")
        return {row["version"] for row in rows}

    async def pending(self) -> List[Migration]:
        applied = await self._applied_versions()
        return [m for m in self.migrations if m.version not in applied]

    async def apply(self, migration: Migration) -> None:
        """Run one migration file and record it in the same transaction."""
        async with self.db.transaction() as tx:
            await tx.raw.execute(migration.path.read_text())
            await tx.execute(
                "INSERT INTO schema_migrations (version) VALUES ($1)", migration.version
            )
        logger.info(f"Applied migration {migration.name}")

    async def apply_pending(self) -> List[Migration]:
        todo = await self.pending()
        for migration in todo:
            await self.apply(migration)
        return todo


async def migrate(show_status: bool = False) -> int:
    db = DatabaseAdapter()
    await db.connect()
    try:
        if not db.is_postgres:
            if not show_status:
                await create_schema(db)
            print(f"SQLite schema ready: {db.config.sqlite_path}")
            return 0

        runner = MigrationRunner(db)
        if show_status:
            waiting = {m.version for m in await runner.pending()}
            for migration in runner.migrations:
                state = "pending" if migration.version in waiting else "applied"
                print(f"  [{state:>7}] {migration.name}")
            return 0

        applied = await runner.apply_pending()
        if not applied:
            print("No pending migrations. Database is up to date.")
        for migration in applied:
            print(f"  applied {migration.name}")
        return 0
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        print(f"Migration failed: {e}", file=sys.stderr)
        return 1
    finally:
        await db.disconnect()


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply outbox relay schema migrations")
    parser.add_argument("--status", action="store_true", help="Show migration status only")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    return asyncio.run(migrate(show_status=args.status))


if __name__ == "__main__":
    sys.exit(main())

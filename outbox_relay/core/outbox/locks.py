"""
Lock Coordinators

Non-blocking mutual exclusion for "one processor per tenant at a time".
A coordinator either grants the key immediately or reports contention;
callers never wait for a holder to finish.

Usage:
    async with coordinator.hold(f"{processor_name}:{org_id}") as acquired:
        if not acquired:
            return skipped
        ...
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, Optional, Set
from uuid import uuid4

from ..database.adapter import DatabaseAdapter, affected_rows

logger = logging.getLogger(__name__)


class LockCoordinator(ABC):
    """Interface for per-key, non-blocking locks."""

    @abstractmethod
    async def try_acquire(self, key: str) -> bool:
        """Take the lock if it is free. Never waits."""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Give the lock back. Releasing a lock this holder does not own is a no-op."""

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """Scope a lock to a block; yields whether it was acquired."""
        acquired = await self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)


class InProcessLockCoordinator(LockCoordinator):
    """
    Lock table for a single process.

    Only protects against overlapping invocations inside one event loop;
    multi-instance deployments need LeaseLockCoordinator or
    AdvisoryLockCoordinator.
    """

    def __init__(self):
        self._held: Set[str] = set()

    async def try_acquire(self, key: str) -> bool:
        if key in self._held:
            return False
        self._held.add(key)
        return True

    async def release(self, key: str) -> None:
        self._held.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._held


class LeaseLockCoordinator(LockCoordinator):
    """
    Database lease in the processor_lock table.

    Acquisition is one conditional upsert: a missing row is inserted, an
    expired row is taken over, a live row is left alone. A crashed holder's
    lease lapses after ttl_seconds, which must exceed one invocation.
    Works on PostgreSQL and SQLite.
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        ttl_seconds: int = 60,
        holder_id: Optional[str] = None,
        clock: Callable[[], datetime] = None
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.holder_id = holder_id or uuid4().hex
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def try_acquire(self, key: str) -> bool:
        now = self._clock()
        status = await self.db.execute(
            """
            INSERT INTO processor_lock (lock_key, holder_id, acquired_at, expires_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (lock_key) DO UPDATE
            SET holder_id = excluded.holder_id,
                acquired_at = excluded.acquired_at,
                expires_at = excluded.expires_at
            WHERE processor_lock.expires_at < excluded.acquired_at
            """,
            key, self.holder_id, now, now + timedelta(seconds=self.ttl_seconds)
        )
        acquired = affected_rows(status) == 1
        if not acquired:
            logger.debug(f"Lease {key} is held by another processor")
        return acquired

    async def release(self, key: str) -> None:
        await self.db.execute(
            "DELETE FROM processor_lock WHERE lock_key = $1 AND holder_id = $2",
            key, self.holder_id
        )


def advisory_key(key: str) -> int:
    """Map a lock key onto PostgreSQL's signed 64-bit advisory lock space."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class AdvisoryLockCoordinator(LockCoordinator):
    """
    PostgreSQL session-level advisory lock.

    The lock lives on the pooled connection that took it, so that
    connection is kept checked out until release(). If the process dies the
    server drops the session and the lock with it.
    """

    def __init__(self, db: DatabaseAdapter):
        if not db.is_postgres:
            raise ValueError("Advisory locks require the PostgreSQL backend")
        self.db = db
        self._sessions: Dict[str, AsyncExitStack] = {}

    async def try_acquire(self, key: str) -> bool:
        if key in self._sessions:
            return False

        stack = AsyncExitStack()
        session = await stack.enter_async_context(self.db.connection())
        try:
            acquired = await session.fetchval(
                "SELECT pg_try_advisory_lock($1) AS acquired", advisory_key(key)
            )
        except BaseException:
            await stack.aclose()
            raise

        if not acquired:
            await stack.aclose()
            return False

        stack.push_async_callback(self._unlock, session, key)
        self._sessions[key] = stack
        return True

    async def _unlock(self, session, key: str) -> None:
        await session.fetchval("SELECT pg_advisory_unlock($1) AS released", advisory_key(key))

    async def release(self, key: str) -> None:
        stack = self._sessions.pop(key, None)
        if stack is not None:
            await stack.aclose()

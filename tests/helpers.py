"""
Test doubles and constants shared by the unit and integration suites.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from outbox_relay.core.outbox.broadcaster import InMemoryBroadcaster
from outbox_relay.core.outbox.exceptions import BroadcastError

ORG_A = "a1a1a1a1-0000-4000-8000-00000000000a"
ORG_B = "b2b2b2b2-0000-4000-8000-00000000000b"


class ScriptedBroadcaster(InMemoryBroadcaster):
    """In-memory broadcaster that fails publishes for chosen event ids."""

    def __init__(self, fail_ids=(), fail_all: bool = False):
        super().__init__()
        self.fail_ids = set(fail_ids)
        self.fail_all = fail_all
        self.attempts = []

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.attempts.append(payload["id"])
        if self.fail_all or payload["id"] in self.fail_ids:
            raise BroadcastError(f"scripted failure for {payload['id']}")
        await super().publish(channel, event, payload)


class BlockingBroadcaster(InMemoryBroadcaster):
    """Parks every publish until release() is called."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self._gate = asyncio.Event()

    def release(self):
        self._gate.set()

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.entered.set()
        await self._gate.wait()
        await super().publish(channel, event, payload)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


def minutes_ago(minutes: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)

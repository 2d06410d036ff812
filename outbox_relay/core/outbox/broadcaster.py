"""
Broadcasters

Publish sanitized events on tenant channels. Every failure to hand an
event to the transport surfaces as BroadcastError so the processor can
record the attempt and retry later.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

import httpx

from ..observability import trace_context_headers
from .exceptions import BroadcastError

logger = logging.getLogger(__name__)

BROADCAST_EVENT = "outbox_event"
CHANNEL_PREFIX = "notifications"


def channel_for(organization_id: str) -> str:
    """Channel subscribers of one organization listen on."""
    return f"{CHANNEL_PREFIX}:{organization_id}"


class Broadcaster(ABC):
    """Interface for the real-time transport."""

    @abstractmethod
    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        """Deliver payload to channel or raise BroadcastError."""

    async def close(self) -> None:
        pass


class RealtimeBroadcaster(Broadcaster):
    """
    HTTP broadcast endpoint of a realtime server.

    Features:
    - One POST per event to {base_url}/api/broadcast
    - API key sent as apikey and bearer token
    - Timeouts, transport errors and non-2xx answers raise BroadcastError

    Usage:
        broadcaster = RealtimeBroadcaster("http://localhost:54321/realtime/v1", api_key)
        await broadcaster.publish(channel_for(org_id), BROADCAST_EVENT, payload)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        body = {"messages": [{"topic": channel, "event": event, "payload": payload}]}
        try:
            response = await self._client.post(
                f"{self.base_url}/api/broadcast",
                json=body,
                headers={**self._headers, **trace_context_headers()}
            )
        except httpx.TimeoutException as e:
            raise BroadcastError(f"Broadcast to {channel} timed out") from e
        except httpx.HTTPError as e:
            raise BroadcastError(f"Broadcast to {channel} failed: {e}") from e

        if not response.is_success:
            raise BroadcastError(
                f"Broadcast to {channel} rejected with HTTP {response.status_code}"
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class InMemoryBroadcaster(Broadcaster):
    """
    Channel hub inside the process.

    Each subscriber gets its own queue and only sees messages for the
    channel it subscribed to. Every publish is also kept in `published`
    for inspection.
    """

    def __init__(self):
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self.published: List[Dict[str, Any]] = []

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[channel].add(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        self._subscribers[channel].discard(queue)
        if not self._subscribers[channel]:
            del self._subscribers[channel]

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        message = {"topic": channel, "event": event, "payload": payload}
        self.published.append(message)
        for queue in list(self._subscribers.get(channel, ())):
            queue.put_nowait(message)

    def payloads_for(self, channel: str) -> List[Dict[str, Any]]:
        return [m["payload"] for m in self.published if m["topic"] == channel]

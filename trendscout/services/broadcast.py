"""Topic-based broadcast channel for live subscribers.

Events: theme_update, new_theme, trend_data, alert, notification. Publishing
is best-effort; a failed publish raises BroadcastError and the caller decides
whether that matters.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

import httpx

from trendscout.config import settings

logger = logging.getLogger(__name__)


class BroadcastError(Exception):
    """A broadcast could not be delivered to the channel."""


class Broadcaster(ABC):
    @abstractmethod
    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None:
        return None


class LocalBroadcastHub(Broadcaster):
    """In-process pub/sub feeding websocket subscribers."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[topic].add(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        self._subscribers[topic].discard(queue)
        if not self._subscribers[topic]:
            del self._subscribers[topic]

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, ()))
        return sum(len(qs) for qs in self._subscribers.values())

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        message = {"topic": topic, "event": event, "payload": payload}
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber on %s", event, topic)


class SupabaseRealtimeBroadcaster(Broadcaster):
    """Publishes through the Supabase Realtime REST broadcast endpoint."""

    def __init__(
        self,
        *,
        url: str | None = None,
        key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = f"{(url or settings.SUPABASE_URL).rstrip('/')}/realtime/v1/api/broadcast"
        key = key or settings.SUPABASE_KEY
        self._client = httpx.AsyncClient(
            timeout=10.0,
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            transport=transport,
        )

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        body = {"messages": [{"topic": topic, "event": event, "payload": payload}]}
        try:
            response = await self._client.post(self._endpoint, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BroadcastError(f"broadcast {event} on {topic} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


class CompositeBroadcaster(Broadcaster):
    """Publishes to every child; raises after all were tried if any failed."""

    def __init__(self, *children: Broadcaster) -> None:
        self.children = list(children)

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        failures: list[str] = []
        for child in self.children:
            try:
                await child.publish(topic, event, payload)
            except BroadcastError as e:
                failures.append(str(e))
        if failures:
            raise BroadcastError("; ".join(failures))

    async def close(self) -> None:
        for child in self.children:
            await child.close()

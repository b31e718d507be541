"""In-memory counter store and event broker for development and tests."""

from __future__ import annotations

import asyncio
import logging
import math
import time

from auth.interfaces.event_broker import Event

logger = logging.getLogger(__name__)


class MemoryCounterStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._counters: dict[str, tuple[int, float]] = {}

    async def incr(self, key: str, window_seconds: int) -> tuple[int, int]:
        async with self._lock:
            now = time.monotonic()
            count, expires_at = self._counters.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            return count, max(1, math.ceil(expires_at - now))

    async def reset(self) -> None:
        async with self._lock:
            self._counters.clear()

    async def close(self) -> None:
        return None


class InMemoryEventBroker:
    """
    Queue-backed broker.

    Subscribers receive their own queue; events published before a
    subscription are kept in `history` for inspection.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._subscribers: list[asyncio.Queue] = []
        self._history_size = history_size
        self.history: list[Event] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def publish(self, event: Event) -> None:
        self.history.append(event)
        if len(self.history) > self._history_size:
            del self.history[0]
        for queue in self._subscribers:
            await queue.put(event)
        logger.debug("Event published", extra={"event": event.name})

    def names(self) -> list[str]:
        return [event.name for event in self.history]

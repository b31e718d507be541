"""Counter store interface used by the rate limiter."""

from __future__ import annotations

from typing import Protocol


class CounterStore(Protocol):
    async def incr(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Increment `key`, starting its TTL on the first hit.

        Returns the new count and the remaining TTL in seconds.
        """
        ...

    async def close(self) -> None:
        ...

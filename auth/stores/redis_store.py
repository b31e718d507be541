"""Redis-backed counter store."""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from auth.exceptions import RateLimiterUnavailable
from auth.retry import ConnectFailure, RetryPolicy

logger = logging.getLogger(__name__)


class RedisCounterStore:
    """
    Fixed-window counters.

    INCR and EXPIRE NX run in one MULTI/EXEC pipeline, so the window
    starts on the first increment and later hits never extend it.
    """

    def __init__(self, client: Redis, retry_policy: RetryPolicy | None = None) -> None:
        self._client = client
        self._retry = retry_policy or RetryPolicy()

    @classmethod
    def from_url(cls, url: str, retry_policy: RetryPolicy | None = None) -> "RedisCounterStore":
        client = Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2, decode_responses=True)
        return cls(client, retry_policy)

    async def _incr_once(self, key: str, window_seconds: int) -> tuple[int, int]:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                pipe.ttl(key)
                count, _, ttl = await pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise ConnectFailure(str(exc)) from exc
        if ttl is None or ttl < 0:
            ttl = window_seconds
        return int(count), int(ttl)

    async def incr(self, key: str, window_seconds: int) -> tuple[int, int]:
        try:
            return await self._retry.call(self._incr_once, key, window_seconds)
        except (ConnectFailure, RedisError) as exc:
            logger.error("Counter store unreachable", extra={"key": key, "error": str(exc)})
            raise RateLimiterUnavailable("Rate limiting temporarily unavailable") from exc

    async def close(self) -> None:
        await self._client.aclose()

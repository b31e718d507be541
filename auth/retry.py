"""Retry policy for calls to external dependencies."""

from __future__ import annotations

import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from auth.config import AuthSettings, get_settings

logger = logging.getLogger(__name__)


class ConnectFailure(Exception):
    """Raised by adapters when a connection could not be established.

    Only this failure is retried. A request that reached the provider is
    never replayed.
    """


class RetryPolicy:
    """Exponential backoff over connect failures, shared by every adapter."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 4.0,
    ) -> None:
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max

    @classmethod
    def from_settings(cls, settings: AuthSettings | None = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            backoff_min=settings.RETRY_BACKOFF_MIN_SECONDS,
            backoff_max=settings.RETRY_BACKOFF_MAX_SECONDS,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(ConnectFailure),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(self, func, *args, **kwargs):
        async for attempt in self.retrying():
            with attempt:
                return await func(*args, **kwargs)


NO_RETRY = RetryPolicy(max_attempts=1)

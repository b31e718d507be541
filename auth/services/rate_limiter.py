"""Windowed abuse counters for challenge and redemption requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.config import AuthSettings, get_settings
from auth.exceptions import RateLimited
from auth.interfaces.rate_limiter import CounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: int
    max_attempts: int
    code: str
    message: str


class RateLimiter:
    def __init__(self, store: CounterStore, settings: AuthSettings | None = None) -> None:
        self._store = store
        settings = settings or get_settings()
        self.cooldown = RateLimitPolicy(
            name="otp_cooldown",
            window_seconds=settings.OTP_COOLDOWN_SECONDS,
            max_attempts=1,
            code="OTP_TOO_SOON",
            message="Please wait before requesting another code",
        )
        self.hourly = RateLimitPolicy(
            name="otp_hourly",
            window_seconds=3600,
            max_attempts=settings.OTP_HOURLY_LIMIT,
            code="OTP_RATE_LIMIT_EXCEEDED",
            message="Too many code requests. Try again later",
        )
        self.verify = RateLimitPolicy(
            name="otp_verify",
            window_seconds=settings.VERIFY_RATE_WINDOW_SECONDS,
            max_attempts=settings.VERIFY_RATE_LIMIT,
            code="VERIFY_RATE_LIMIT_EXCEEDED",
            message="Too many verification attempts. Try again later",
        )

    async def check(self, key: str, window_seconds: int, max_attempts: int) -> RateLimitDecision:
        """Count one hit against `key`. Refused hits are still counted."""
        count, ttl = await self._store.incr(key, window_seconds)
        allowed = count <= max_attempts
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, max_attempts - count),
            retry_after_seconds=0 if allowed else max(1, ttl),
        )

    async def enforce(self, policy: RateLimitPolicy, target: str) -> RateLimitDecision:
        key = f"rl:{policy.name}:{target}"
        decision = await self.check(key, policy.window_seconds, policy.max_attempts)
        if not decision.allowed:
            logger.info(
                "Rate limit exceeded",
                extra={"policy": policy.name, "retry_after": decision.retry_after_seconds},
            )
            raise RateLimited(policy.message, retry_after=decision.retry_after_seconds, code=policy.code)
        return decision

    async def enforce_challenge(self, target: str) -> None:
        """Cooldown first, then the hourly cap."""
        await self.enforce(self.cooldown, target)
        await self.enforce(self.hourly, target)

    async def enforce_verify(self, target: str) -> None:
        await self.enforce(self.verify, target)

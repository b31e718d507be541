"""One-time code challenge creation and redemption."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from auth.config import AuthSettings, get_settings
from auth.exceptions import ChallengeInvalid, InputInvalid, ProviderRejected, ProviderUnavailable
from auth.services.rate_limiter import RateLimiter
from auth.services.verification import ChallengeTarget, VerificationGateway
from db.models.auth import OTPChallenge
from db.models.types import ChallengeType, utcnow
from db.repos.challenge_repo import ChallengeRepository

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\d{6,15}$")
COUNTRY_CODE_RE = re.compile(r"^\+\d{1,4}$")
CODE_RE = re.compile(r"^[A-Za-z0-9]{4,8}$")


@dataclass(frozen=True)
class ClientMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ChallengeReceipt:
    challenge_id: str
    retry_after: int
    expires_at: datetime


@dataclass(frozen=True)
class Redemption:
    challenge_id: str
    attempts: int


def validate_phone(phone_number: str, country_code: str) -> tuple[str, str]:
    phone_number = (phone_number or "").strip()
    country_code = (country_code or "").strip()
    if country_code and not country_code.startswith("+"):
        country_code = f"+{country_code}"
    if not PHONE_RE.match(phone_number):
        raise InputInvalid("Phone number must be 6-15 digits", code="INVALID_PHONE_NUMBER")
    if not COUNTRY_CODE_RE.match(country_code):
        raise InputInvalid("Country code must be + followed by 1-4 digits", code="INVALID_COUNTRY_CODE")
    return phone_number, country_code


def validate_code(code: str) -> str:
    code = (code or "").strip()
    if not CODE_RE.match(code):
        raise InputInvalid("Code must be 4-8 letters or digits", code="INVALID_OTP_FORMAT")
    return code


class ChallengeManager:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        gateway: VerificationGateway,
        settings: AuthSettings | None = None,
    ) -> None:
        self._limiter = rate_limiter
        self._gateway = gateway
        self._settings = settings or get_settings()

    @staticmethod
    def _limit_key(target: ChallengeTarget, challenge_type: ChallengeType) -> str:
        return f"{challenge_type.value}:{target.key}"

    async def create_challenge(
        self,
        db: AsyncSession,
        target: ChallengeTarget,
        challenge_type: ChallengeType,
        meta: ClientMeta | None = None,
    ) -> ChallengeReceipt:
        """Rate-limit, send a code through the target's channel and persist the challenge.

        Nothing is persisted when the channel fails; counter increments stay.
        """
        meta = meta or ClientMeta()
        await self._limiter.enforce_challenge(self._limit_key(target, challenge_type))

        sent = await self._gateway.channel_for(target).send(target)

        expires_at = utcnow() + timedelta(minutes=self._settings.OTP_EXPIRY_MINUTES)
        challenge = await ChallengeRepository(db).create(
            user_id=target.user_id,
            phone_number=target.phone_number,
            country_code=target.country_code,
            email=target.email,
            challenge_type=challenge_type,
            provider=sent.provider,
            provider_ref=sent.provider_ref,
            code_hash=sent.code_hash,
            provider_status=sent.status,
            provider_metadata=sent.metadata or None,
            attempts=0,
            max_attempts=self._settings.OTP_MAX_ATTEMPTS,
            expires_at=expires_at,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        logger.info(
            "Challenge created",
            extra={"challenge_id": challenge.id, "challenge_type": challenge_type.value},
        )
        return ChallengeReceipt(
            challenge_id=challenge.id,
            retry_after=self._settings.OTP_COOLDOWN_SECONDS,
            expires_at=expires_at,
        )

    async def enforce_verify_limit(self, target: ChallengeTarget) -> None:
        await self._limiter.enforce_verify(target.key)

    async def _latest(self, repo: ChallengeRepository, target: ChallengeTarget, challenge_type: ChallengeType):
        if target.is_phone:
            return await repo.latest_for_phone(target.phone_number, target.country_code, challenge_type)
        return await repo.latest_for_email(target.email, challenge_type, user_id=target.user_id)

    async def redeem_challenge(
        self,
        db: AsyncSession,
        target: ChallengeTarget,
        challenge_type: ChallengeType,
        code: str,
    ) -> Redemption:
        """
        Check `code` against the latest open challenge for the target.

        The challenge row stays locked until the caller's transaction ends;
        a concurrent redeemer awaits the lock and then finds no open challenge.
        On a failed check the attempt counter and rejection detail are
        flushed but not committed; the caller decides whether to keep them.
        """
        code = validate_code(code)
        repo = ChallengeRepository(db)
        challenge = await self._latest(repo, target, challenge_type)
        if challenge is None:
            raise ChallengeInvalid("No active verification for this target", code="NO_ACTIVE_CHALLENGE")

        now = utcnow()
        if challenge.expires_at <= now:
            raise ChallengeInvalid("Code has expired, request a new one", code="OTP_EXPIRED")
        if challenge.attempts >= challenge.max_attempts:
            raise ChallengeInvalid("Maximum verification attempts exceeded", code="OTP_ATTEMPTS_EXCEEDED")

        attempts = await repo.increment_attempts(challenge)

        try:
            validation = await self._gateway.channel_for_challenge(challenge).check(challenge, code)
        except (ProviderUnavailable, ProviderRejected) as exc:
            await repo.record_rejection(
                challenge,
                status="PROVIDER_ERROR",
                detail=self._attempt_detail(now, attempts, exc.code, exc.message),
            )
            if isinstance(exc, ProviderRejected):
                raise ChallengeInvalid(exc.message, code="INVALID_OTP") from exc
            raise

        if not validation.valid:
            await repo.record_rejection(
                challenge,
                status=validation.status_code or "REJECTED",
                detail=self._attempt_detail(now, attempts, validation.status_code, validation.message),
            )
            logger.info("Code rejected", extra={"challenge_id": challenge.id, "attempts": attempts})
            raise ChallengeInvalid(
                "Invalid code",
                code="INVALID_OTP",
                data={"attempts_remaining": max(0, challenge.max_attempts - attempts)},
            )

        if not await repo.mark_verified(challenge, now, validation.status_code):
            raise ChallengeInvalid("Challenge was already used", code="NO_ACTIVE_CHALLENGE")

        logger.info("Challenge redeemed", extra={"challenge_id": challenge.id, "attempts": attempts})
        return Redemption(challenge_id=challenge.id, attempts=attempts)

    @staticmethod
    def _attempt_detail(now: datetime, attempts: int, status: str | None, message: str | None) -> dict:
        return {
            "at": now.isoformat(),
            "attempt": attempts,
            "status": status,
            "message": message,
        }

    async def recharge_attempt(self, db: AsyncSession, challenge_id: str) -> None:
        """Count an attempt again after its transaction was rolled back."""
        challenge = await db.get(OTPChallenge, challenge_id)
        if challenge is not None and not challenge.is_verified:
            await ChallengeRepository(db).increment_attempts(challenge)

"""Uniform adapter over the SMS and email verification channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from auth.config import AuthSettings, get_settings
from auth.exceptions import ProviderUnavailable
from auth.interfaces.providers import EmailSender, SmsVerificationProvider, Validation
from auth.security import generate_code, hash_code, verify_code
from db.models.auth import OTPChallenge
from db.models.types import ChallengeProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengeTarget:
    """Who a code is sent to: a phone, or an email owned by a user."""

    phone_number: str | None = None
    country_code: str | None = None
    email: str | None = None
    user_id: str | None = None

    @classmethod
    def phone(cls, phone_number: str, country_code: str, user_id: str | None = None) -> "ChallengeTarget":
        return cls(phone_number=phone_number, country_code=country_code, user_id=user_id)

    @classmethod
    def for_email(cls, email: str, user_id: str) -> "ChallengeTarget":
        return cls(email=email.lower(), user_id=user_id)

    @property
    def is_phone(self) -> bool:
        return self.phone_number is not None

    @property
    def key(self) -> str:
        if self.is_phone:
            return f"{self.country_code}{self.phone_number}"
        return f"{self.user_id}:{self.email}"


@dataclass(frozen=True)
class SentCode:
    provider: ChallengeProvider
    provider_ref: str | None = None
    code_hash: str | None = None
    status: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SmsChannel:
    def __init__(self, provider: SmsVerificationProvider) -> None:
        self._provider = provider

    async def send(self, target: ChallengeTarget) -> SentCode:
        origination = await self._provider.originate(target.phone_number, target.country_code)
        return SentCode(
            provider=ChallengeProvider.KALEYRA,
            provider_ref=origination.provider_ref,
            status=origination.status,
            metadata={"provider_response": origination.raw},
        )

    async def check(self, challenge: OTPChallenge, code: str) -> Validation:
        return await self._provider.validate(challenge.provider_ref, code)


class EmailChannel:
    """Codes generated here, stored as bcrypt hashes and mailed out."""

    def __init__(self, sender: EmailSender, settings: AuthSettings | None = None) -> None:
        self._sender = sender
        self._settings = settings or get_settings()

    async def send(self, target: ChallengeTarget) -> SentCode:
        code = generate_code(self._settings)
        if not await self._sender.send_otp_email(target.email, code):
            raise ProviderUnavailable("Failed to send verification email", code="EMAIL_SEND_FAILED")
        return SentCode(provider=ChallengeProvider.LOCAL, code_hash=hash_code(code), status="SENT")

    async def check(self, challenge: OTPChallenge, code: str) -> Validation:
        if challenge.code_hash and verify_code(code, challenge.code_hash):
            return Validation(valid=True, status_code="VERIFIED")
        return Validation(valid=False, status_code="INVALID_OTP", message="Code mismatch")


class VerificationGateway:
    """Picks the channel for a target."""

    def __init__(self, sms: SmsChannel, email: EmailChannel) -> None:
        self.sms = sms
        self.email = email

    def channel_for(self, target: ChallengeTarget) -> SmsChannel | EmailChannel:
        return self.sms if target.is_phone else self.email

    def channel_for_challenge(self, challenge: OTPChallenge) -> SmsChannel | EmailChannel:
        return self.email if challenge.provider == ChallengeProvider.LOCAL else self.sms

"""Verification provider interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class Origination:
    """Provider reference for a code that has been sent."""

    provider_ref: str
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Validation:
    valid: bool
    status_code: str | None = None
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FederatedIdentity:
    subject_id: str
    email: str | None
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None


class SmsVerificationProvider(Protocol):
    async def originate(self, phone_number: str, country_code: str) -> Origination:
        ...

    async def validate(self, provider_ref: str, code: str) -> Validation:
        ...


class EmailSender(Protocol):
    async def send_otp_email(self, email: str, otp: str) -> bool:
        ...


class IdentityProvider(Protocol):
    def generate_auth_url(self) -> dict[str, str]:
        ...

    async def verify_assertion(self, id_token: str, expected_audience: str | None = None) -> FederatedIdentity:
        ...

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for an ID token."""
        ...

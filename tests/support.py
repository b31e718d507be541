"""Shared fixtures: a temporary SQLite database, fake providers and a wired container."""

import asyncio
import os
import tempfile

from sqlalchemy import create_engine, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from auth.config import AuthSettings
from auth.container import build_container
from auth.exceptions import ProviderUnavailable, Unauthenticated
from auth.interfaces.providers import FederatedIdentity, Origination, Validation
from auth.services.session_issuer import DeviceInfo
from auth.stores.memory_store import InMemoryEventBroker, MemoryCounterStore
from db.engine import Base, build_engine
from db.models import OTPChallenge, User
from db.models.types import DeviceType

PHONE = "5551234567"
COUNTRY_CODE = "+1"


def make_settings(**overrides) -> AuthSettings:
    values = {
        "ENVIRONMENT": "test",
        "RATE_LIMIT_BACKEND": "memory",
        "EMAIL_PROVIDER": "console",
        "OTP_COOLDOWN_SECONDS": 0,
        "OTP_HOURLY_LIMIT": 100,
        "GOOGLE_CLIENT_ID": "test-client-id",
        "RETRY_MAX_ATTEMPTS": 1,
    }
    values.update(overrides)
    return AuthSettings(**values)


def device(device_id: str = "device-a", device_type: DeviceType = DeviceType.IOS, **fields) -> DeviceInfo:
    return DeviceInfo(device_id=device_id, device_type=device_type, **fields)


class FakeSmsProvider:
    """Accepts one fixed code for every verification it originated."""

    def __init__(self, accepted_code: str = "654321") -> None:
        self.accepted_code = accepted_code
        self.delay = 0.0
        self.unavailable = False
        self.sent: list[str] = []
        self.checked: list[str] = []
        self.validation_started = asyncio.Event()

    async def originate(self, phone_number: str, country_code: str) -> Origination:
        if self.unavailable:
            raise ProviderUnavailable("SMS service is currently unavailable", code="OTP_SERVICE_UNAVAILABLE")
        self.sent.append(f"{country_code}{phone_number}")
        return Origination(provider_ref=f"verify-{len(self.sent)}", status="SENT")

    async def validate(self, provider_ref: str, code: str) -> Validation:
        self.checked.append(provider_ref)
        self.validation_started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.unavailable:
            raise ProviderUnavailable("SMS service is currently unavailable", code="OTP_SERVICE_UNAVAILABLE")
        if code == self.accepted_code:
            return Validation(valid=True, status_code="VERIFIED")
        return Validation(valid=False, status_code="INVALID_OTP", message="E912")


class RecordingEmailSender:
    def __init__(self) -> None:
        self.codes: dict[str, str] = {}

    async def send_otp_email(self, email: str, otp: str) -> bool:
        self.codes[email] = otp
        return True


class FakeIdentityProvider:
    """Maps opaque test tokens to identities."""

    def __init__(self) -> None:
        self.identities: dict[str, FederatedIdentity] = {}

    def add(self, token: str, subject_id: str, email: str, name: str | None = None) -> None:
        self.identities[token] = FederatedIdentity(
            subject_id=subject_id, email=email, email_verified=True, name=name
        )

    def generate_auth_url(self) -> dict[str, str]:
        return {"auth_url": "https://accounts.example.test/auth", "state": "state-1"}

    async def verify_assertion(self, id_token: str, expected_audience: str | None = None) -> FederatedIdentity:
        if id_token not in self.identities:
            raise Unauthenticated("Invalid Google ID token", code="INVALID_ID_TOKEN")
        return self.identities[id_token]

    async def exchange_code(self, code: str) -> str:
        return code


class Harness:
    """
    A container bound to a temporary SQLite file and fake providers.

    Services use the async engine; `inspect_session` opens plain blocking
    sessions for assertions between calls.
    """

    def __init__(self, **setting_overrides) -> None:
        self.settings = make_settings(**setting_overrides)
        self._tmp = tempfile.TemporaryDirectory()
        url = f"sqlite:///{os.path.join(self._tmp.name, 'identity.db')}"

        self.inspect_engine = create_engine(url)
        Base.metadata.create_all(self.inspect_engine)
        self.inspect_session = sessionmaker(bind=self.inspect_engine, expire_on_commit=False)

        # One connection per transaction, so concurrent operations contend for real locks
        self.engine = build_engine(url, poolclass=NullPool)
        self.session_factory = async_sessionmaker(self.engine, autoflush=False, expire_on_commit=False)

        self.sms = FakeSmsProvider()
        self.email = RecordingEmailSender()
        self.identity = FakeIdentityProvider()
        self.broker = InMemoryEventBroker()
        self.counters = MemoryCounterStore()
        self.container = build_container(
            self.session_factory,
            self.settings,
            counter_store=self.counters,
            sms_provider=self.sms,
            email_sender=self.email,
            identity_provider=self.identity,
            broker=self.broker,
        )
        self.orchestrator = self.container.orchestrator
        self.onboarding = self.container.onboarding
        self.accounts = self.container.accounts

    def close(self) -> None:
        self.inspect_engine.dispose()
        self._tmp.cleanup()

    def user(self, user_id: str) -> User:
        with self.inspect_session() as db:
            return db.get(User, user_id)

    def challenges(self) -> list[OTPChallenge]:
        with self.inspect_session() as db:
            return list(db.execute(select(OTPChallenge).order_by(OTPChallenge.created_at)).scalars())

    def update_user(self, user_id: str, **fields) -> None:
        with self.inspect_session() as db:
            user = db.get(User, user_id)
            for name, value in fields.items():
                setattr(user, name, value)
            db.commit()

    async def login(self, phone: str = PHONE, country_code: str = COUNTRY_CODE, device_id: str = "device-a", **fields):
        (await self.orchestrator.send_code(phone, country_code)).unwrap()
        result = await self.orchestrator.verify_code(
            phone, country_code, self.sms.accepted_code, device(device_id, **fields)
        )
        return result.unwrap()

    async def context(self, outcome):
        return await self.orchestrator.current_session(outcome.tokens.access_token)

    async def onboard(self, phone: str = PHONE, device_id: str = "device-a"):
        """Log in and walk a new user through every onboarding step."""
        outcome = await self.login(phone=phone, device_id=device_id)
        ctx = await self.context(outcome)
        (await self.onboarding.complete_profile(ctx, "Ada Lovelace")).unwrap()
        (await self.onboarding.select_interests(ctx, ["math"])).unwrap()
        (await self.onboarding.acknowledge_recommendations(ctx)).unwrap()
        return outcome, await self.context(outcome)

"""Wiring of stores, providers and services for one application instance."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from auth.config import AuthSettings, get_settings
from auth.interfaces.event_broker import EventBroker
from auth.interfaces.providers import EmailSender, IdentityProvider, SmsVerificationProvider
from auth.interfaces.rate_limiter import CounterStore
from auth.retry import RetryPolicy
from auth.services.account_service import AccountService
from auth.services.auth_service import AuthOrchestrator
from auth.services.challenge_manager import ChallengeManager
from auth.services.email_service import EmailService
from auth.services.oauth_service import GoogleIdentityProvider
from auth.services.onboarding_service import OnboardingService
from auth.services.rate_limiter import RateLimiter
from auth.services.session_issuer import SessionIssuer
from auth.services.sms_provider import KaleyraVerifyProvider
from auth.services.verification import EmailChannel, SmsChannel, VerificationGateway
from auth.stores.memory_store import InMemoryEventBroker, MemoryCounterStore
from auth.stores.redis_store import RedisCounterStore

logger = logging.getLogger(__name__)


@dataclass
class AuthContainer:
    settings: AuthSettings
    counter_store: CounterStore
    broker: EventBroker
    identity_provider: IdentityProvider
    orchestrator: AuthOrchestrator
    onboarding: OnboardingService
    accounts: AccountService

    async def close(self) -> None:
        await self.counter_store.close()


def _counter_store(settings: AuthSettings, retry_policy: RetryPolicy) -> CounterStore:
    if settings.RATE_LIMIT_BACKEND == "memory":
        logger.warning("Using in-memory rate limit counters")
        return MemoryCounterStore()
    return RedisCounterStore.from_url(settings.REDIS_URL, retry_policy)


def build_container(
    session_factory: Callable[[], AsyncSession],
    settings: AuthSettings | None = None,
    counter_store: CounterStore | None = None,
    sms_provider: SmsVerificationProvider | None = None,
    email_sender: EmailSender | None = None,
    identity_provider: IdentityProvider | None = None,
    broker: EventBroker | None = None,
) -> AuthContainer:
    settings = settings or get_settings()
    retry_policy = RetryPolicy.from_settings(settings)

    counter_store = counter_store or _counter_store(settings, retry_policy)
    broker = broker or InMemoryEventBroker()
    identity_provider = identity_provider or GoogleIdentityProvider(settings, retry_policy)
    gateway = VerificationGateway(
        sms=SmsChannel(sms_provider or KaleyraVerifyProvider(settings, retry_policy)),
        email=EmailChannel(email_sender or EmailService(settings), settings),
    )
    challenges = ChallengeManager(RateLimiter(counter_store, settings), gateway, settings)
    issuer = SessionIssuer(settings)

    return AuthContainer(
        settings=settings,
        counter_store=counter_store,
        broker=broker,
        identity_provider=identity_provider,
        orchestrator=AuthOrchestrator(
            session_factory, challenges, issuer, identity_provider, broker, settings, retry_policy
        ),
        onboarding=OnboardingService(session_factory, challenges, broker, retry_policy),
        accounts=AccountService(session_factory, challenges, issuer, broker, settings, retry_policy),
    )

"""Transaction scope shared by the public auth services."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.exceptions import (
    INTERNAL_ERROR,
    AuthException,
    ChallengeInvalid,
    DatastoreUnavailable,
    Forbidden,
    ProviderUnavailable,
    Result,
    Unauthenticated,
)
from auth.interfaces.event_broker import Event, EventBroker
from auth.retry import ConnectFailure, RetryPolicy
from auth.services.challenge_manager import ChallengeManager, Redemption
from auth.services.session_issuer import SessionContext
from auth.services.verification import ChallengeTarget
from db.models.types import ChallengeType, OnboardingStep, UserRole
from db.models.user import User
from db.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL lock_not_available, raised when lock_timeout expires
LOCK_NOT_AVAILABLE = "55P03"


@dataclass(frozen=True)
class UserSummary:
    id: str
    phone_number: str | None
    country_code: str | None
    email: str | None
    name: str | None
    bio: str | None
    profile_image_url: str | None
    is_phone_verified: bool
    is_email_verified: bool
    is_active: bool
    onboarding_step: OnboardingStep
    role: UserRole
    deleted_at: datetime | None
    pending_email: str | None
    pending_phone_number: str | None
    pending_country_code: str | None

    @classmethod
    def from_model(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            phone_number=user.phone_number,
            country_code=user.country_code,
            email=user.email,
            name=user.name,
            bio=user.bio,
            profile_image_url=user.profile_image_url,
            is_phone_verified=bool(user.is_phone_verified),
            is_email_verified=bool(user.is_email_verified),
            is_active=bool(user.is_active),
            onboarding_step=user.onboarding_step,
            role=user.role,
            deleted_at=user.deleted_at,
            pending_email=user.pending_email,
            pending_phone_number=user.pending_phone_number,
            pending_country_code=user.pending_country_code,
        )


@dataclass
class UnitOfWork:
    """One transaction plus the events to publish once it commits."""

    db: AsyncSession
    events: list[Event] = field(default_factory=list)
    redeemed_challenge_id: str | None = None

    def emit(self, name: str, **payload: Any) -> None:
        self.events.append(Event(name=name, payload=payload))


class TransactionalService:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        challenges: ChallengeManager,
        broker: EventBroker,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._challenges = challenges
        self._broker = broker
        self._retry = retry_policy or RetryPolicy()

    async def _begin(self, db: AsyncSession) -> None:
        """Start the transaction, retrying while the database cannot be reached."""

        async def connect() -> None:
            try:
                await db.connection()
            except (OperationalError, InterfaceError) as exc:
                await db.rollback()
                raise ConnectFailure(str(exc)) from exc

        try:
            await self._retry.call(connect)
        except ConnectFailure as exc:
            raise DatastoreUnavailable("Database is unavailable, try again") from exc

    async def _execute(self, operation: str, work: Callable[[UnitOfWork], Awaitable[T]]) -> Result[T]:
        """Run `work` in one transaction and convert failures into a Result."""
        unit = UnitOfWork(db=self._session_factory())
        try:
            await self._begin(unit.db)
            try:
                value = await work(unit)
            except DBAPIError as exc:
                if getattr(exc.orig, "sqlstate", None) != LOCK_NOT_AVAILABLE:
                    raise
                raise DatastoreUnavailable(
                    "Record is busy, try again", code="DATASTORE_BUSY", retry_after=1
                ) from exc
            await unit.db.commit()
        except AuthException as exc:
            await unit.db.rollback()
            await self._recharge(unit)
            logger.info(
                "Operation refused",
                extra={"operation": operation, "code": exc.code, "kind": exc.kind.value},
            )
            return Result.failure(exc.to_error())
        except Exception:
            await unit.db.rollback()
            await self._recharge(unit)
            logger.exception("Operation failed", extra={"operation": operation})
            return Result.failure(INTERNAL_ERROR)
        finally:
            await unit.db.close()

        for event in unit.events:
            await self._broker.publish(event)
        return Result.success(value)

    async def _recharge(self, unit: UnitOfWork) -> None:
        """Charge the attempt of a redemption whose transaction was rolled back."""
        if unit.redeemed_challenge_id is None:
            return
        async with self._session_factory() as db:
            try:
                await self._challenges.recharge_attempt(db, unit.redeemed_challenge_id)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception("Failed to recharge attempt", extra={"challenge_id": unit.redeemed_challenge_id})

    async def _redeem(
        self,
        unit: UnitOfWork,
        target: ChallengeTarget,
        challenge_type: ChallengeType,
        code: str,
    ) -> Redemption:
        """Redeem a challenge, committing attempt bookkeeping when the code is refused."""
        try:
            redemption = await self._challenges.redeem_challenge(unit.db, target, challenge_type, code)
        except (ChallengeInvalid, ProviderUnavailable):
            await unit.db.commit()
            raise
        unit.redeemed_challenge_id = redemption.challenge_id
        return redemption

    @staticmethod
    async def _load_user(unit: UnitOfWork, ctx: SessionContext, allow_phone_verification: bool = False) -> User:
        if ctx.phone_verification and not allow_phone_verification:
            raise Forbidden("Verify your phone number first", code="PHONE_VERIFICATION_REQUIRED")
        user = await UserRepository(unit.db).get_by_id(ctx.user_id, for_update=True)
        if user is None:
            raise Unauthenticated("User not found", code="USER_NOT_FOUND")
        return user

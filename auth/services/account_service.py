"""Account settings for users who finished onboarding."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from auth.config import AuthSettings, get_settings
from auth.exceptions import Conflict, Forbidden, InputInvalid, NotFound, Result, StateViolation
from auth.interfaces.event_broker import EventBroker
from auth.onboarding import require_completed
from auth.retry import RetryPolicy
from auth.security import mask_email, mask_phone
from auth.services.base import TransactionalService, UnitOfWork, UserSummary
from auth.services.challenge_manager import ChallengeManager, ChallengeReceipt, ClientMeta, validate_phone
from auth.services.onboarding_service import normalize_email
from auth.services.session_issuer import ActiveSession, SessionContext, SessionIssuer, ensure_user_active
from auth.services.verification import ChallengeTarget
from db.models.types import ChallengeType, UserRole, utcnow
from db.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionSchedule:
    user_id: str
    scheduled_for: datetime
    sessions_revoked: int


class AccountService(TransactionalService):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        challenges: ChallengeManager,
        issuer: SessionIssuer,
        broker: EventBroker,
        settings: AuthSettings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(session_factory, challenges, broker, retry_policy)
        self._issuer = issuer
        self._settings = settings or get_settings()

    async def request_email_update(
        self,
        ctx: SessionContext,
        email: str,
        meta: ClientMeta | None = None,
    ) -> Result[ChallengeReceipt]:
        async def work(unit: UnitOfWork) -> ChallengeReceipt:
            address = normalize_email(email)
            user = await self._load_user(unit, ctx)
            require_completed(user)
            if user.email == address:
                raise InputInvalid("New email must be different from current", code="EMAIL_SAME_AS_CURRENT")
            if await UserRepository(unit.db).email_taken(address, exclude_user_id=user.id):
                raise Conflict("Email is already associated with another account", code="EMAIL_IN_USE")

            user.pending_email = address
            receipt = await self._challenges.create_challenge(
                unit.db,
                ChallengeTarget.for_email(address, user.id),
                ChallengeType.EMAIL_VERIFY,
                meta,
            )
            logger.info("Email update requested", extra={"user_id": user.id, "email": mask_email(address)})
            return receipt

        return await self._execute("request_email_update", work)

    async def verify_email_update(self, ctx: SessionContext, code: str) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            user = await self._load_user(unit, ctx)
            require_completed(user)
            address = user.pending_email
            if not address:
                raise StateViolation("No pending email found to verify", code="NO_PENDING_EMAIL")
            users = UserRepository(unit.db)
            if await users.email_taken(address, exclude_user_id=user.id):
                raise Conflict("Email is already associated with another account", code="EMAIL_IN_USE")

            target = ChallengeTarget.for_email(address, user.id)
            await self._challenges.enforce_verify_limit(target)
            await self._redeem(unit, target, ChallengeType.EMAIL_VERIFY, code)

            previous = user.email
            user.email = address
            user.pending_email = None
            user.is_email_verified = True
            if user.external_id and user.is_phone_verified:
                # The federated identity was bound to the old address
                user.external_id = None
            unit.emit("account.email_updated", user_id=user.id)
            logger.info(
                "Email updated",
                extra={"user_id": user.id, "previous": mask_email(previous), "email": mask_email(address)},
            )
            return UserSummary.from_model(user)

        return await self._execute("verify_email_update", work)

    async def request_phone_update(
        self,
        ctx: SessionContext,
        phone_number: str,
        country_code: str,
        meta: ClientMeta | None = None,
    ) -> Result[ChallengeReceipt]:
        async def work(unit: UnitOfWork) -> ChallengeReceipt:
            phone, cc = validate_phone(phone_number, country_code)
            user = await self._load_user(unit, ctx)
            require_completed(user)
            if await UserRepository(unit.db).phone_taken(phone, cc, exclude_user_id=user.id):
                raise Conflict("Phone number already in use by another account", code="PHONE_IN_USE")
            if user.phone_number == phone and user.country_code == cc and user.is_phone_verified:
                raise Conflict("Phone number is already verified", code="PHONE_ALREADY_VERIFIED")

            user.pending_phone_number = phone
            user.pending_country_code = cc
            receipt = await self._challenges.create_challenge(
                unit.db,
                ChallengeTarget.phone(phone, cc, user_id=user.id),
                ChallengeType.PHONE_AUTH,
                meta,
            )
            logger.info("Phone update requested", extra={"user_id": user.id, "phone": mask_phone(cc, phone)})
            return receipt

        return await self._execute("request_phone_update", work)

    async def verify_phone_update(self, ctx: SessionContext, code: str) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            user = await self._load_user(unit, ctx)
            require_completed(user)
            phone, cc = user.pending_phone_number, user.pending_country_code
            if not phone or not cc:
                raise StateViolation("No pending phone update request found", code="NO_PENDING_PHONE")
            if await UserRepository(unit.db).phone_taken(phone, cc, exclude_user_id=user.id):
                raise Conflict("Phone number already in use by another account", code="PHONE_IN_USE")

            target = ChallengeTarget.phone(phone, cc, user_id=user.id)
            await self._challenges.enforce_verify_limit(target)
            await self._redeem(unit, target, ChallengeType.PHONE_AUTH, code)

            user.phone_number = phone
            user.country_code = cc
            user.pending_phone_number = None
            user.pending_country_code = None
            user.is_phone_verified = True
            unit.emit("account.phone_updated", user_id=user.id)
            logger.info("Phone updated", extra={"user_id": user.id, "phone": mask_phone(cc, phone)})
            return UserSummary.from_model(user)

        return await self._execute("verify_phone_update", work)

    async def update_push_token(self, ctx: SessionContext, push_token: str | None) -> Result[bool]:
        """Set, or clear with None, the push token of the calling device."""

        async def work(unit: UnitOfWork) -> bool:
            user = await self._load_user(unit, ctx)
            ensure_user_active(user)
            await self._issuer.update_push_token(unit.db, user.id, ctx.device_id, push_token)
            return push_token is not None

        return await self._execute("update_push_token", work)

    async def list_sessions(self, ctx: SessionContext) -> Result[list[ActiveSession]]:
        async def work(unit: UnitOfWork) -> list[ActiveSession]:
            user = await self._load_user(unit, ctx)
            return await self._issuer.list_active(unit.db, user.id, ctx.device_id)

        return await self._execute("list_sessions", work)

    async def schedule_deletion(self, ctx: SessionContext, reason: str | None = None) -> Result[DeletionSchedule]:
        async def work(unit: UnitOfWork) -> DeletionSchedule:
            text = (reason or "").strip()
            if len(text) > self._settings.DELETION_REASON_MAX_LENGTH:
                raise InputInvalid(
                    f"Reason is too long. Maximum {self._settings.DELETION_REASON_MAX_LENGTH} characters allowed",
                    code="INVALID_REASON_LENGTH",
                )
            user = await self._load_user(unit, ctx)
            if user.deleted_at is not None:
                raise Conflict("Account is already scheduled for deletion", code="ALREADY_SCHEDULED")
            require_completed(user)

            scheduled_for = utcnow() + timedelta(days=self._settings.ACCOUNT_DELETION_GRACE_DAYS)
            user.is_active = False
            user.deleted_at = scheduled_for
            user.deletion_reason = text or "User requested account deletion"
            revoked = await self._issuer.deactivate_all(unit.db, user.id)

            unit.emit("account.deletion_scheduled", user_id=user.id, scheduled_for=scheduled_for.isoformat())
            logger.info(
                "Account deletion scheduled",
                extra={"user_id": user.id, "scheduled_for": scheduled_for.isoformat(), "sessions": revoked},
            )
            return DeletionSchedule(user_id=user.id, scheduled_for=scheduled_for, sessions_revoked=revoked)

        return await self._execute("schedule_deletion", work)

    async def cancel_deletion(self, ctx: SessionContext, user_id: str) -> Result[UserSummary]:
        """Restore an account inside its grace period. Revoked sessions stay revoked."""

        async def work(unit: UnitOfWork) -> UserSummary:
            if ctx.role not in (UserRole.ADMIN, UserRole.MODERATOR):
                raise Forbidden("Only staff can restore accounts", code="FORBIDDEN")
            user = await UserRepository(unit.db).get_by_id(user_id, for_update=True)
            if user is None:
                raise NotFound("User not found", code="USER_NOT_FOUND")
            if user.deleted_at is None:
                raise StateViolation("Account is not scheduled for deletion", code="NOT_SCHEDULED")
            if user.deleted_at <= utcnow():
                raise StateViolation("Grace period has ended", code="DELETION_FINAL")

            user.is_active = True
            user.deleted_at = None
            user.deletion_reason = None
            unit.emit("account.deletion_cancelled", user_id=user.id, restored_by=ctx.user_id)
            logger.info("Account deletion cancelled", extra={"user_id": user.id, "restored_by": ctx.user_id})
            return UserSummary.from_model(user)

        return await self._execute("cancel_deletion", work)

"""Auth orchestrator: the public entry point for verification and sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from auth.config import AuthSettings, get_settings
from auth.exceptions import Conflict, InputInvalid, Result, StateViolation, Unauthenticated
from auth.interfaces.event_broker import EventBroker
from auth.interfaces.providers import IdentityProvider
from auth.onboarding import OnboardingEvent, advance
from auth.retry import RetryPolicy
from auth.security import PHONE_VERIFICATION, create_phone_verification_token, decode_token, mask_phone
from auth.services.base import TransactionalService, UnitOfWork, UserSummary
from auth.services.challenge_manager import (
    ChallengeManager,
    ChallengeReceipt,
    ClientMeta,
    validate_phone,
)
from auth.services.session_issuer import (
    DeviceInfo,
    SessionContext,
    SessionIssuer,
    TokenPair,
    ensure_user_active,
)
from auth.services.verification import ChallengeTarget
from db.models.types import ChallengeType, OnboardingStep, UserRole
from db.models.user import User
from db.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)

SENDABLE_TYPES = (ChallengeType.PHONE_AUTH, ChallengeType.POST_FEDERATION_PHONE_VERIFY)


@dataclass(frozen=True)
class AuthOutcome:
    """
    Result of a login step.

    Either `tokens` is set (a device session exists), or
    `phone_verification_token` is set (federated user still has to verify
    a phone number).
    """

    user: UserSummary
    is_new_user: bool
    tokens: TokenPair | None = None
    phone_verification_token: str | None = None
    phone_verification_expires_at: datetime | None = None

    @property
    def requires_phone_verification(self) -> bool:
        return self.phone_verification_token is not None


def _validate_device(device: DeviceInfo) -> None:
    if not device or not (device.device_id or "").strip():
        raise InputInvalid("Device id is required", code="DEVICE_ID_REQUIRED")


class AuthOrchestrator(TransactionalService):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        challenges: ChallengeManager,
        issuer: SessionIssuer,
        identity_provider: IdentityProvider,
        broker: EventBroker,
        settings: AuthSettings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(session_factory, challenges, broker, retry_policy)
        self._issuer = issuer
        self._identity = identity_provider
        self._settings = settings or get_settings()

    async def send_code(
        self,
        phone_number: str,
        country_code: str,
        challenge_type: ChallengeType = ChallengeType.PHONE_AUTH,
        meta: ClientMeta | None = None,
    ) -> Result[ChallengeReceipt]:
        async def work(unit: UnitOfWork) -> ChallengeReceipt:
            phone, code = validate_phone(phone_number, country_code)
            if challenge_type not in SENDABLE_TYPES:
                raise InputInvalid("Unsupported verification type", code="INVALID_OTP_TYPE")

            existing = await UserRepository(unit.db).get_by_phone(phone, code)
            if existing is not None and challenge_type is ChallengeType.PHONE_AUTH:
                ensure_user_active(existing)
            if existing is not None and challenge_type is ChallengeType.POST_FEDERATION_PHONE_VERIFY:
                raise Conflict("Phone number is already registered", code="PHONE_CONFLICT")

            receipt = await self._challenges.create_challenge(
                unit.db, ChallengeTarget.phone(phone, code), challenge_type, meta
            )
            logger.info(
                "Code sent",
                extra={"to": mask_phone(code, phone), "challenge_type": challenge_type.value},
            )
            return receipt

        return await self._execute("send_code", work)

    async def verify_code(
        self,
        phone_number: str,
        country_code: str,
        code: str,
        device: DeviceInfo,
        meta: ClientMeta | None = None,
    ) -> Result[AuthOutcome]:
        meta = meta or ClientMeta()

        async def work(unit: UnitOfWork) -> AuthOutcome:
            phone, cc = validate_phone(phone_number, country_code)
            _validate_device(device)
            target = ChallengeTarget.phone(phone, cc)
            await self._challenges.enforce_verify_limit(target)
            await self._redeem(unit, target, ChallengeType.PHONE_AUTH, code)

            users = UserRepository(unit.db)
            user = await users.get_by_phone(phone, cc, for_update=True)
            is_new_user = user is None
            if user is None:
                user = await users.create(
                    phone_number=phone,
                    country_code=cc,
                    is_phone_verified=False,
                    onboarding_step=OnboardingStep.PHONE_VERIFICATION,
                    role=UserRole.USER,
                )
                unit.emit("user.created", user_id=user.id, method="phone")
            else:
                ensure_user_active(user)
                if user.external_id and not user.is_phone_verified:
                    raise Conflict(
                        "Phone number is registered through another sign-in method",
                        code="PHONE_REGISTERED_OTHER_FLOW",
                    )

            if not user.is_phone_verified:
                user.is_phone_verified = True
            previous = user.onboarding_step
            if advance(user, OnboardingEvent.PHONE_VERIFIED) != previous:
                unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)
            users.touch_last_active(user)

            tokens = await self._issuer.issue_session(unit.db, user, device, meta.ip_address, meta.user_agent)
            unit.emit("session.issued", user_id=user.id, device_id=device.device_id)
            return AuthOutcome(user=UserSummary.from_model(user), is_new_user=is_new_user, tokens=tokens)

        return await self._execute("verify_code", work)

    async def federated_login(
        self,
        device: DeviceInfo,
        id_token: str | None = None,
        authorization_code: str | None = None,
        meta: ClientMeta | None = None,
    ) -> Result[AuthOutcome]:
        meta = meta or ClientMeta()

        async def work(unit: UnitOfWork) -> AuthOutcome:
            _validate_device(device)
            token = id_token
            if not token and authorization_code:
                token = await self._identity.exchange_code(authorization_code)
            if not token:
                raise InputInvalid("An ID token or authorization code is required", code="ID_TOKEN_REQUIRED")
            identity = await self._identity.verify_assertion(token, self._settings.GOOGLE_CLIENT_ID)

            users = UserRepository(unit.db)
            user = await users.get_by_external_id(identity.subject_id, for_update=True)
            if user is None and identity.email:
                user = await users.get_by_email(identity.email, for_update=True)
                if user is not None and user.external_id and user.external_id != identity.subject_id:
                    raise Conflict("Email is linked to another account", code="EMAIL_IN_USE")

            is_new_user = user is None
            if user is None:
                user = await users.create(
                    email=identity.email,
                    external_id=identity.subject_id,
                    name=identity.name,
                    profile_image_url=identity.picture,
                    is_email_verified=identity.email_verified,
                    is_phone_verified=False,
                    onboarding_step=OnboardingStep.PHONE_VERIFICATION,
                    role=UserRole.USER,
                )
                unit.emit("user.created", user_id=user.id, method="federated")
            else:
                ensure_user_active(user)
                if not user.external_id:
                    user.external_id = identity.subject_id
                    logger.info("Linked federated identity", extra={"user_id": user.id})
                if identity.email_verified and user.email == identity.email:
                    user.is_email_verified = True
            users.touch_last_active(user)
            await unit.db.flush()

            if not user.is_phone_verified:
                pv_token, pv_expires = create_phone_verification_token(user.id, self._settings)
                return AuthOutcome(
                    user=UserSummary.from_model(user),
                    is_new_user=is_new_user,
                    phone_verification_token=pv_token,
                    phone_verification_expires_at=pv_expires,
                )

            tokens = await self._issuer.issue_session(unit.db, user, device, meta.ip_address, meta.user_agent)
            unit.emit("session.issued", user_id=user.id, device_id=device.device_id)
            return AuthOutcome(user=UserSummary.from_model(user), is_new_user=is_new_user, tokens=tokens)

        return await self._execute("federated_login", work)

    async def verify_federated_phone(
        self,
        phone_verification_token: str,
        phone_number: str,
        country_code: str,
        code: str,
        device: DeviceInfo,
        meta: ClientMeta | None = None,
    ) -> Result[AuthOutcome]:
        meta = meta or ClientMeta()

        async def work(unit: UnitOfWork) -> AuthOutcome:
            payload = decode_token(phone_verification_token, PHONE_VERIFICATION, self._settings)
            phone, cc = validate_phone(phone_number, country_code)
            _validate_device(device)

            users = UserRepository(unit.db)
            user = await users.get_by_id(payload["sub"], for_update=True)
            if user is None:
                raise Unauthenticated("User not found", code="USER_NOT_FOUND")
            ensure_user_active(user)
            if user.is_phone_verified:
                raise StateViolation("Phone number already verified", code="PHONE_ALREADY_VERIFIED")
            if await users.phone_taken(phone, cc, exclude_user_id=user.id):
                raise Conflict("Phone number is already registered", code="PHONE_CONFLICT")

            target = ChallengeTarget.phone(phone, cc)
            await self._challenges.enforce_verify_limit(target)
            await self._redeem(unit, target, ChallengeType.POST_FEDERATION_PHONE_VERIFY, code)

            user.phone_number = phone
            user.country_code = cc
            user.is_phone_verified = True
            advance(user, OnboardingEvent.PHONE_VERIFIED)
            unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)
            users.touch_last_active(user)

            tokens = await self._issuer.issue_session(unit.db, user, device, meta.ip_address, meta.user_agent)
            unit.emit("session.issued", user_id=user.id, device_id=device.device_id)
            return AuthOutcome(user=UserSummary.from_model(user), is_new_user=False, tokens=tokens)

        return await self._execute("verify_federated_phone", work)

    async def refresh(self, refresh_token: str, meta: ClientMeta | None = None) -> Result[TokenPair]:
        meta = meta or ClientMeta()

        async def work(unit: UnitOfWork) -> TokenPair:
            if not refresh_token:
                raise Unauthenticated("Refresh token required", code="INVALID_REFRESH_TOKEN")
            tokens, session = await self._issuer.refresh_session(
                unit.db, refresh_token, meta.ip_address, meta.user_agent
            )
            unit.emit("session.refreshed", user_id=session.user_id, device_id=session.device_id)
            return tokens

        return await self._execute("refresh", work)

    async def logout(
        self,
        ctx: SessionContext,
        device_id: str | None = None,
        all_devices: bool = False,
    ) -> Result[int]:
        async def work(unit: UnitOfWork) -> int:
            count = await self._issuer.revoke(
                unit.db,
                ctx.user_id,
                current_device_id=ctx.device_id,
                target_device_id=device_id,
                all_others=all_devices,
            )
            unit.emit(
                "session.revoked",
                user_id=ctx.user_id,
                device_id=device_id or ctx.device_id,
                all_devices=all_devices,
                count=count,
            )
            return count

        return await self._execute("logout", work)

    async def current_session(self, access_token: str) -> SessionContext | None:
        """Resolve a bearer token. Touches last-used timestamps."""
        if not access_token:
            return None
        result = await self._execute("current_session", lambda unit: self._resolve(unit, access_token))
        return result.value if result.ok else None

    async def _resolve(self, unit: UnitOfWork, access_token: str) -> SessionContext | None:
        return await self._issuer.resolve_access(unit.db, access_token)

    async def user_summary(self, user_id: str) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            user: User | None = await UserRepository(unit.db).get_by_id(user_id)
            if user is None:
                raise Unauthenticated("User not found", code="USER_NOT_FOUND")
            return UserSummary.from_model(user)

        return await self._execute("user_summary", work)

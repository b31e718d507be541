"""Onboarding steps after the phone has been verified."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter, ValidationError

from auth.exceptions import Conflict, InputInvalid, Result, StateViolation
from auth.onboarding import OnboardingEvent, advance, effective_step
from auth.services.base import TransactionalService, UnitOfWork, UserSummary
from auth.services.challenge_manager import ChallengeReceipt, ClientMeta
from auth.services.session_issuer import SessionContext, ensure_user_active
from auth.services.verification import ChallengeTarget
from db.models.types import ChallengeType, OnboardingStep
from db.models.user import User
from db.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def normalize_email(email: str) -> str:
    try:
        return str(_email_adapter.validate_python((email or "").strip())).lower()
    except ValidationError as exc:
        raise InputInvalid("Please provide a valid email address", code="INVALID_EMAIL") from exc


@dataclass(frozen=True)
class ProfileSetupOutcome:
    user: UserSummary
    email_verification: ChallengeReceipt | None = None


class OnboardingService(TransactionalService):
    async def complete_profile(
        self,
        ctx: SessionContext,
        name: str,
        bio: str | None = None,
        email: str | None = None,
        profile_image_url: str | None = None,
        meta: ClientMeta | None = None,
    ) -> Result[ProfileSetupOutcome]:
        async def work(unit: UnitOfWork) -> ProfileSetupOutcome:
            name_value = (name or "").strip()
            if not 2 <= len(name_value) <= 100:
                raise InputInvalid("Name must be 2-100 characters", code="INVALID_NAME")
            new_email = normalize_email(email) if email else None

            user = await self._load_user(unit, ctx)
            ensure_user_active(user)
            step = effective_step(user)
            if step > OnboardingStep.PROFILE_SETUP:
                raise Conflict("Profile setup is already complete", code="PROFILE_ALREADY_COMPLETED")

            if new_email == user.email and user.is_email_verified:
                new_email = None
            if new_email and user.email and user.is_email_verified and user.external_id:
                raise InputInvalid("Cannot change a verified email during profile setup", code="EMAIL_VERIFIED")
            if new_email and await UserRepository(unit.db).email_taken(new_email, exclude_user_id=user.id):
                raise Conflict("Email already in use in another account", code="EMAIL_IN_USE")

            user.name = name_value
            user.bio = bio
            if profile_image_url:
                user.profile_image_url = profile_image_url

            receipt = None
            if new_email:
                user.email = new_email
                user.is_email_verified = False
                advance(user, OnboardingEvent.PROFILE_SAVED_PENDING_EMAIL)
                await unit.db.flush()
                receipt = await self._challenges.create_challenge(
                    unit.db,
                    ChallengeTarget.for_email(new_email, user.id),
                    ChallengeType.EMAIL_VERIFY,
                    meta,
                )
            else:
                advance(user, OnboardingEvent.PROFILE_SAVED)
                unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)

            return ProfileSetupOutcome(user=UserSummary.from_model(user), email_verification=receipt)

        return await self._execute("complete_profile", work)

    async def resend_email_code(
        self,
        ctx: SessionContext,
        email: str,
        meta: ClientMeta | None = None,
    ) -> Result[ChallengeReceipt]:
        async def work(unit: UnitOfWork) -> ChallengeReceipt:
            address = normalize_email(email)
            user = await self._load_user(unit, ctx)
            self._require_unverified_email(user, address)
            return await self._challenges.create_challenge(
                unit.db,
                ChallengeTarget.for_email(address, user.id),
                ChallengeType.EMAIL_VERIFY,
                meta,
            )

        return await self._execute("resend_email_code", work)

    async def verify_email(self, ctx: SessionContext, email: str, code: str) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            address = normalize_email(email)
            user = await self._load_user(unit, ctx)
            self._require_unverified_email(user, address)

            target = ChallengeTarget.for_email(address, user.id)
            await self._challenges.enforce_verify_limit(target)
            await self._redeem(unit, target, ChallengeType.EMAIL_VERIFY, code)

            user.is_email_verified = True
            advance(user, OnboardingEvent.EMAIL_VERIFIED)
            unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)
            return UserSummary.from_model(user)

        return await self._execute("verify_email", work)

    async def select_interests(self, ctx: SessionContext, interest_ids: list[str]) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            ids = list(dict.fromkeys(i for i in interest_ids or [] if i))
            if not ids:
                raise InputInvalid("Select at least one interest", code="INTERESTS_REQUIRED")
            user = await self._load_user(unit, ctx)
            advance(user, OnboardingEvent.INTERESTS_SAVED)
            unit.emit("onboarding.interests_selected", user_id=user.id, interest_ids=ids)
            unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)
            return UserSummary.from_model(user)

        return await self._execute("select_interests", work)

    async def acknowledge_recommendations(self, ctx: SessionContext) -> Result[UserSummary]:
        async def work(unit: UnitOfWork) -> UserSummary:
            user = await self._load_user(unit, ctx)
            advance(user, OnboardingEvent.RECOMMENDATIONS_ACKNOWLEDGED)
            unit.emit("onboarding.advanced", user_id=user.id, step=user.onboarding_step.value)
            logger.info("Onboarding completed", extra={"user_id": user.id})
            return UserSummary.from_model(user)

        return await self._execute("acknowledge_recommendations", work)

    @staticmethod
    def _require_unverified_email(user: User, address: str) -> None:
        if effective_step(user) is not OnboardingStep.PROFILE_SETUP:
            raise StateViolation("Email verification is part of profile setup", code="INVALID_ONBOARDING_STEP")
        if user.email != address:
            raise InputInvalid("Email does not match the one on your profile", code="EMAIL_MISMATCH")
        if user.is_email_verified:
            raise Conflict("Email is already verified", code="EMAIL_VERIFIED")

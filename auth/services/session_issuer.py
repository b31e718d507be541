"""Per-device session minting, rotation and revocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from auth.config import AuthSettings, get_settings
from auth.exceptions import Conflict, Forbidden, NotFound, Unauthenticated
from auth.security import (
    ACCESS,
    PHONE_VERIFICATION,
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
)
from db.models.auth import AuthSession
from db.models.types import DeviceType, OnboardingStep, UserRole, utcnow
from db.models.user import User
from db.repos.session_repo import SessionRepository
from db.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    device_type: DeviceType
    device_name: str | None = None
    app_version: str | None = None
    os_version: str | None = None
    push_token: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class SessionContext:
    """What the rest of the application sees about the caller."""

    user_id: str
    device_id: str | None
    role: UserRole
    is_active: bool
    onboarding_step: OnboardingStep
    phone_verification: bool = False


@dataclass(frozen=True)
class ActiveSession:
    id: str
    device_id: str
    device_type: DeviceType
    device_name: str
    app_version: str | None
    os_version: str | None
    ip_address: str | None
    last_used_at: datetime | None
    access_expires_at: datetime
    refresh_expires_at: datetime
    is_current_session: bool


def display_device_name(device_type: DeviceType, device_name: str | None, user_agent: str | None) -> str:
    if device_name:
        return device_name
    if device_type is DeviceType.IOS:
        return "iPhone/iPad"
    if device_type is DeviceType.ANDROID:
        return "Android Device"
    agent = user_agent or ""
    for marker, label in (("Edg", "Edge"), ("Firefox", "Firefox"), ("Chrome", "Chrome"), ("Safari", "Safari")):
        if marker in agent:
            return f"{label} Browser"
    return "Web Browser"


def ensure_user_active(user: User) -> None:
    """Raise Forbidden for accounts that may not hold sessions."""
    if not user.is_active and user.deleted_at is not None:
        raise Forbidden(
            "Account is scheduled for deletion. Please contact support to restore.",
            code="ACCOUNT_SCHEDULED_FOR_DELETION",
            data={"deleted_at": user.deleted_at.isoformat()},
        )
    if not user.is_active:
        raise Forbidden("Account is deactivated. Please contact support.", code="ACCOUNT_DEACTIVATED")
    if user.is_suspended:
        raise Forbidden("Account is suspended", code="ACCOUNT_SUSPENDED", data={"reason": user.suspension_reason})


class SessionIssuer:
    def __init__(self, settings: AuthSettings | None = None) -> None:
        self._settings = settings or get_settings()

    def _mint(self, user: User, device_id: str) -> TokenPair:
        access_token, access_exp = create_access_token(user.id, device_id, user.role.value, self._settings)
        refresh_token, refresh_exp = create_refresh_token(user.id, device_id, user.role.value, self._settings)
        return TokenPair(access_token, refresh_token, access_exp, refresh_exp)

    async def issue_session(
        self,
        db: AsyncSession,
        user: User,
        device: DeviceInfo,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Replace any session for (user, device) with a fresh one."""
        tokens = self._mint(user, device.device_id)
        await SessionRepository(db).replace_for_device(
            user.id,
            device.device_id,
            device_type=device.device_type,
            device_name=device.device_name,
            app_version=device.app_version,
            os_version=device.os_version,
            push_token=device.push_token,
            access_token_hash=hash_token(tokens.access_token),
            refresh_token_hash=hash_token(tokens.refresh_token),
            access_expires_at=tokens.access_expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
            is_active=True,
            last_used_at=utcnow(),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info("Session issued", extra={"user_id": user.id, "device_id": device.device_id})
        return tokens

    async def refresh_session(
        self,
        db: AsyncSession,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[TokenPair, AuthSession]:
        """Rotate both credentials. The presented refresh token stops working immediately."""
        decode_token(refresh_token, REFRESH, self._settings)
        session = await SessionRepository(db).get_by_refresh_hash(hash_token(refresh_token), utcnow())
        if session is None:
            raise Unauthenticated("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")

        user = await UserRepository(db).get_by_id(session.user_id)
        if user is None:
            raise Unauthenticated("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")
        ensure_user_active(user)

        tokens = self._mint(user, session.device_id)
        session.access_token_hash = hash_token(tokens.access_token)
        session.refresh_token_hash = hash_token(tokens.refresh_token)
        session.access_expires_at = tokens.access_expires_at
        session.refresh_expires_at = tokens.refresh_expires_at
        session.last_used_at = utcnow()
        if ip_address:
            session.ip_address = ip_address
        if user_agent:
            session.user_agent = user_agent
        await db.flush()
        logger.info("Session refreshed", extra={"user_id": user.id, "device_id": session.device_id})
        return tokens, session

    async def revoke(
        self,
        db: AsyncSession,
        user_id: str,
        current_device_id: str | None,
        target_device_id: str | None = None,
        all_others: bool = False,
    ) -> int:
        """Deactivate sessions. Returns how many rows changed."""
        repo = SessionRepository(db)
        if all_others:
            if current_device_id is None:
                count = await repo.deactivate_all(user_id)
            else:
                count = await repo.deactivate_others(user_id, current_device_id)
        elif target_device_id and target_device_id != current_device_id:
            if await repo.get_active_for_device(user_id, target_device_id) is None:
                raise Conflict(
                    "Device does not belong to this account",
                    code="UNAUTHORIZED_DEVICE_LOGOUT",
                )
            count = await repo.deactivate_device(user_id, target_device_id)
        else:
            if current_device_id is None:
                raise NotFound("No session found to logout", code="SESSION_NOT_FOUND")
            count = await repo.deactivate_device(user_id, current_device_id)

        if count == 0:
            raise NotFound("No session found to logout", code="SESSION_NOT_FOUND")
        logger.info(
            "Sessions revoked",
            extra={"user_id": user_id, "count": count, "all_others": all_others},
        )
        return count

    async def deactivate_all(self, db: AsyncSession, user_id: str) -> int:
        return await SessionRepository(db).deactivate_all(user_id)

    async def resolve_access(self, db: AsyncSession, token: str) -> SessionContext | None:
        """Map a bearer token to a session context, or None if it grants nothing."""
        try:
            payload = decode_token(token, ACCESS, self._settings)
        except Unauthenticated:
            return await self._resolve_phone_verification(db, token)

        now = utcnow()
        session = await SessionRepository(db).get_by_access_hash(hash_token(token), now)
        if session is None:
            return None
        user = await UserRepository(db).get_by_id(session.user_id)
        if user is None or not user.is_active or user.is_suspended:
            return None
        if payload.get("sub") != user.id:
            return None

        session.last_used_at = now
        user.last_active_at = now
        return SessionContext(
            user_id=user.id,
            device_id=session.device_id,
            role=user.role,
            is_active=user.is_active,
            onboarding_step=user.onboarding_step,
        )

    async def _resolve_phone_verification(self, db: AsyncSession, token: str) -> SessionContext | None:
        try:
            payload = decode_token(token, PHONE_VERIFICATION, self._settings)
        except Unauthenticated:
            return None
        user = await UserRepository(db).get_by_id(payload["sub"])
        if user is None or not user.is_active or user.is_phone_verified:
            return None
        return SessionContext(
            user_id=user.id,
            device_id=None,
            role=user.role,
            is_active=user.is_active,
            onboarding_step=OnboardingStep.PHONE_VERIFICATION,
            phone_verification=True,
        )

    async def list_active(
        self, db: AsyncSession, user_id: str, current_device_id: str | None
    ) -> list[ActiveSession]:
        rows = await SessionRepository(db).list_active(user_id)
        return [
            ActiveSession(
                id=row.id,
                device_id=row.device_id,
                device_type=row.device_type,
                device_name=display_device_name(row.device_type, row.device_name, row.user_agent),
                app_version=row.app_version,
                os_version=row.os_version,
                ip_address=row.ip_address,
                last_used_at=row.last_used_at,
                access_expires_at=row.access_expires_at,
                refresh_expires_at=row.refresh_expires_at,
                is_current_session=row.device_id == current_device_id,
            )
            for row in rows
        ]

    async def update_push_token(
        self, db: AsyncSession, user_id: str, device_id: str, push_token: str | None
    ) -> AuthSession:
        session = await SessionRepository(db).get_active_for_device(user_id, device_id)
        if session is None:
            raise NotFound("Active session not found", code="SESSION_NOT_FOUND")
        session.push_token = push_token or None
        await db.flush()
        return session

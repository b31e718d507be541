"""Security utilities for auth."""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.config import AuthSettings, get_settings
from auth.exceptions import Unauthenticated

ACCESS = "access"
REFRESH = "refresh"
PHONE_VERIFICATION = "phone_verification"


def hash_code(code: str) -> str:
    """Hash a locally generated one-time code using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(code.encode("utf-8"), salt).decode("utf-8")


def verify_code(code: str, hashed_code: str) -> bool:
    """Verify a one-time code against its hash."""
    try:
        return bcrypt.checkpw(code.encode("utf-8"), hashed_code.encode("utf-8"))
    except ValueError:
        return False


def generate_code(settings: AuthSettings | None = None) -> str:
    settings = settings or get_settings()
    if settings.FIXED_OTP:
        return settings.FIXED_OTP
    low = 10 ** (settings.OTP_LENGTH - 1)
    return str(secrets.randbelow(9 * low) + low)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store bearer tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(payload: dict[str, Any], secret: str, settings: AuthSettings) -> str:
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def _session_payload(
    token_type: str,
    user_id: str,
    device_id: str,
    role: str,
    expire: datetime,
    now: datetime,
) -> dict[str, Any]:
    return {
        "sub": user_id,
        "device_id": device_id,
        "role": role,
        "type": token_type,
        "exp": expire,
        "iat": now,
        "jti": uuid4().hex,
    }


def create_access_token(
    user_id: str,
    device_id: str,
    role: str,
    settings: AuthSettings | None = None,
) -> tuple[str, datetime]:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = _session_payload(ACCESS, user_id, device_id, role, expire, now)
    return _encode(payload, settings.ACCESS_TOKEN_SECRET, settings), expire


def create_refresh_token(
    user_id: str,
    device_id: str,
    role: str,
    settings: AuthSettings | None = None,
) -> tuple[str, datetime]:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    payload = _session_payload(REFRESH, user_id, device_id, role, expire, now)
    return _encode(payload, settings.REFRESH_TOKEN_SECRET, settings), expire


def create_phone_verification_token(user_id: str, settings: AuthSettings | None = None) -> tuple[str, datetime]:
    """Short-lived credential for a federated user who still has to verify a phone."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.PHONE_VERIFICATION_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": user_id,
        "type": PHONE_VERIFICATION,
        "exp": expire,
        "iat": now,
        "jti": uuid4().hex,
    }
    return _encode(payload, settings.ACCESS_TOKEN_SECRET, settings), expire


def decode_token(token: str, expected_type: str, settings: AuthSettings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    secret = settings.REFRESH_TOKEN_SECRET if expected_type == REFRESH else settings.ACCESS_TOKEN_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise Unauthenticated("Token expired", code="TOKEN_EXPIRED") from exc
    except JWTError as exc:
        raise Unauthenticated("Invalid token", code="INVALID_TOKEN") from exc
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise Unauthenticated("Invalid token type", code="INVALID_TOKEN")
    return payload


def mask_phone(country_code: str | None, phone_number: str | None) -> str:
    if not phone_number:
        return ""
    return f"{country_code or ''} {'*' * max(len(phone_number) - 2, 0)}{phone_number[-2:]}".strip()


def mask_email(email: str | None) -> str:
    if not email or "@" not in email:
        return ""
    local, domain = email.split("@", 1)
    return f"{local[:2]}{'*' * max(len(local) - 2, 0)}@{domain}"

"""Auth request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from db.models.types import ChallengeType, DeviceType, OnboardingStep, UserRole


class ApiResponse(BaseModel):
    success: bool
    message: str
    data: dict[str, Any] | None = None


class DevicePayload(BaseModel):
    device_id: str = Field(min_length=1, max_length=255)
    device_type: DeviceType
    device_name: str | None = Field(default=None, max_length=255)
    app_version: str | None = Field(default=None, max_length=50)
    os_version: str | None = Field(default=None, max_length=50)
    push_token: str | None = None


class SendCodeRequest(BaseModel):
    phone_number: str = Field(min_length=1, max_length=20)
    country_code: str = Field(min_length=1, max_length=5)
    challenge_type: ChallengeType = ChallengeType.PHONE_AUTH


class VerifyCodeRequest(BaseModel):
    phone_number: str = Field(min_length=1, max_length=20)
    country_code: str = Field(min_length=1, max_length=5)
    otp: str = Field(min_length=4, max_length=8)
    device: DevicePayload


class FederatedLoginRequest(BaseModel):
    id_token: str | None = None
    code: str | None = None
    device: DevicePayload


class FederatedPhoneRequest(BaseModel):
    phone_number: str = Field(min_length=1, max_length=20)
    country_code: str = Field(min_length=1, max_length=5)
    otp: str = Field(min_length=4, max_length=8)
    device: DevicePayload


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    device_id: str | None = None
    all_devices: bool = False


class ProfileSetupRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    bio: str | None = Field(default=None, max_length=500)
    email: EmailStr | None = None
    profile_image_url: str | None = None


class EmailCodeRequest(BaseModel):
    email: EmailStr


class EmailVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=4, max_length=8)


class InterestsRequest(BaseModel):
    interest_ids: list[str] = Field(min_length=1)


class EmailUpdateRequest(BaseModel):
    email: EmailStr


class PhoneUpdateRequest(BaseModel):
    phone_number: str = Field(min_length=1, max_length=20)
    country_code: str = Field(min_length=1, max_length=5)


class CodeRequest(BaseModel):
    otp: str = Field(min_length=4, max_length=8)


class PushTokenRequest(BaseModel):
    push_token: str | None = None


class DeleteAccountRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=300)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    phone_number: str | None = None
    country_code: str | None = None
    email: str | None = None
    name: str | None = None
    bio: str | None = None
    profile_image_url: str | None = None
    is_phone_verified: bool
    is_email_verified: bool
    onboarding_step: OnboardingStep
    role: UserRole
    pending_email: str | None = None
    pending_phone_number: str | None = None


class TokensOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str
    device_type: DeviceType
    device_name: str
    app_version: str | None = None
    os_version: str | None = None
    ip_address: str | None = None
    last_used_at: datetime | None = None
    access_expires_at: datetime
    refresh_expires_at: datetime
    is_current_session: bool

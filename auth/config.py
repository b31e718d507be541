"""Auth configuration management."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_DEV_ACCESS_SECRET = "dev-access-secret-change-me"
_DEV_REFRESH_SECRET = "dev-refresh-secret-change-me"


class AuthSettings(BaseSettings):
    """Configuration values for verification and session flows."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(default="dev", description="Application environment")

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./identity.db",
        description="Database URL; postgresql:// and sqlite:// are mapped to their async drivers",
    )
    DB_POOL_SIZE: int = Field(default=10, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=20, description="Extra connections allowed beyond the pool")
    DB_ECHO: bool = Field(default=False, description="Enable SQL query logging")
    DB_LOCK_TIMEOUT_SECONDS: float = Field(default=5.0, description="Longest wait for a row lock held by another transaction")

    # Counter store for rate limiting
    RATE_LIMIT_BACKEND: Literal["redis", "memory"] = Field(default="redis", description="Counter store backend")
    REDIS_URL: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # Tokens
    ACCESS_TOKEN_SECRET: str = Field(default=_DEV_ACCESS_SECRET, description="Signing secret for access tokens")
    REFRESH_TOKEN_SECRET: str = Field(default=_DEV_REFRESH_SECRET, description="Signing secret for refresh tokens")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=300, description="Access token lifetime in minutes")
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=30, description="Refresh token lifetime in days")
    PHONE_VERIFICATION_TOKEN_EXPIRE_MINUTES: int = Field(
        default=15, description="Lifetime of the credential issued to federated users awaiting phone verification"
    )

    # One-time codes
    OTP_EXPIRY_MINUTES: int = Field(default=10, description="Challenge lifetime in minutes")
    OTP_MAX_ATTEMPTS: int = Field(default=5, description="Redemption attempts allowed per challenge")
    OTP_LENGTH: int = Field(default=6, description="Length of locally generated email codes")
    FIXED_OTP: str | None = Field(default=None, description="Fixed email code for local testing")
    OTP_COOLDOWN_SECONDS: int = Field(default=30, description="Minimum interval between challenge requests")
    OTP_HOURLY_LIMIT: int = Field(default=5, description="Challenge requests allowed per hour per target")
    VERIFY_RATE_LIMIT: int = Field(default=10, description="Redemption requests allowed per window per target")
    VERIFY_RATE_WINDOW_SECONDS: int = Field(default=900, description="Redemption rate limit window")

    # Account lifecycle
    ACCOUNT_DELETION_GRACE_DAYS: int = Field(default=30, description="Days before a scheduled deletion is final")
    DELETION_REASON_MAX_LENGTH: int = Field(default=300, description="Maximum length of a deletion reason")

    # SMS verification provider
    KALEYRA_BASE_URL: str = Field(default="https://api.kaleyra.io/v1", description="Kaleyra API base URL")
    KALEYRA_SID: str | None = Field(default=None, description="Kaleyra account SID")
    KALEYRA_API_KEY: str | None = Field(default=None, description="Kaleyra API key")
    KALEYRA_FLOW_ID: str | None = Field(default=None, description="Kaleyra verify flow id")

    # Email
    EMAIL_PROVIDER: Literal["resend", "console"] = Field(default="resend", description="Email provider")
    RESEND_API_KEY: str | None = Field(default=None, description="Resend API key")
    EMAIL_FROM_ADDRESS: str = Field(default="no-reply@example.com", description="Sender email address")
    EMAIL_FROM_NAME: str = Field(default="Identity", description="From name displayed in emails")

    # Google identity
    GOOGLE_CLIENT_ID: str | None = Field(default=None, description="Google OAuth client id (token audience)")
    GOOGLE_CLIENT_SECRET: str | None = Field(default=None, description="Google OAuth client secret")
    GOOGLE_REDIRECT_URI: str | None = Field(default=None, description="Google OAuth redirect URI")

    # Outbound calls
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0, description="Timeout for provider HTTP calls")
    RETRY_MAX_ATTEMPTS: int = Field(default=3, description="Attempts for retryable connect failures")
    RETRY_BACKOFF_MIN_SECONDS: float = Field(default=0.5, description="Initial retry backoff")
    RETRY_BACKOFF_MAX_SECONDS: float = Field(default=4.0, description="Maximum retry backoff")

    CORS_ORIGINS: list[str] = Field(default=["http://localhost:3000"], description="Allowed CORS origins")

    @field_validator("ACCESS_TOKEN_EXPIRE_MINUTES", "REFRESH_TOKEN_EXPIRE_DAYS", "OTP_MAX_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_secrets(self):
        """Refuse development secrets in production."""
        if self.ENVIRONMENT == "prod":
            for name in ("ACCESS_TOKEN_SECRET", "REFRESH_TOKEN_SECRET"):
                value = getattr(self, name)
                if value in (_DEV_ACCESS_SECRET, _DEV_REFRESH_SECRET) or len(value) < 32:
                    raise ValueError(f"{name} must be at least 32 characters long in production")
            if self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
                raise ValueError("Access and refresh tokens must use different secrets")
            if self.FIXED_OTP:
                raise ValueError("FIXED_OTP cannot be set in production")
        return self


@lru_cache
def get_settings() -> AuthSettings:
    settings = AuthSettings()
    logger.info("Auth settings loaded", extra={"environment": settings.ENVIRONMENT})
    return settings

"""
Auth models for verification challenges and device sessions.

OTPChallenge: one verification attempt window
AuthSession: one authenticated device binding
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db.engine import Base
from db.models.types import (
    ChallengeProvider,
    ChallengeType,
    DeviceType,
    UTCDateTime,
    utcnow,
)


class OTPChallenge(Base):
    """
    A one-time code challenge.

    Phone challenges are keyed by (phone_number, country_code); email
    challenges by (user_id, email). Rows are never deleted.
    """
    __tablename__ = "otp_challenges"
    __table_args__ = (
        Index("ix_otp_challenges_phone", "phone_number", "country_code", "challenge_type", "created_at"),
        Index("ix_otp_challenges_email", "email", "challenge_type", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    phone_number = Column(String(20), nullable=True)
    country_code = Column(String(5), nullable=True)
    email = Column(String(255), nullable=True)

    challenge_type = Column(Enum(ChallengeType, name="challenge_type"), nullable=False)
    provider = Column(Enum(ChallengeProvider, name="challenge_provider"), nullable=False)
    provider_ref = Column(String(255), nullable=True)
    code_hash = Column(Text, nullable=True)  # only for locally generated codes

    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(UTCDateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    expires_at = Column(UTCDateTime, nullable=False)

    provider_status = Column(String(50), nullable=True)
    provider_metadata = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<OTPChallenge(id={self.id}, type={self.challenge_type}, attempts={self.attempts})>"


class AuthSession(Base):
    """
    Per-device session. Only SHA-256 digests of the tokens are stored.
    """
    __tablename__ = "auth_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_auth_sessions_user_device"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String(255), nullable=False)
    device_type = Column(Enum(DeviceType, name="device_type"), nullable=False)
    device_name = Column(String(255), nullable=True)
    app_version = Column(String(50), nullable=True)
    os_version = Column(String(50), nullable=True)

    access_token_hash = Column(String(64), unique=True, nullable=False, index=True)
    refresh_token_hash = Column(String(64), unique=True, nullable=False, index=True)
    access_expires_at = Column(UTCDateTime, nullable=False)
    refresh_expires_at = Column(UTCDateTime, nullable=False)

    push_token = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(UTCDateTime, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    # Relationship
    user = relationship("User", back_populates="auth_sessions")

    def __repr__(self):
        return f"<AuthSession(id={self.id}, user_id={self.user_id}, device_id={self.device_id})>"

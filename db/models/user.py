"""
User model.

User: identity anchor. A user is reachable by phone (number + country
code), by email, by a federated subject id, or by several of these.
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db.engine import Base
from db.models.types import OnboardingStep, UserRole, UTCDateTime, utcnow


class User(Base):
    """
    User account.

    Soft-deleted: `deleted_at` holds the date the account is purged,
    set when deletion is requested.
    """
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("phone_number", "country_code", name="uq_users_phone"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    phone_number = Column(String(20), nullable=True)
    country_code = Column(String(5), nullable=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    external_id = Column(String(255), unique=True, nullable=True, index=True)

    name = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    profile_image_url = Column(Text, nullable=True)

    is_phone_verified = Column(Boolean, nullable=False, default=False)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_suspended = Column(Boolean, nullable=False, default=False)
    suspension_reason = Column(Text, nullable=True)
    deleted_at = Column(UTCDateTime, nullable=True)
    deletion_reason = Column(String(300), nullable=True)

    onboarding_step = Column(
        Enum(OnboardingStep, name="onboarding_step"),
        nullable=False,
        default=OnboardingStep.PHONE_VERIFICATION,
    )
    onboarding_completed_at = Column(UTCDateTime, nullable=True)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.USER)

    # Staging for the request/verify contact change flows
    pending_email = Column(String(255), nullable=True)
    pending_phone_number = Column(String(20), nullable=True)
    pending_country_code = Column(String(5), nullable=True)

    last_active_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    auth_sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_scheduled_for_deletion(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<User(id={self.id}, step={self.onboarding_step})>"

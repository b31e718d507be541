"""
SQLAlchemy models for the identity database.

All models inherit from db.engine.Base for Alembic migrations.
"""

from db.models.types import (
    ChallengeProvider,
    ChallengeType,
    DeviceType,
    OnboardingStep,
    UserRole,
)
from db.models.user import User
from db.models.auth import AuthSession, OTPChallenge

__all__ = [
    "AuthSession",
    "ChallengeProvider",
    "ChallengeType",
    "DeviceType",
    "OTPChallenge",
    "OnboardingStep",
    "User",
    "UserRole",
]

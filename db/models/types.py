"""
Shared column types and enumerations.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp.

    SQLite drops tzinfo on the way back, so values read from it are
    re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class OnboardingStep(str, enum.Enum):
    PHONE_VERIFICATION = "PHONE_VERIFICATION"
    PROFILE_SETUP = "PROFILE_SETUP"
    INTERESTS_SELECTION = "INTERESTS_SELECTION"
    COMMUNITY_RECOMMENDATIONS = "COMMUNITY_RECOMMENDATIONS"
    COMPLETED = "COMPLETED"

    @property
    def rank(self) -> int:
        return _STEP_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, OnboardingStep):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, OnboardingStep):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, OnboardingStep):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, OnboardingStep):
            return NotImplemented
        return self.rank >= other.rank


_STEP_ORDER = list(OnboardingStep)


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"


class DeviceType(str, enum.Enum):
    IOS = "IOS"
    ANDROID = "ANDROID"
    WEB = "WEB"


class ChallengeType(str, enum.Enum):
    PHONE_AUTH = "PHONE_AUTH"
    POST_FEDERATION_PHONE_VERIFY = "POST_FEDERATION_PHONE_VERIFY"
    EMAIL_VERIFY = "EMAIL_VERIFY"


class ChallengeProvider(str, enum.Enum):
    KALEYRA = "KALEYRA"
    LOCAL = "LOCAL"

"""
Onboarding state machine.

Steps advance strictly forward:

    PHONE_VERIFICATION -> PROFILE_SETUP -> INTERESTS_SELECTION
        -> COMMUNITY_RECOMMENDATIONS -> COMPLETED

Each transition is driven by an OnboardingEvent. An event whose target
lies behind the current step is rejected, as is an event that is not
legal from the current step.
"""

from __future__ import annotations

import enum
import logging

from auth.exceptions import StateViolation
from db.models.types import OnboardingStep, utcnow
from db.models.user import User

logger = logging.getLogger(__name__)


class OnboardingEvent(str, enum.Enum):
    PHONE_VERIFIED = "phone_verified"
    PROFILE_SAVED = "profile_saved"
    PROFILE_SAVED_PENDING_EMAIL = "profile_saved_pending_email"
    EMAIL_VERIFIED = "email_verified"
    INTERESTS_SAVED = "interests_saved"
    RECOMMENDATIONS_ACKNOWLEDGED = "recommendations_acknowledged"


# event -> (steps the event may fire from, resulting step)
TRANSITIONS: dict[OnboardingEvent, tuple[frozenset[OnboardingStep], OnboardingStep]] = {
    OnboardingEvent.PHONE_VERIFIED: (
        frozenset(OnboardingStep),
        OnboardingStep.PROFILE_SETUP,
    ),
    OnboardingEvent.PROFILE_SAVED: (
        frozenset({OnboardingStep.PROFILE_SETUP}),
        OnboardingStep.INTERESTS_SELECTION,
    ),
    OnboardingEvent.PROFILE_SAVED_PENDING_EMAIL: (
        frozenset({OnboardingStep.PROFILE_SETUP}),
        OnboardingStep.PROFILE_SETUP,
    ),
    OnboardingEvent.EMAIL_VERIFIED: (
        frozenset({OnboardingStep.PROFILE_SETUP}),
        OnboardingStep.INTERESTS_SELECTION,
    ),
    OnboardingEvent.INTERESTS_SAVED: (
        frozenset({OnboardingStep.INTERESTS_SELECTION}),
        OnboardingStep.COMMUNITY_RECOMMENDATIONS,
    ),
    OnboardingEvent.RECOMMENDATIONS_ACKNOWLEDGED: (
        frozenset({OnboardingStep.COMMUNITY_RECOMMENDATIONS}),
        OnboardingStep.COMPLETED,
    ),
}


def effective_step(user: User) -> OnboardingStep:
    """Stored step, except that a federated user without a verified phone is held at the phone gate."""
    if user.external_id and not user.is_phone_verified:
        return OnboardingStep.PHONE_VERIFICATION
    return user.onboarding_step


def next_step(current: OnboardingStep, event: OnboardingEvent) -> OnboardingStep:
    """Pure transition function. Raises StateViolation for illegal events."""
    allowed_from, target = TRANSITIONS[event]
    if event is OnboardingEvent.PHONE_VERIFIED:
        # Phone verification never moves a user backwards
        return max(current, target)
    if target < current:
        raise StateViolation(
            f"Cannot return to {target.value} from {current.value}",
            code="ONBOARDING_REGRESSION",
            data={"current_step": current.value},
        )
    if current not in allowed_from:
        raise StateViolation(
            f"{event.value} is not allowed during {current.value}",
            code="ONBOARDING_OUT_OF_ORDER",
            data={"current_step": current.value},
        )
    return target


def advance(user: User, event: OnboardingEvent) -> OnboardingStep:
    """Apply an event to a user row, returning the new step."""
    current = effective_step(user) if event is not OnboardingEvent.PHONE_VERIFIED else user.onboarding_step
    step = next_step(current, event)
    if step != user.onboarding_step:
        logger.info(
            "Onboarding advanced",
            extra={"user_id": user.id, "from_step": user.onboarding_step.value, "to_step": step.value},
        )
    user.onboarding_step = step
    if step is OnboardingStep.COMPLETED and user.onboarding_completed_at is None:
        user.onboarding_completed_at = utcnow()
    return step


def require_step(user: User, step: OnboardingStep) -> None:
    current = effective_step(user)
    if current is not step:
        raise StateViolation(
            f"Operation requires onboarding step {step.value}",
            code="INVALID_ONBOARDING_STEP",
            data={"current_step": current.value, "required_step": step.value},
        )


def require_completed(user: User) -> None:
    current = effective_step(user)
    if current is not OnboardingStep.COMPLETED:
        raise StateViolation(
            "Complete onboarding first",
            code="ONBOARDING_INCOMPLETE",
            data={"current_step": current.value},
        )

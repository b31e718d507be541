import unittest

from auth.exceptions import ErrorKind, StateViolation
from auth.onboarding import OnboardingEvent, advance, effective_step, next_step, require_completed
from db.models import User
from db.models.types import OnboardingStep

from support import Harness


def make_user(step, external_id=None, phone_verified=True):
    return User(
        onboarding_step=step,
        external_id=external_id,
        is_phone_verified=phone_verified,
        onboarding_completed_at=None,
    )


class TestOnboardingStateMachine(unittest.TestCase):
    def test_steps_are_ordered(self):
        self.assertLess(OnboardingStep.PHONE_VERIFICATION, OnboardingStep.PROFILE_SETUP)
        self.assertGreater(OnboardingStep.COMPLETED, OnboardingStep.COMMUNITY_RECOMMENDATIONS)

    def test_happy_path(self):
        user = make_user(OnboardingStep.PHONE_VERIFICATION)
        for event, expected in (
            (OnboardingEvent.PHONE_VERIFIED, OnboardingStep.PROFILE_SETUP),
            (OnboardingEvent.PROFILE_SAVED, OnboardingStep.INTERESTS_SELECTION),
            (OnboardingEvent.INTERESTS_SAVED, OnboardingStep.COMMUNITY_RECOMMENDATIONS),
            (OnboardingEvent.RECOMMENDATIONS_ACKNOWLEDGED, OnboardingStep.COMPLETED),
        ):
            self.assertEqual(advance(user, event), expected)
        self.assertIsNotNone(user.onboarding_completed_at)

    def test_pending_email_keeps_profile_step(self):
        self.assertEqual(
            next_step(OnboardingStep.PROFILE_SETUP, OnboardingEvent.PROFILE_SAVED_PENDING_EMAIL),
            OnboardingStep.PROFILE_SETUP,
        )
        self.assertEqual(
            next_step(OnboardingStep.PROFILE_SETUP, OnboardingEvent.EMAIL_VERIFIED),
            OnboardingStep.INTERESTS_SELECTION,
        )

    def test_phone_verification_never_regresses(self):
        self.assertEqual(
            next_step(OnboardingStep.COMPLETED, OnboardingEvent.PHONE_VERIFIED),
            OnboardingStep.COMPLETED,
        )

    def test_regression_is_refused(self):
        with self.assertRaises(StateViolation) as ctx:
            next_step(OnboardingStep.COMPLETED, OnboardingEvent.PROFILE_SAVED)
        self.assertEqual(ctx.exception.code, "ONBOARDING_REGRESSION")
        self.assertEqual(ctx.exception.kind, ErrorKind.STATE_VIOLATION)

    def test_skipping_ahead_is_refused(self):
        with self.assertRaises(StateViolation) as ctx:
            next_step(OnboardingStep.PROFILE_SETUP, OnboardingEvent.RECOMMENDATIONS_ACKNOWLEDGED)
        self.assertEqual(ctx.exception.code, "ONBOARDING_OUT_OF_ORDER")

    def test_federated_user_held_at_phone_gate(self):
        user = make_user(OnboardingStep.PROFILE_SETUP, external_id="google-1", phone_verified=False)

        self.assertEqual(effective_step(user), OnboardingStep.PHONE_VERIFICATION)
        with self.assertRaises(StateViolation):
            advance(user, OnboardingEvent.PROFILE_SAVED)

    def test_require_completed(self):
        require_completed(make_user(OnboardingStep.COMPLETED))
        with self.assertRaises(StateViolation) as ctx:
            require_completed(make_user(OnboardingStep.INTERESTS_SELECTION))
        self.assertEqual(ctx.exception.code, "ONBOARDING_INCOMPLETE")


class TestOnboardingService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.onboarding = self.h.onboarding
        self.outcome = await self.h.login()
        self.ctx = await self.h.context(self.outcome)

    async def asyncTearDown(self):
        self.h.close()

    async def test_profile_without_email_moves_to_interests(self):
        result = await self.onboarding.complete_profile(self.ctx, "  Ada Lovelace ", bio="Analyst")

        self.assertEqual(result.value.user.onboarding_step, OnboardingStep.INTERESTS_SELECTION)
        self.assertEqual(result.value.user.name, "Ada Lovelace")
        self.assertIsNone(result.value.email_verification)

    async def test_invalid_name(self):
        result = await self.onboarding.complete_profile(self.ctx, "A")
        self.assertEqual(result.error.code, "INVALID_NAME")

    async def test_profile_with_email_waits_for_verification(self):
        result = await self.onboarding.complete_profile(self.ctx, "Ada Lovelace", email="Ada@Example.com")

        self.assertEqual(result.value.user.onboarding_step, OnboardingStep.PROFILE_SETUP)
        self.assertEqual(result.value.user.email, "ada@example.com")
        self.assertFalse(result.value.user.is_email_verified)
        self.assertIsNotNone(result.value.email_verification)

        code = self.h.email.codes["ada@example.com"]
        wrong = await self.onboarding.verify_email(self.ctx, "ada@example.com", "00000000")
        self.assertEqual(wrong.error.code, "INVALID_OTP")

        verified = await self.onboarding.verify_email(self.ctx, "ada@example.com", code)
        self.assertTrue(verified.value.is_email_verified)
        self.assertEqual(verified.value.onboarding_step, OnboardingStep.INTERESTS_SELECTION)

    async def test_email_must_match_profile(self):
        await self.onboarding.complete_profile(self.ctx, "Ada Lovelace", email="ada@example.com")

        result = await self.onboarding.resend_email_code(self.ctx, "other@example.com")

        self.assertEqual(result.error.code, "EMAIL_MISMATCH")

    async def test_email_used_by_another_account(self):
        other = await self.h.login(phone="5559876543", device_id="device-z")
        other_ctx = await self.h.context(other)
        await self.onboarding.complete_profile(other_ctx, "Grace Hopper", email="taken@example.com")

        result = await self.onboarding.complete_profile(self.ctx, "Ada Lovelace", email="taken@example.com")

        self.assertEqual(result.error.kind, ErrorKind.CONFLICT)
        self.assertEqual(result.error.code, "EMAIL_IN_USE")

    async def test_interests_required(self):
        await self.onboarding.complete_profile(self.ctx, "Ada Lovelace")

        result = await self.onboarding.select_interests(self.ctx, [])

        self.assertEqual(result.error.code, "INTERESTS_REQUIRED")

    async def test_full_flow_and_no_regression(self):
        await self.onboarding.complete_profile(self.ctx, "Ada Lovelace")
        await self.onboarding.select_interests(self.ctx, ["math", "math", "poetry"])
        done = await self.onboarding.acknowledge_recommendations(self.ctx)

        self.assertEqual(done.value.onboarding_step, OnboardingStep.COMPLETED)
        selected = [e for e in self.h.broker.history if e.name == "onboarding.interests_selected"]
        self.assertEqual(selected[0].payload["interest_ids"], ["math", "poetry"])

        again = await self.onboarding.select_interests(self.ctx, ["art"])
        self.assertEqual(again.error.kind, ErrorKind.STATE_VIOLATION)
        profile = await self.onboarding.complete_profile(self.ctx, "Ada Lovelace")
        self.assertEqual(profile.error.code, "PROFILE_ALREADY_COMPLETED")
        self.assertEqual(self.h.user(self.outcome.user.id).onboarding_step, OnboardingStep.COMPLETED)

    async def test_out_of_order_leaves_state_unchanged(self):
        result = await self.onboarding.acknowledge_recommendations(self.ctx)

        self.assertEqual(result.error.code, "ONBOARDING_OUT_OF_ORDER")
        self.assertEqual(self.h.user(self.outcome.user.id).onboarding_step, OnboardingStep.PROFILE_SETUP)


if __name__ == "__main__":
    unittest.main()

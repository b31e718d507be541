import unittest

from auth.exceptions import ErrorKind
from db.models.types import ChallengeType, OnboardingStep, UserRole

from support import COUNTRY_CODE, PHONE, Harness, device


class TestPhoneLogin(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.orchestrator = self.h.orchestrator

    async def asyncTearDown(self):
        self.h.close()

    async def test_four_wrong_codes_then_correct(self):
        sent = await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        self.assertTrue(sent.ok)

        for remaining in (4, 3, 2, 1):
            result = await self.orchestrator.verify_code(PHONE, COUNTRY_CODE, "111111", device("phone-1"))
            self.assertEqual(result.error.code, "INVALID_OTP")
            self.assertEqual(result.error.details["attempts_remaining"], remaining)

        result = await self.orchestrator.verify_code(PHONE, COUNTRY_CODE, "654321", device("phone-1"))

        self.assertTrue(result.ok)
        outcome = result.value
        self.assertTrue(outcome.is_new_user)
        self.assertTrue(outcome.user.is_phone_verified)
        self.assertEqual(outcome.user.onboarding_step, OnboardingStep.PROFILE_SETUP)
        self.assertEqual(outcome.user.role, UserRole.USER)
        self.assertEqual(outcome.user.phone_number, PHONE)
        self.assertEqual(outcome.user.country_code, COUNTRY_CODE)

        [challenge] = self.h.challenges()
        self.assertEqual(challenge.attempts, 5)
        self.assertTrue(challenge.is_verified)
        self.assertIsNotNone(challenge.verified_at)

        ctx = await self.h.context(outcome)
        self.assertEqual(ctx.device_id, "phone-1")
        self.assertEqual(
            self.h.broker.names(),
            ["user.created", "onboarding.advanced", "session.issued"],
        )

    async def test_returning_user_keeps_progress(self):
        first = await self.h.login()
        ctx = await self.h.context(first)
        await self.h.onboarding.complete_profile(ctx, "Ada Lovelace")

        second = await self.h.login(device_id="device-b")

        self.assertFalse(second.is_new_user)
        self.assertEqual(second.user.id, first.user.id)
        self.assertEqual(second.user.onboarding_step, OnboardingStep.INTERESTS_SELECTION)

    async def test_country_code_without_plus(self):
        await self.orchestrator.send_code(PHONE, "1")

        result = await self.orchestrator.verify_code(PHONE, "1", "654321", device())

        self.assertEqual(result.value.user.country_code, "+1")

    async def test_invalid_phone(self):
        result = await self.orchestrator.send_code("12ab", COUNTRY_CODE)
        self.assertEqual(result.error.kind, ErrorKind.INPUT_INVALID)
        self.assertEqual(result.error.code, "INVALID_PHONE_NUMBER")

    async def test_device_id_required(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)

        result = await self.orchestrator.verify_code(PHONE, COUNTRY_CODE, "654321", device(" "))

        self.assertEqual(result.error.code, "DEVICE_ID_REQUIRED")

    async def test_deactivated_user_cannot_request_code(self):
        outcome = await self.h.login()
        self.h.update_user(outcome.user.id, is_active=False)

        result = await self.orchestrator.send_code(PHONE, COUNTRY_CODE)

        self.assertEqual(result.error.kind, ErrorKind.FORBIDDEN)
        self.assertEqual(result.error.code, "ACCOUNT_DEACTIVATED")


class TestSendRateLimits(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness(OTP_COOLDOWN_SECONDS=30)

    async def asyncTearDown(self):
        self.h.close()

    async def test_second_request_within_cooldown(self):
        first = await self.h.orchestrator.send_code(PHONE, COUNTRY_CODE)
        second = await self.h.orchestrator.send_code(PHONE, COUNTRY_CODE)

        self.assertTrue(first.ok)
        self.assertEqual(first.value.retry_after, 30)
        self.assertEqual(second.error.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(second.error.code, "OTP_TOO_SOON")
        self.assertGreater(second.error.retry_after, 0)
        self.assertEqual(len(self.h.challenges()), 1)
        self.assertEqual(self.h.sms.sent, ["+15551234567"])

    async def test_verify_attempts_limited_per_window(self):
        h = Harness(VERIFY_RATE_LIMIT=2)
        try:
            await h.orchestrator.send_code(PHONE, COUNTRY_CODE)
            for _ in range(2):
                await h.orchestrator.verify_code(PHONE, COUNTRY_CODE, "111111", device())

            result = await h.orchestrator.verify_code(PHONE, COUNTRY_CODE, "654321", device())

            self.assertEqual(result.error.code, "VERIFY_RATE_LIMIT_EXCEEDED")
            self.assertEqual(h.challenges()[0].attempts, 2)
        finally:
            h.close()


class TestFederatedLogin(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.orchestrator = self.h.orchestrator
        self.h.identity.add("token-ada", "google-ada", "ada@example.com", name="Ada")

    async def asyncTearDown(self):
        self.h.close()

    async def _verify_phone(self, pv_token, phone=PHONE):
        (await self.orchestrator.send_code(phone, COUNTRY_CODE, ChallengeType.POST_FEDERATION_PHONE_VERIFY)).unwrap()
        return await self.orchestrator.verify_federated_phone(pv_token, phone, COUNTRY_CODE, "654321", device())

    async def test_new_user_must_verify_phone(self):
        result = await self.orchestrator.federated_login(device(), id_token="token-ada")

        outcome = result.value
        self.assertTrue(outcome.is_new_user)
        self.assertTrue(outcome.requires_phone_verification)
        self.assertIsNone(outcome.tokens)
        self.assertEqual(outcome.user.email, "ada@example.com")
        self.assertTrue(outcome.user.is_email_verified)
        self.assertEqual(outcome.user.onboarding_step, OnboardingStep.PHONE_VERIFICATION)

        verified = await self._verify_phone(outcome.phone_verification_token)

        self.assertTrue(verified.ok)
        self.assertIsNotNone(verified.value.tokens)
        self.assertTrue(verified.value.user.is_phone_verified)
        self.assertEqual(verified.value.user.phone_number, PHONE)
        self.assertEqual(verified.value.user.onboarding_step, OnboardingStep.PROFILE_SETUP)

    async def test_verified_user_gets_session_directly(self):
        first = (await self.orchestrator.federated_login(device(), id_token="token-ada")).value
        await self._verify_phone(first.phone_verification_token)

        again = await self.orchestrator.federated_login(device("device-b"), authorization_code="token-ada")

        self.assertFalse(again.value.is_new_user)
        self.assertFalse(again.value.requires_phone_verification)
        self.assertIsNotNone(again.value.tokens)

    async def test_phone_verification_token_grants_no_session(self):
        outcome = (await self.orchestrator.federated_login(device(), id_token="token-ada")).value

        ctx = await self.orchestrator.current_session(outcome.phone_verification_token)
        self.assertTrue(ctx.phone_verification)

        result = await self.h.onboarding.complete_profile(ctx, "Ada Lovelace")
        self.assertEqual(result.error.kind, ErrorKind.FORBIDDEN)
        self.assertEqual(result.error.code, "PHONE_VERIFICATION_REQUIRED")

    async def test_phone_owned_by_another_user(self):
        await self.h.login()
        outcome = (await self.orchestrator.federated_login(device(), id_token="token-ada")).value

        sent = await self.orchestrator.send_code(PHONE, COUNTRY_CODE, ChallengeType.POST_FEDERATION_PHONE_VERIFY)
        self.assertEqual(sent.error.code, "PHONE_CONFLICT")

        result = await self.orchestrator.verify_federated_phone(
            outcome.phone_verification_token, PHONE, COUNTRY_CODE, "654321", device()
        )
        self.assertEqual(result.error.kind, ErrorKind.CONFLICT)

    async def test_phone_already_verified(self):
        outcome = (await self.orchestrator.federated_login(device(), id_token="token-ada")).value
        await self._verify_phone(outcome.phone_verification_token)

        result = await self.orchestrator.verify_federated_phone(
            outcome.phone_verification_token, "5550001111", COUNTRY_CODE, "654321", device()
        )

        self.assertEqual(result.error.code, "PHONE_ALREADY_VERIFIED")

    async def test_email_linked_to_another_identity(self):
        await self.orchestrator.federated_login(device(), id_token="token-ada")
        self.h.identity.add("token-impostor", "google-other", "ada@example.com")

        result = await self.orchestrator.federated_login(device(), id_token="token-impostor")

        self.assertEqual(result.error.code, "EMAIL_IN_USE")

    async def test_invalid_assertion(self):
        result = await self.orchestrator.federated_login(device(), id_token="forged")
        self.assertEqual(result.error.kind, ErrorKind.UNAUTHENTICATED)

    async def test_token_or_code_required(self):
        result = await self.orchestrator.federated_login(device())
        self.assertEqual(result.error.code, "ID_TOKEN_REQUIRED")


if __name__ == "__main__":
    unittest.main()

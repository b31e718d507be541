import asyncio
import contextlib
import unittest
from datetime import timedelta

from auth.exceptions import ErrorKind, InputInvalid
from auth.services.challenge_manager import validate_code, validate_phone
from db.models import OTPChallenge
from db.models.types import ChallengeType, utcnow
from db.repos.challenge_repo import ChallengeRepository

from support import COUNTRY_CODE, PHONE, Harness, device


class TestInputValidation(unittest.TestCase):
    def test_country_code_gets_plus_prefix(self):
        self.assertEqual(validate_phone(" 5551234567 ", "1"), ("5551234567", "+1"))

    def test_rejects_bad_phone(self):
        with self.assertRaises(InputInvalid) as ctx:
            validate_phone("555-1234", "+1")
        self.assertEqual(ctx.exception.code, "INVALID_PHONE_NUMBER")

    def test_rejects_bad_country_code(self):
        with self.assertRaises(InputInvalid) as ctx:
            validate_phone("5551234567", "+12345")
        self.assertEqual(ctx.exception.code, "INVALID_COUNTRY_CODE")

    def test_code_format(self):
        self.assertEqual(validate_code("a1B2"), "a1B2")
        for bad in ("123", "123456789", "12 34", "12-34"):
            with self.assertRaises(InputInvalid):
                validate_code(bad)


class TestChallengeLifecycle(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.orchestrator = self.h.orchestrator

    async def asyncTearDown(self):
        self.h.close()

    async def _verify(self, code, device_id="device-a"):
        return await self.orchestrator.verify_code(PHONE, COUNTRY_CODE, code, device(device_id))

    async def test_send_persists_challenge(self):
        result = await self.orchestrator.send_code(PHONE, COUNTRY_CODE)

        self.assertTrue(result.ok)
        [challenge] = self.h.challenges()
        self.assertEqual(challenge.id, result.value.challenge_id)
        self.assertEqual(challenge.attempts, 0)
        self.assertEqual(challenge.max_attempts, 5)
        self.assertEqual(challenge.provider_ref, "verify-1")
        self.assertFalse(challenge.is_verified)
        self.assertGreater(challenge.expires_at, utcnow() + timedelta(minutes=9))

    async def test_provider_failure_persists_nothing(self):
        self.h.sms.unavailable = True

        result = await self.orchestrator.send_code(PHONE, COUNTRY_CODE)

        self.assertEqual(result.error.kind, ErrorKind.PROVIDER_UNAVAILABLE)
        self.assertEqual(self.h.challenges(), [])

    async def test_no_active_challenge(self):
        result = await self._verify("654321")
        self.assertEqual(result.error.kind, ErrorKind.CHALLENGE_INVALID)
        self.assertEqual(result.error.code, "NO_ACTIVE_CHALLENGE")

    async def test_wrong_code_counts_attempt(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)

        result = await self._verify("000000")

        self.assertEqual(result.error.code, "INVALID_OTP")
        self.assertEqual(result.error.details["attempts_remaining"], 4)
        [challenge] = self.h.challenges()
        self.assertEqual(challenge.attempts, 1)
        self.assertEqual(challenge.provider_status, "INVALID_OTP")
        self.assertEqual(challenge.provider_metadata["last_verify_attempt"]["attempt"], 1)

    async def test_expired_challenge(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        with self.h.inspect_session() as db:
            challenge = db.query(OTPChallenge).one()
            challenge.expires_at = utcnow() - timedelta(seconds=1)
            db.commit()

        result = await self._verify("654321")

        self.assertEqual(result.error.code, "OTP_EXPIRED")
        self.assertEqual(self.h.challenges()[0].attempts, 0)

    async def test_correct_code_after_max_attempts_fails(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        for _ in range(5):
            await self._verify("000000")

        result = await self._verify("654321")

        self.assertEqual(result.error.code, "OTP_ATTEMPTS_EXCEEDED")
        [challenge] = self.h.challenges()
        self.assertEqual(challenge.attempts, 5)
        self.assertFalse(challenge.is_verified)

    async def test_provider_outage_during_verify_still_counts_attempt(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        self.h.sms.unavailable = True

        result = await self._verify("654321")

        self.assertEqual(result.error.kind, ErrorKind.PROVIDER_UNAVAILABLE)
        [challenge] = self.h.challenges()
        self.assertEqual(challenge.attempts, 1)
        self.assertEqual(challenge.provider_status, "PROVIDER_ERROR")

    async def test_challenge_redeemed_once(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        first = await self._verify("654321")
        second = await self._verify("654321")

        self.assertTrue(first.ok)
        self.assertEqual(second.error.code, "NO_ACTIVE_CHALLENGE")

    async def test_concurrent_redemptions_succeed_once(self):
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        # Both redeemers reach the provider call before either finishes
        self.h.sms.delay = 0.05

        results = await asyncio.gather(self._verify("654321", "device-a"), self._verify("654321", "device-b"))

        succeeded = [r for r in results if r.ok]
        failed = [r for r in results if not r.ok]
        self.assertEqual(len(succeeded), 1)
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].error.kind, ErrorKind.CHALLENGE_INVALID)
        self.assertTrue(self.h.challenges()[0].is_verified)

    async def test_attempt_recharged_when_later_step_fails(self):
        outcome = await self.h.login()
        await self.orchestrator.send_code(PHONE, COUNTRY_CODE)
        self.h.update_user(outcome.user.id, is_suspended=True)

        result = await self._verify("654321")

        self.assertEqual(result.error.code, "ACCOUNT_SUSPENDED")
        latest = self.h.challenges()[-1]
        self.assertFalse(latest.is_verified)
        self.assertEqual(latest.attempts, 1)


class TestVerifiedFlag(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()

    async def asyncTearDown(self):
        self.h.close()

    async def test_compare_and_set(self):
        await self.h.orchestrator.send_code(PHONE, COUNTRY_CODE)

        async with self.h.session_factory() as stale:
            a = await ChallengeRepository(stale).latest_for_phone(PHONE, COUNTRY_CODE, ChallengeType.PHONE_AUTH)
            await stale.commit()

            async with self.h.session_factory() as winner:
                b = await ChallengeRepository(winner).latest_for_phone(PHONE, COUNTRY_CODE, ChallengeType.PHONE_AUTH)
                self.assertTrue(await ChallengeRepository(winner).mark_verified(b, utcnow(), "VERIFIED"))
                await winner.commit()

            self.assertFalse(await ChallengeRepository(stale).mark_verified(a, utcnow(), "VERIFIED"))
            await stale.rollback()


class TestRedemptionLocking(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        (await self.h.orchestrator.send_code(PHONE, COUNTRY_CODE)).unwrap()

    async def asyncTearDown(self):
        self.h.close()

    async def test_second_redeemer_waits_without_blocking_the_loop(self):
        self.h.sms.delay = 0.3
        ticks = 0

        async def tick():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.01)

        ticker = asyncio.create_task(tick())
        first = asyncio.create_task(
            self.h.orchestrator.verify_code(PHONE, COUNTRY_CODE, "654321", device("device-a"))
        )
        try:
            # The first redeemer holds the challenge while the provider answers
            await self.h.sms.validation_started.wait()
            before = ticks
            second = await self.h.orchestrator.verify_code(PHONE, COUNTRY_CODE, "654321", device("device-b"))
            waited_ticks = ticks - before
            first_result = await first
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

        self.assertTrue(first_result.ok)
        self.assertEqual(second.error.code, "NO_ACTIVE_CHALLENGE")
        self.assertGreaterEqual(waited_ticks, 5)
        self.assertEqual(self.h.sms.checked, ["verify-1"])
        [challenge] = self.h.challenges()
        self.assertTrue(challenge.is_verified)
        self.assertEqual(challenge.attempts, 1)


if __name__ == "__main__":
    unittest.main()

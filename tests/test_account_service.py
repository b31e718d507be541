import unittest
from datetime import timedelta

from auth.exceptions import ErrorKind
from auth.services.session_issuer import SessionContext
from db.models.types import OnboardingStep, UserRole, utcnow

from support import COUNTRY_CODE, PHONE, Harness


def staff_context(role=UserRole.ADMIN) -> SessionContext:
    return SessionContext(
        user_id="staff-1",
        device_id="console",
        role=role,
        is_active=True,
        onboarding_step=OnboardingStep.COMPLETED,
    )


class TestGatedBeforeCompletion(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.ctx = await self.h.context(await self.h.login())

    async def asyncTearDown(self):
        self.h.close()

    async def test_contact_changes_require_completed_onboarding(self):
        email = await self.h.accounts.request_email_update(self.ctx, "new@example.com")
        phone = await self.h.accounts.request_phone_update(self.ctx, "5550001111", COUNTRY_CODE)
        deletion = await self.h.accounts.schedule_deletion(self.ctx, "bye")

        for result in (email, phone, deletion):
            self.assertEqual(result.error.kind, ErrorKind.STATE_VIOLATION)
            self.assertEqual(result.error.code, "ONBOARDING_INCOMPLETE")
        self.assertEqual(self.h.email.codes, {})


class TestAccountService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness()
        self.accounts = self.h.accounts
        self.outcome, self.ctx = await self.h.onboard()
        self.user_id = self.outcome.user.id

    async def asyncTearDown(self):
        self.h.close()

    async def test_email_update(self):
        receipt = await self.accounts.request_email_update(self.ctx, "New@Example.com")
        self.assertTrue(receipt.ok)
        self.assertEqual(self.h.user(self.user_id).pending_email, "new@example.com")

        code = self.h.email.codes["new@example.com"]
        result = await self.accounts.verify_email_update(self.ctx, code)

        self.assertEqual(result.value.email, "new@example.com")
        self.assertTrue(result.value.is_email_verified)
        self.assertIsNone(result.value.pending_email)
        self.assertIn("account.email_updated", self.h.broker.names())

    async def test_email_update_same_as_current(self):
        await self.accounts.request_email_update(self.ctx, "ada@example.com")
        await self.accounts.verify_email_update(self.ctx, self.h.email.codes["ada@example.com"])

        result = await self.accounts.request_email_update(self.ctx, "ada@example.com")

        self.assertEqual(result.error.code, "EMAIL_SAME_AS_CURRENT")

    async def test_verify_without_pending_email(self):
        result = await self.accounts.verify_email_update(self.ctx, "123456")
        self.assertEqual(result.error.code, "NO_PENDING_EMAIL")

    async def test_phone_update(self):
        receipt = await self.accounts.request_phone_update(self.ctx, "5550001111", COUNTRY_CODE)
        self.assertTrue(receipt.ok)
        self.assertEqual(self.h.sms.sent[-1], "+15550001111")

        result = await self.accounts.verify_phone_update(self.ctx, self.h.sms.accepted_code)

        self.assertEqual(result.value.phone_number, "5550001111")
        self.assertIsNone(result.value.pending_phone_number)
        self.assertTrue(result.value.is_phone_verified)

    async def test_phone_update_refuses_taken_or_current_number(self):
        await self.h.login(phone="5559876543", device_id="device-z")

        taken = await self.accounts.request_phone_update(self.ctx, "5559876543", COUNTRY_CODE)
        current = await self.accounts.request_phone_update(self.ctx, PHONE, COUNTRY_CODE)

        self.assertEqual(taken.error.code, "PHONE_IN_USE")
        self.assertEqual(current.error.code, "PHONE_ALREADY_VERIFIED")

    async def test_wrong_code_keeps_pending_phone(self):
        await self.accounts.request_phone_update(self.ctx, "5550001111", COUNTRY_CODE)

        result = await self.accounts.verify_phone_update(self.ctx, "000000")

        self.assertEqual(result.error.code, "INVALID_OTP")
        user = self.h.user(self.user_id)
        self.assertEqual(user.phone_number, PHONE)
        self.assertEqual(user.pending_phone_number, "5550001111")

    async def test_list_sessions(self):
        await self.h.login(device_id="device-b")

        sessions = (await self.accounts.list_sessions(self.ctx)).value

        self.assertEqual(len(sessions), 2)
        current = [s for s in sessions if s.is_current_session]
        self.assertEqual([s.device_id for s in current], ["device-a"])
        self.assertEqual(current[0].device_name, "iPhone/iPad")

    async def test_push_token(self):
        enabled = await self.accounts.update_push_token(self.ctx, "push-abc")
        disabled = await self.accounts.update_push_token(self.ctx, None)

        self.assertTrue(enabled.value)
        self.assertFalse(disabled.value)

    async def test_schedule_deletion(self):
        other_device = await self.h.login(device_id="device-b")

        result = await self.accounts.schedule_deletion(self.ctx, "  Moving on  ")

        schedule = result.value
        self.assertEqual(schedule.sessions_revoked, 2)
        self.assertAlmostEqual(
            (schedule.scheduled_for - utcnow()).total_seconds(),
            timedelta(days=30).total_seconds(),
            delta=60,
        )
        user = self.h.user(self.user_id)
        self.assertFalse(user.is_active)
        self.assertEqual(user.deletion_reason, "Moving on")
        self.assertIsNone(await self.h.orchestrator.current_session(self.outcome.tokens.access_token))
        self.assertIsNone(await self.h.orchestrator.current_session(other_device.tokens.access_token))
        self.assertIn("account.deletion_scheduled", self.h.broker.names())

        blocked = await self.h.orchestrator.send_code(PHONE, COUNTRY_CODE)
        self.assertEqual(blocked.error.code, "ACCOUNT_SCHEDULED_FOR_DELETION")

    async def test_deletion_reason_too_long(self):
        result = await self.accounts.schedule_deletion(self.ctx, "x" * 301)
        self.assertEqual(result.error.code, "INVALID_REASON_LENGTH")

    async def test_cancel_deletion(self):
        await self.accounts.schedule_deletion(self.ctx, None)

        refused = await self.accounts.cancel_deletion(self.ctx, self.user_id)
        restored = await self.accounts.cancel_deletion(staff_context(UserRole.MODERATOR), self.user_id)

        self.assertEqual(refused.error.kind, ErrorKind.FORBIDDEN)
        self.assertTrue(restored.value.is_active)
        self.assertIsNone(restored.value.deleted_at)
        # Revoked sessions stay revoked
        self.assertIsNone(await self.h.orchestrator.current_session(self.outcome.tokens.access_token))
        self.assertIsNotNone(await self.h.login(device_id="device-c"))

    async def test_cancel_after_grace_period(self):
        await self.accounts.schedule_deletion(self.ctx, None)
        self.h.update_user(self.user_id, deleted_at=utcnow() - timedelta(minutes=1))

        result = await self.accounts.cancel_deletion(staff_context(), self.user_id)

        self.assertEqual(result.error.code, "DELETION_FINAL")

    async def test_cancel_when_not_scheduled(self):
        result = await self.accounts.cancel_deletion(staff_context(), self.user_id)
        self.assertEqual(result.error.code, "NOT_SCHEDULED")


if __name__ == "__main__":
    unittest.main()

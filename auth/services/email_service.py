"""Email delivery service."""

from __future__ import annotations

import asyncio
import logging

import resend

from auth.config import AuthSettings, get_settings
from auth.security import mask_email

logger = logging.getLogger(__name__)


class EmailService:
    """Sends verification codes through Resend, or logs them with the console provider."""

    def __init__(self, settings: AuthSettings | None = None) -> None:
        self._settings = settings or get_settings()

    def _params(self, email: str, otp: str) -> dict:
        settings = self._settings
        minutes = settings.OTP_EXPIRY_MINUTES
        return {
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>",
            "to": [email],
            "subject": "Your verification code",
            "html": (
                f"<p>Your verification code is <strong>{otp}</strong>.</p>"
                f"<p>It expires in {minutes} minutes. If you did not request it, ignore this email.</p>"
            ),
            "text": f"Your verification code is {otp}. It expires in {minutes} minutes.",
        }

    async def send_otp_email(self, email: str, otp: str) -> bool:
        settings = self._settings
        if settings.EMAIL_PROVIDER == "console":
            logger.info("Email code issued", extra={"to": mask_email(email)})
            return True
        if not settings.RESEND_API_KEY:
            logger.error("RESEND_API_KEY is required when using Resend provider")
            return False

        resend.api_key = settings.RESEND_API_KEY
        try:
            response = await asyncio.to_thread(resend.Emails.send, self._params(email, otp))
        except Exception as exc:
            logger.error("Email delivery failed", extra={"to": mask_email(email), "error": str(exc)})
            return False

        email_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("Email sent", extra={"to": mask_email(email), "email_id": email_id})
        return True

"""Kaleyra verify API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from auth.config import AuthSettings, get_settings
from auth.exceptions import ProviderRejected, ProviderUnavailable
from auth.interfaces.providers import Origination, Validation
from auth.retry import ConnectFailure, RetryPolicy
from auth.security import mask_phone

logger = logging.getLogger(__name__)

VERIFIED_MESSAGE = "OTP verified successfully."

# Provider error codes that mean "wrong code" rather than a failed call
REJECTION_CODES = {
    "E910": "OTP_ALREADY_VERIFIED",
    "E911": "MAX_ATTEMPTS_EXCEEDED",
    "E912": "INVALID_OTP",
    "E913": "OTP_EXPIRED",
}

ERROR_CODES = {
    "E600": ("RECIPIENT_REQUIRED", "Recipient information is required"),
    "E802": ("INVALID_EMAIL", "Please provide a valid email address"),
    "E803": ("INVALID_OTP_FORMAT", "OTP must contain only alphanumeric characters"),
    "E804": ("MOBILE_NUMBER_REQUIRED", "Mobile number is required"),
    "E805": ("INVALID_MOBILE_NUMBER", "Please provide a valid mobile number"),
    "E903": ("OTP_LENGTH_MISMATCH", "OTP length does not match the configured length"),
    "E905": ("INVALID_FLOW_ID", "Invalid or unapproved flow configuration"),
    "E909": ("VERIFICATION_SESSION_NOT_FOUND", "Verification session not found"),
}


class KaleyraVerifyProvider:
    """SMS one-time codes sent and checked by Kaleyra."""

    def __init__(
        self,
        settings: AuthSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self._settings.KALEYRA_SID or not self._settings.KALEYRA_API_KEY:
            raise ProviderUnavailable("SMS provider not configured", code="OTP_SERVICE_UNAVAILABLE")
        return httpx.AsyncClient(
            base_url=f"{self._settings.KALEYRA_BASE_URL.rstrip('/')}/{self._settings.KALEYRA_SID}",
            headers={"Content-Type": "application/json", "api-key": self._settings.KALEYRA_API_KEY},
            timeout=self._settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _post_once(self, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.post(path, json=body)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ConnectFailure(str(exc)) from exc

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._retry.call(self._post_once, path, body)
        except ConnectFailure as exc:
            raise ProviderUnavailable("SMS service is currently unavailable", code="OTP_SERVICE_UNAVAILABLE") from exc
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable("SMS service request timed out", code="OTP_SERVICE_TIMEOUT") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable("SMS service is currently unavailable", code="OTP_SERVICE_UNAVAILABLE") from exc

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            return (response.json().get("error") or {}).get("code")
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 401:
            logger.error("Kaleyra rejected credentials")
            raise ProviderUnavailable("SMS service authentication failed", code="OTP_AUTH_FAILED")
        if status == 429:
            raise ProviderUnavailable("SMS service is throttling requests", code="OTP_PROVIDER_RATE_LIMITED")
        if status >= 500:
            raise ProviderUnavailable("SMS service error", code="OTP_SERVICE_UNAVAILABLE")
        if status >= 400:
            error_code = self._error_code(response)
            code, message = ERROR_CODES.get(error_code, ("KALEYRA_ERROR", "SMS service rejected the request"))
            raise ProviderRejected(message, code=code, status_code=error_code)

    async def originate(self, phone_number: str, country_code: str) -> Origination:
        body = {
            "flow_id": self._settings.KALEYRA_FLOW_ID,
            "to": {"mobile": f"{country_code}{phone_number}"},
        }
        response = await self._post("/verify", body)
        self._raise_for_status(response)

        data = response.json().get("data") or {}
        verify_id = data.get("verify_id")
        if not verify_id:
            logger.error("Kaleyra response missing verify_id", extra={"to": mask_phone(country_code, phone_number)})
            raise ProviderUnavailable("Invalid response from OTP service", code="OTP_SERVICE_ERROR")

        logger.info("OTP sent", extra={"to": mask_phone(country_code, phone_number), "verify_id": verify_id})
        return Origination(provider_ref=verify_id, status="SENT", raw=data)

    async def validate(self, provider_ref: str, code: str) -> Validation:
        response = await self._post("/verify/validate", {"verify_id": provider_ref, "otp": code})

        if 400 <= response.status_code < 500 and response.status_code not in (401, 429):
            error_code = self._error_code(response)
            if error_code in REJECTION_CODES:
                return Validation(valid=False, status_code=REJECTION_CODES[error_code], message=error_code)
            if response.status_code == 404 or error_code == "E909":
                return Validation(valid=False, status_code="VERIFICATION_SESSION_NOT_FOUND", message=error_code)
        self._raise_for_status(response)

        data = response.json().get("data") or {}
        message = data.get("message")
        valid = message == VERIFIED_MESSAGE
        logger.info("OTP validation result", extra={"verify_id": provider_ref, "valid": valid})
        return Validation(valid=valid, status_code="VERIFIED" if valid else "REJECTED", message=message, raw=data)

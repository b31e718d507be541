"""Google identity provider."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from auth.config import AuthSettings, get_settings
from auth.exceptions import InputInvalid, ProviderUnavailable, Unauthenticated
from auth.interfaces.providers import FederatedIdentity
from auth.retry import ConnectFailure, RetryPolicy

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
JWKS_TTL_SECONDS = 3600


class GoogleIdentityProvider:
    def __init__(
        self,
        settings: AuthSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings)
        self._transport = transport
        self._jwks: list[dict[str, Any]] = []
        self._jwks_fetched_at = 0.0

    def generate_auth_url(self) -> dict[str, str]:
        if not self._settings.GOOGLE_CLIENT_ID or not self._settings.GOOGLE_REDIRECT_URI:
            raise ProviderUnavailable("Google OAuth not configured", code="OAUTH_NOT_CONFIGURED")

        state = secrets.token_urlsafe(24)
        query = urlencode(
            {
                "client_id": self._settings.GOOGLE_CLIENT_ID,
                "redirect_uri": self._settings.GOOGLE_REDIRECT_URI,
                "response_type": "code",
                "scope": "openid email profile",
                "state": state,
                "prompt": "select_account",
            }
        )
        return {"auth_url": f"{GOOGLE_AUTH_URL}?{query}", "state": state}

    async def _request_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.PROVIDER_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                return await client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ConnectFailure(str(exc)) from exc

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._retry.call(self._request_once, method, url, **kwargs)
        except (ConnectFailure, httpx.HTTPError) as exc:
            raise ProviderUnavailable("Identity provider unavailable", code="IDENTITY_PROVIDER_UNAVAILABLE") from exc

    async def _signing_keys(self, force: bool = False) -> list[dict[str, Any]]:
        if self._jwks and not force and time.monotonic() - self._jwks_fetched_at < JWKS_TTL_SECONDS:
            return self._jwks
        response = await self._request("GET", GOOGLE_CERTS_URL)
        if response.status_code != 200:
            raise ProviderUnavailable("Failed to fetch Google signing keys", code="IDENTITY_PROVIDER_UNAVAILABLE")
        self._jwks = response.json().get("keys", [])
        self._jwks_fetched_at = time.monotonic()
        return self._jwks

    async def _key_for(self, kid: str | None) -> dict[str, Any]:
        for force in (False, True):
            for key in await self._signing_keys(force=force):
                if key.get("kid") == kid:
                    return key
        raise Unauthenticated("Unknown Google signing key", code="INVALID_ID_TOKEN")

    async def verify_assertion(self, id_token: str, expected_audience: str | None = None) -> FederatedIdentity:
        audience = expected_audience or self._settings.GOOGLE_CLIENT_ID
        if not audience:
            raise ProviderUnavailable("Google OAuth not configured", code="OAUTH_NOT_CONFIGURED")

        try:
            header = jwt.get_unverified_header(id_token)
        except JWTError as exc:
            raise Unauthenticated("Malformed Google ID token", code="INVALID_ID_TOKEN") from exc

        key = await self._key_for(header.get("kid"))
        try:
            claims = jwt.decode(
                id_token,
                key,
                algorithms=[header.get("alg", "RS256")],
                audience=audience,
                issuer=GOOGLE_ISSUERS,
                options={"verify_at_hash": False},
            )
        except JWTError as exc:
            logger.info("Google ID token rejected", extra={"error": str(exc)})
            raise Unauthenticated("Invalid Google ID token", code="INVALID_ID_TOKEN") from exc

        if not claims.get("email"):
            raise InputInvalid("Google account missing email", code="GOOGLE_EMAIL_MISSING")

        return FederatedIdentity(
            subject_id=claims["sub"],
            email=claims["email"].lower(),
            email_verified=bool(claims.get("email_verified")),
            name=claims.get("name"),
            picture=claims.get("picture"),
        )

    async def exchange_code(self, code: str) -> str:
        settings = self._settings
        if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET or not settings.GOOGLE_REDIRECT_URI:
            raise ProviderUnavailable("Google OAuth not configured", code="OAUTH_NOT_CONFIGURED")

        token_payload = {
            "code": code,
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "redirect_uri": settings.GOOGLE_REDIRECT_URI,
            "grant_type": "authorization_code",
        }
        response = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data=token_payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code != 200:
            raise InputInvalid("Failed to exchange Google code", code="OAUTH_CODE_INVALID")
        id_token = response.json().get("id_token")
        if not id_token:
            raise InputInvalid("Google token response missing ID token", code="OAUTH_CODE_INVALID")
        return id_token

"""Auth dependency helpers."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.container import AuthContainer
from auth.services.account_service import AccountService
from auth.services.auth_service import AuthOrchestrator
from auth.services.challenge_manager import ClientMeta
from auth.services.onboarding_service import OnboardingService
from auth.services.session_issuer import DeviceInfo, SessionContext
from auth.schemas import DevicePayload
from db.models.types import UserRole

bearer_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> AuthContainer:
    return request.app.state.auth


def get_orchestrator(container: AuthContainer = Depends(get_container)) -> AuthOrchestrator:
    return container.orchestrator


def get_onboarding_service(container: AuthContainer = Depends(get_container)) -> OnboardingService:
    return container.onboarding


def get_account_service(container: AuthContainer = Depends(get_container)) -> AccountService:
    return container.accounts


def client_meta(
    request: Request,
    user_agent: str | None = Header(default=None),
    forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
) -> ClientMeta:
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientMeta(ip_address=ip_address, user_agent=user_agent)


def to_device(payload: DevicePayload) -> DeviceInfo:
    return DeviceInfo(
        device_id=payload.device_id,
        device_type=payload.device_type,
        device_name=payload.device_name,
        app_version=payload.app_version,
        os_version=payload.os_version,
        push_token=payload.push_token,
    )


def bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str | None:
    return credentials.credentials if credentials else None


async def current_session(
    token: str | None = Depends(bearer_token),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SessionContext | None:
    """Resolve the caller; None when no valid credential was presented."""
    if not token:
        return None
    return await orchestrator.current_session(token)


async def require_session(ctx: SessionContext | None = Depends(current_session)) -> SessionContext:
    if ctx is None or ctx.phone_verification:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


def require_phone_verification_token(token: str | None = Depends(bearer_token)) -> str:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Phone verification token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def require_role(*roles: UserRole):
    """Dependency factory restricting a route to the given roles."""

    async def dependency(ctx: SessionContext = Depends(require_session)) -> SessionContext:
        if ctx.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return ctx

    return dependency

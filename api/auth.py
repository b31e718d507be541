"""Auth API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from api.errors import AppException, unwrap
from auth.container import AuthContainer
from auth.dependencies import (
    client_meta,
    get_container,
    get_onboarding_service,
    get_orchestrator,
    require_phone_verification_token,
    require_session,
    to_device,
)
from auth.exceptions import AuthException
from auth.schemas import (
    ApiResponse,
    EmailCodeRequest,
    EmailVerifyRequest,
    FederatedLoginRequest,
    FederatedPhoneRequest,
    InterestsRequest,
    LogoutRequest,
    ProfileSetupRequest,
    RefreshRequest,
    SendCodeRequest,
    TokensOut,
    UserOut,
    VerifyCodeRequest,
)
from auth.services.auth_service import AuthOrchestrator, AuthOutcome
from auth.services.challenge_manager import ChallengeReceipt, ClientMeta
from auth.services.onboarding_service import OnboardingService
from auth.services.session_issuer import SessionContext

router = APIRouter()


def _receipt_data(receipt: ChallengeReceipt) -> dict:
    return {"retry_after": receipt.retry_after, "expires_at": receipt.expires_at.isoformat()}


def _outcome_data(outcome: AuthOutcome) -> dict:
    data = {
        "user": UserOut.model_validate(outcome.user).model_dump(mode="json"),
        "is_new_user": outcome.is_new_user,
        "requires_phone_verification": outcome.requires_phone_verification,
    }
    if outcome.tokens:
        data["tokens"] = TokensOut.model_validate(outcome.tokens).model_dump(mode="json")
    if outcome.phone_verification_token:
        data["phone_verification_token"] = outcome.phone_verification_token
        data["phone_verification_expires_at"] = outcome.phone_verification_expires_at.isoformat()
    return data


@router.post("/otp/send", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def send_code(
    payload: SendCodeRequest,
    meta: ClientMeta = Depends(client_meta),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    receipt = unwrap(
        await orchestrator.send_code(payload.phone_number, payload.country_code, payload.challenge_type, meta)
    )
    return ApiResponse(success=True, message="OTP sent successfully", data=_receipt_data(receipt))


@router.post("/otp/verify", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def verify_code(
    payload: VerifyCodeRequest,
    meta: ClientMeta = Depends(client_meta),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    outcome = unwrap(
        await orchestrator.verify_code(
            payload.phone_number, payload.country_code, payload.otp, to_device(payload.device), meta
        )
    )
    return ApiResponse(success=True, message="Login successful", data=_outcome_data(outcome))


@router.get("/google/url", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def google_auth_url(container: AuthContainer = Depends(get_container)) -> ApiResponse:
    try:
        data = container.identity_provider.generate_auth_url()
    except AuthException as exc:
        raise AppException.from_error(exc.to_error()) from exc
    return ApiResponse(success=True, message="Google authorization URL", data=data)


@router.post("/google", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def google_login(
    payload: FederatedLoginRequest,
    meta: ClientMeta = Depends(client_meta),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    outcome = unwrap(
        await orchestrator.federated_login(
            to_device(payload.device), id_token=payload.id_token, authorization_code=payload.code, meta=meta
        )
    )
    message = "Phone verification required" if outcome.requires_phone_verification else "Login successful"
    return ApiResponse(success=True, message=message, data=_outcome_data(outcome))


@router.post("/google/verify-phone", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def google_verify_phone(
    payload: FederatedPhoneRequest,
    token: str = Depends(require_phone_verification_token),
    meta: ClientMeta = Depends(client_meta),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    outcome = unwrap(
        await orchestrator.verify_federated_phone(
            token, payload.phone_number, payload.country_code, payload.otp, to_device(payload.device), meta
        )
    )
    return ApiResponse(success=True, message="Phone verified", data=_outcome_data(outcome))


@router.post("/refresh", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def refresh(
    payload: RefreshRequest,
    meta: ClientMeta = Depends(client_meta),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    tokens = unwrap(await orchestrator.refresh(payload.refresh_token, meta))
    return ApiResponse(
        success=True,
        message="Token refreshed",
        data={"tokens": TokensOut.model_validate(tokens).model_dump(mode="json")},
    )


@router.post("/logout", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def logout(
    payload: LogoutRequest,
    ctx: SessionContext = Depends(require_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    count = unwrap(await orchestrator.logout(ctx, payload.device_id, payload.all_devices))
    return ApiResponse(success=True, message="Logged out successfully", data={"sessions_revoked": count})


@router.get("/me", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def me(
    ctx: SessionContext = Depends(require_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> ApiResponse:
    user = unwrap(await orchestrator.user_summary(ctx.user_id))
    return ApiResponse(
        success=True,
        message="User retrieved",
        data={"user": UserOut.model_validate(user).model_dump(mode="json")},
    )


@router.post("/onboarding/profile", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def complete_profile(
    payload: ProfileSetupRequest,
    ctx: SessionContext = Depends(require_session),
    meta: ClientMeta = Depends(client_meta),
    onboarding: OnboardingService = Depends(get_onboarding_service),
) -> ApiResponse:
    outcome = unwrap(
        await onboarding.complete_profile(
            ctx, payload.name, payload.bio, payload.email, payload.profile_image_url, meta
        )
    )
    data = {"user": UserOut.model_validate(outcome.user).model_dump(mode="json")}
    if outcome.email_verification:
        data["email_verification"] = _receipt_data(outcome.email_verification)
    return ApiResponse(success=True, message="Profile saved", data=data)


@router.post("/onboarding/email/resend", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def resend_email_code(
    payload: EmailCodeRequest,
    ctx: SessionContext = Depends(require_session),
    meta: ClientMeta = Depends(client_meta),
    onboarding: OnboardingService = Depends(get_onboarding_service),
) -> ApiResponse:
    receipt = unwrap(await onboarding.resend_email_code(ctx, payload.email, meta))
    return ApiResponse(success=True, message="OTP sent to your email", data=_receipt_data(receipt))


@router.post("/onboarding/email/verify", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def verify_email(
    payload: EmailVerifyRequest,
    ctx: SessionContext = Depends(require_session),
    onboarding: OnboardingService = Depends(get_onboarding_service),
) -> ApiResponse:
    user = unwrap(await onboarding.verify_email(ctx, payload.email, payload.otp))
    return ApiResponse(
        success=True,
        message="Email verified",
        data={"user": UserOut.model_validate(user).model_dump(mode="json")},
    )


@router.post("/onboarding/interests", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def select_interests(
    payload: InterestsRequest,
    ctx: SessionContext = Depends(require_session),
    onboarding: OnboardingService = Depends(get_onboarding_service),
) -> ApiResponse:
    user = unwrap(await onboarding.select_interests(ctx, payload.interest_ids))
    return ApiResponse(
        success=True,
        message="Interests saved",
        data={"user": UserOut.model_validate(user).model_dump(mode="json")},
    )


@router.post("/onboarding/complete", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def acknowledge_recommendations(
    ctx: SessionContext = Depends(require_session),
    onboarding: OnboardingService = Depends(get_onboarding_service),
) -> ApiResponse:
    user = unwrap(await onboarding.acknowledge_recommendations(ctx))
    return ApiResponse(
        success=True,
        message="Onboarding completed",
        data={"user": UserOut.model_validate(user).model_dump(mode="json")},
    )

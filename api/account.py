"""Account settings routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from api.errors import unwrap
from auth.dependencies import client_meta, get_account_service, require_role, require_session
from auth.schemas import (
    ApiResponse,
    CodeRequest,
    DeleteAccountRequest,
    EmailUpdateRequest,
    PhoneUpdateRequest,
    PushTokenRequest,
    SessionOut,
    UserOut,
)
from auth.services.account_service import AccountService
from auth.services.challenge_manager import ClientMeta
from auth.services.session_issuer import SessionContext
from db.models.types import UserRole

router = APIRouter()


def _user_data(user) -> dict:
    return {"user": UserOut.model_validate(user).model_dump(mode="json")}


@router.get("/sessions", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def list_sessions(
    ctx: SessionContext = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    sessions = unwrap(await accounts.list_sessions(ctx))
    return ApiResponse(
        success=True,
        message="Active sessions",
        data={
            "sessions": [SessionOut.model_validate(s).model_dump(mode="json") for s in sessions],
            "total_count": len(sessions),
        },
    )


@router.post("/email", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def request_email_update(
    payload: EmailUpdateRequest,
    ctx: SessionContext = Depends(require_session),
    meta: ClientMeta = Depends(client_meta),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    receipt = unwrap(await accounts.request_email_update(ctx, payload.email, meta))
    return ApiResponse(
        success=True,
        message="OTP sent to your email. Verify it to update your email address.",
        data={"retry_after": receipt.retry_after},
    )


@router.post("/email/verify", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def verify_email_update(
    payload: CodeRequest,
    ctx: SessionContext = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    user = unwrap(await accounts.verify_email_update(ctx, payload.otp))
    return ApiResponse(success=True, message="Email updated successfully", data=_user_data(user))


@router.post("/phone", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def request_phone_update(
    payload: PhoneUpdateRequest,
    ctx: SessionContext = Depends(require_session),
    meta: ClientMeta = Depends(client_meta),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    receipt = unwrap(await accounts.request_phone_update(ctx, payload.phone_number, payload.country_code, meta))
    return ApiResponse(
        success=True,
        message="OTP sent to your phone. Verify it to update your phone number.",
        data={"retry_after": receipt.retry_after},
    )


@router.post("/phone/verify", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def verify_phone_update(
    payload: CodeRequest,
    ctx: SessionContext = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    user = unwrap(await accounts.verify_phone_update(ctx, payload.otp))
    return ApiResponse(success=True, message="Phone number updated successfully", data=_user_data(user))


@router.put("/push-token", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def update_push_token(
    payload: PushTokenRequest,
    ctx: SessionContext = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    enabled = unwrap(await accounts.update_push_token(ctx, payload.push_token))
    return ApiResponse(success=True, message="Settings updated", data={"push_enabled": enabled})


@router.post("/delete", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def delete_account(
    payload: DeleteAccountRequest,
    ctx: SessionContext = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    schedule = unwrap(await accounts.schedule_deletion(ctx, payload.reason))
    return ApiResponse(
        success=True,
        message="Account scheduled for deletion",
        data={"scheduled_deletion_date": schedule.scheduled_for.isoformat()},
    )


@router.post("/{user_id}/restore", response_model=ApiResponse, status_code=status.HTTP_200_OK)
async def restore_account(
    user_id: str,
    ctx: SessionContext = Depends(require_role(UserRole.ADMIN, UserRole.MODERATOR)),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse:
    user = unwrap(await accounts.cancel_deletion(ctx, user_id))
    return ApiResponse(success=True, message="Account restored", data=_user_data(user))

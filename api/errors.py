"""Exception handlers and error mapping for the HTTP layer."""

import logging
from typing import TypeVar

from fastapi import Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse

from auth.exceptions import AuthError, ErrorKind, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_BY_KIND = {
    ErrorKind.INPUT_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.PROVIDER_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CHALLENGE_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STATE_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppException(Exception):
    """Application exception with message, status code, and optional data."""

    def __init__(self, message: str, status_code: int = 400, data: dict | None = None, headers: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.data = data or {}
        self.headers = headers
        super().__init__(self.message)

    @classmethod
    def from_error(cls, error: AuthError) -> "AppException":
        headers = None
        if error.kind is ErrorKind.RATE_LIMITED and error.retry_after:
            headers = {"Retry-After": str(error.retry_after)}
        return cls(
            error.message,
            status_code=STATUS_BY_KIND[error.kind],
            data={"code": error.code, "kind": error.kind.value, **error.details},
            headers=headers,
        )


def unwrap(result: Result[T]) -> T:
    """Return the value of a successful result or raise the mapped HTTP error."""
    if not result.ok:
        raise AppException.from_error(result.error)
    return result.value


def create_error_response(
    status_code: int,
    message: str,
    data: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "data": data,
        },
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return create_error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors with standardized format."""
    error_details = []
    for error in exc.errors():
        field = error["loc"][-1] if error.get("loc") else "unknown"
        message = error.get("msg", "")
        if message.startswith("Value error, "):
            message = message[13:]
        error_details.append({"field": field, "message": message})

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        data={"code": "INPUT_INVALID", "validation_errors": error_details},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return create_error_response(exc.status_code, exc.message, exc.data, exc.headers)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions with error logging."""
    logger.exception(
        "Unhandled exception occurred",
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error",
        data={"code": "INTERNAL_ERROR"},
    )

"""Auth exceptions and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INPUT_INVALID = "input_invalid"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CHALLENGE_INVALID = "challenge_invalid"
    CONFLICT = "conflict"
    STATE_VIOLATION = "state_violation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class AuthException(Exception):
    """Base auth exception carrying a kind and a machine readable code."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        kind: ErrorKind | None = None,
        retry_after: int | None = None,
        data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if kind is not None:
            self.kind = kind
        self.retry_after = retry_after
        self.data = data or {}

    def to_error(self) -> "AuthError":
        details = dict(self.data)
        if self.retry_after is not None:
            details["retry_after"] = self.retry_after
        return AuthError(kind=self.kind, code=self.code, message=self.message, details=details)


class InputInvalid(AuthException):
    kind = ErrorKind.INPUT_INVALID
    default_code = "INPUT_INVALID"


class RateLimited(AuthException):
    kind = ErrorKind.RATE_LIMITED
    default_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int, code: str | None = None):
        super().__init__(message, code=code, retry_after=max(1, int(retry_after)))


class ProviderUnavailable(AuthException):
    """A dependency (provider or counter store) could not be reached."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE
    default_code = "SERVICE_UNAVAILABLE"


class RateLimiterUnavailable(ProviderUnavailable):
    default_code = "SERVICE_UNAVAILABLE"


class DatastoreUnavailable(ProviderUnavailable):
    """The database could not start a transaction or a row lock wait timed out."""

    default_code = "DATASTORE_UNAVAILABLE"


class ProviderRejected(AuthException):
    """The provider answered but refused the request."""

    kind = ErrorKind.INPUT_INVALID
    default_code = "PROVIDER_REJECTED"

    def __init__(self, message: str, code: str | None = None, status_code: str | None = None):
        super().__init__(message, code=code)
        self.status_code = status_code


class ChallengeInvalid(AuthException):
    kind = ErrorKind.CHALLENGE_INVALID
    default_code = "INVALID_OTP"


class Conflict(AuthException):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class StateViolation(AuthException):
    kind = ErrorKind.STATE_VIOLATION
    default_code = "STATE_VIOLATION"


class Unauthenticated(AuthException):
    kind = ErrorKind.UNAUTHENTICATED
    default_code = "UNAUTHENTICATED"


class Forbidden(AuthException):
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class NotFound(AuthException):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


@dataclass(frozen=True)
class AuthError:
    kind: ErrorKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retry_after(self) -> int | None:
        return self.details.get("retry_after")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a public operation: either a value or an AuthError."""

    value: T | None = None
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise AuthException(self.error.message, code=self.error.code, kind=self.error.kind, data=self.error.details)
        return self.value  # type: ignore[return-value]


INTERNAL_ERROR = AuthError(kind=ErrorKind.INTERNAL, code="INTERNAL_ERROR", message="Internal server error")

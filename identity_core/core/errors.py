"""
Error taxonomy and result types for identity operations.

Expected failures (bad credentials, expired tokens, throttling) are returned as
``Result`` values carrying an ``ErrorKind``. Exceptions are reserved for
programming errors and startup configuration problems.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from fastapi import HTTPException, status

T = TypeVar("T")


class ErrorKind(StrEnum):
    INVALID_CREDENTIALS = "InvalidCredentials"
    ACCOUNT_LOCKED = "AccountLocked"
    ACCOUNT_INACTIVE = "AccountInactive"
    TOKEN_NOT_FOUND = "TokenNotFound"
    TOKEN_EXPIRED = "TokenExpired"
    TOKEN_REVOKED = "TokenRevoked"
    TOKEN_REUSED = "TokenReused"
    PASSWORD_POLICY_VIOLATION = "PasswordPolicyViolation"
    PASSWORD_REUSED = "PasswordReused"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    TENANT_UNRESOLVED = "TenantUnresolved"
    VALIDATION_ERROR = "ValidationError"


# Lookup failures that differ only in "why"; clients see one message for all of them
TOKEN_FAILURES = frozenset(
    {
        ErrorKind.TOKEN_NOT_FOUND,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.TOKEN_REVOKED,
        ErrorKind.TOKEN_REUSED,
    }
)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"

_PUBLIC: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.INVALID_CREDENTIALS: (status.HTTP_401_UNAUTHORIZED, "Invalid email or password"),
    ErrorKind.ACCOUNT_LOCKED: (
        status.HTTP_423_LOCKED,
        "Account temporarily locked due to repeated failed login attempts",
    ),
    ErrorKind.ACCOUNT_INACTIVE: (status.HTTP_403_FORBIDDEN, "Login not permitted"),
    ErrorKind.PASSWORD_POLICY_VIOLATION: (
        status.HTTP_400_BAD_REQUEST,
        "Password does not meet requirements",
    ),
    ErrorKind.PASSWORD_REUSED: (
        status.HTTP_400_BAD_REQUEST,
        "Password was used recently. Choose a different password",
    ),
    ErrorKind.RATE_LIMIT_EXCEEDED: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests. Please try again later",
    ),
    ErrorKind.TENANT_UNRESOLVED: (status.HTTP_400_BAD_REQUEST, "Tenant could not be resolved"),
    ErrorKind.VALIDATION_ERROR: (status.HTTP_400_BAD_REQUEST, "Invalid request"),
}


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or unusable."""


class SigningKeyError(ConfigurationError):
    """Raised when the token signing key cannot be loaded."""


class InvalidInputError(ValueError):
    """Raised for inputs that can never be valid, such as hashing an empty password."""


@dataclass(frozen=True)
class Failure:
    """An expected failure. ``detail`` is safe to show; ``kind`` is for audit and logs."""

    kind: ErrorKind
    detail: str | None = None
    retry_after: int | None = None

    def public(self) -> tuple[int, str]:
        """Status code and client-facing message, collapsing token lookup failures."""
        if self.kind in TOKEN_FAILURES:
            return status.HTTP_401_UNAUTHORIZED, INVALID_TOKEN_MESSAGE
        code, message = _PUBLIC[self.kind]
        if self.detail and self.kind in (
            ErrorKind.PASSWORD_POLICY_VIOLATION,
            ErrorKind.VALIDATION_ERROR,
        ):
            message = self.detail
        return code, message


@dataclass(frozen=True)
class Result(Generic[T]):
    """A value, or a Failure (which may still carry the value it concerns)."""

    value: T | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        detail: str | None = None,
        retry_after: int | None = None,
    ) -> "Result[T]":
        return cls(error=Failure(kind=kind, detail=detail, retry_after=retry_after))

    def unwrap(self) -> T:
        if self.error is not None:
            raise ValueError(f"unwrap() on failed result: {self.error.kind}")
        return self.value  # type: ignore[return-value]


def http_exception_for(failure: Failure) -> HTTPException:
    """Translate a Failure into the HTTPException raised by route handlers."""
    code, message = failure.public()
    headers = None
    if failure.retry_after is not None and failure.kind in (
        ErrorKind.ACCOUNT_LOCKED,
        ErrorKind.RATE_LIMIT_EXCEEDED,
    ):
        headers = {"Retry-After": str(failure.retry_after)}
    return HTTPException(status_code=code, detail=message, headers=headers)

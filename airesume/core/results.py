"""Explicit success/failure results returned by service operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    ROTATION_CONFLICT = "rotation_conflict"
    STORE_ERROR = "store_error"
    INVALID_API_KEY = "invalid_api_key"
    REVOKED_API_KEY = "revoked_api_key"
    EXPIRED_API_KEY = "expired_api_key"
    EXHAUSTED_API_KEY = "exhausted_api_key"
    FORBIDDEN_ORIGIN = "forbidden_origin"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    RATE_LIMITED = "rate_limited"
    ROTATION_OUTCOME_UNKNOWN = "rotation_outcome_unknown"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.ROTATION_CONFLICT: 409,
    ErrorKind.STORE_ERROR: 502,
    ErrorKind.INVALID_API_KEY: 401,
    ErrorKind.REVOKED_API_KEY: 401,
    ErrorKind.EXPIRED_API_KEY: 401,
    ErrorKind.EXHAUSTED_API_KEY: 401,
    ErrorKind.FORBIDDEN_ORIGIN: 403,
    ErrorKind.INSUFFICIENT_SCOPE: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.ROTATION_OUTCOME_UNKNOWN: 504,
}


@dataclass(frozen=True)
class ServiceError:
    """Failure payload carried by an unsuccessful result."""

    kind: ErrorKind
    detail: str

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self.kind]


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Either a value or an error, never both."""

    value: T | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> ServiceResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str) -> ServiceResult[T]:
        return cls(error=ServiceError(kind=kind, detail=detail))

"""Typed outcomes for lifecycle and validation operations."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(StrEnum):
    """Expected, caller-correctable failure categories."""

    # Input
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_PERMISSIONS = "INVALID_PERMISSIONS"
    INVALID_IP_ADDRESS = "INVALID_IP_ADDRESS"
    INVALID_RATE_LIMIT = "INVALID_RATE_LIMIT"

    # Not found
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    IP_ENTRY_NOT_FOUND = "IP_ENTRY_NOT_FOUND"

    # State conflicts
    KEY_REVOKED = "KEY_REVOKED"
    ALREADY_REVOKED = "ALREADY_REVOKED"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    ALREADY_INACTIVE = "ALREADY_INACTIVE"
    CLIENT_INACTIVE = "CLIENT_INACTIVE"
    KEY_EXPIRED = "KEY_EXPIRED"
    KEY_INACTIVE = "KEY_INACTIVE"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    DUPLICATE_IP = "DUPLICATE_IP"
    KEY_COLLISION = "KEY_COLLISION"
    HAS_ACTIVE_KEYS = "HAS_ACTIVE_KEYS"

    # Policy
    IP_NOT_ALLOWED = "IP_NOT_ALLOWED"

    # Collapsed validation outcome for unauthenticated callers
    UNAUTHORIZED = "UNAUTHORIZED"


@dataclass(frozen=True)
class Failure:
    """A typed failure with a human-readable message."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a success value or a typed failure.

    Use ``Result.ok`` / ``Result.fail`` rather than the constructor.
    """

    value: T | None = None
    failure: Failure | None = None

    @property
    def is_success(self) -> bool:
        return self.failure is None

    @property
    def is_failure(self) -> bool:
        return self.failure is not None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        **details: Any,
    ) -> "Result[T]":
        return cls(failure=Failure(code=code, message=message, details=details))

    def unwrap(self) -> T:
        """Return the success value, raising if this is a failure."""
        if self.failure is not None:
            raise ValueError(f"Result is a failure: {self.failure.code}")
        return self.value  # type: ignore[return-value]

"""Validation request and result schemas."""

from uuid import UUID

from pydantic import BaseModel, Field

from src.core.result import ErrorCode

# Failures that reveal whether a presented credential exists or what state it is in
PRE_WHITELIST_CODES = frozenset(
    {
        ErrorCode.INVALID_FORMAT,
        ErrorCode.KEY_NOT_FOUND,
        ErrorCode.KEY_REVOKED,
        ErrorCode.KEY_EXPIRED,
        ErrorCode.KEY_INACTIVE,
        ErrorCode.CLIENT_INACTIVE,
    }
)


class ApiKeyValidationResult(BaseModel):
    """Outcome of validating a presented API key."""

    valid: bool
    api_key_id: UUID | None = None
    api_client_id: UUID | None = None
    client_name: str | None = None
    user_id: UUID | None = None
    scopes: list[str] = Field(default_factory=list)
    rate_limit_per_minute: int | None = None
    key_prefix: str | None = None
    error_code: ErrorCode | None = None
    error_message: str | None = None

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> "ApiKeyValidationResult":
        return cls(valid=False, error_code=code, error_message=message)

    def public(self) -> "ApiKeyValidationResult":
        """Version safe to return to an unauthenticated caller.

        Collapses failures that would let a caller probe for key existence
        or state into a generic UNAUTHORIZED.
        """
        if self.valid or self.error_code not in PRE_WHITELIST_CODES:
            return self
        return ApiKeyValidationResult.failure(
            ErrorCode.UNAUTHORIZED, "Invalid or missing API key"
        )


class ValidateApiKeyRequest(BaseModel):
    """Administrative diagnostic validation request."""

    api_key: str = Field(..., description="Plaintext key to check")
    ip_address: str = Field(..., description="Caller address to evaluate")

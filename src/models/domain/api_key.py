"""API Key Pydantic schemas."""

from datetime import UTC, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IpWhitelistEntryCreate(BaseModel):
    """Schema for adding an IP whitelist entry."""

    ip_address: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="IPv4/IPv6 address or CIDR range",
    )
    description: str | None = Field(None, max_length=255)


class IpWhitelistEntryRead(BaseModel):
    """Schema for reading an IP whitelist entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ip_address: str
    description: str | None = None
    created_at: datetime | None = None


def _assume_utc(value: datetime | None) -> datetime | None:
    """Naive expiration timestamps are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ApiKeyBase(BaseModel):
    """Base schema for API key data."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Human-readable name for the API key",
    )


class ApiKeyCreate(ApiKeyBase):
    """Schema for creating a new API key."""

    api_client_id: UUID = Field(..., description="Client this key belongs to")
    scopes: list[str] = Field(
        default_factory=list,
        description="Permission scopes, e.g. products:read or *",
    )
    rate_limit_per_minute: int | None = Field(
        None,
        gt=0,
        description="Requests per minute; server default when omitted",
    )
    expires_at: datetime | None = Field(None, description="Optional expiration")
    ip_whitelist: list[IpWhitelistEntryCreate] = Field(
        default_factory=list,
        description="Allowed origins; empty means unrestricted",
    )

    @field_validator("expires_at")
    @classmethod
    def expires_at_as_utc(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)


class ApiKeyUpdate(ApiKeyBase):
    """Schema for updating an API key's details."""

    rate_limit_per_minute: int = Field(..., gt=0)
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def expires_at_as_utc(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)


class ApiKeyRevoke(BaseModel):
    """Schema for revoking an API key."""

    reason: str = Field(..., min_length=1, max_length=500)


class ApiKeyPermissionsUpdate(BaseModel):
    """Full replacement scope set for an API key."""

    scopes: list[str] = Field(..., description="Replacement scope set")


class ApiKeyRead(ApiKeyBase):
    """Schema for reading API key data (without the actual key)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="API key unique identifier")
    api_client_id: UUID = Field(..., description="Client this key belongs to")
    key_prefix: str = Field(..., description="Display prefix, e.g. b2b_AbCd1234...")
    is_active: bool = Field(..., description="Administrative flag")
    is_revoked: bool = False
    is_expired: bool = False
    rate_limit_per_minute: int
    scopes: list[str] = Field(default_factory=list)
    ip_whitelist: list[IpWhitelistEntryRead] = Field(default_factory=list)
    expires_at: datetime | None = None
    last_used_at: datetime | None = Field(None, description="When the key was last used")
    last_used_ip: str | None = None
    revoked_at: datetime | None = Field(None, description="When the key was revoked")
    revoked_reason: str | None = None
    revoked_by: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(..., description="When the key was created")
    updated_at: datetime = Field(..., description="When the key was last updated")


class ApiKeyCreateResponse(ApiKeyRead):
    """Schema returned when creating or rotating an API key.

    This is the ONLY time the plaintext key is returned.
    Store it securely - it cannot be retrieved again.
    """

    key: str = Field(
        ...,
        description="The API key - store this securely, it will not be shown again",
    )


class AvailableScopes(BaseModel):
    """Scope catalogue exposed to administrators."""

    scopes: list[str]

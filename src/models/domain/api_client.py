"""API client Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.domain.api_key import ApiKeyRead


class ApiClientBase(BaseModel):
    """Base schema for API client data."""

    name: str = Field(..., min_length=1, max_length=255, description="Client name")
    description: str | None = Field(None, max_length=2000)
    contact_email: str = Field(..., min_length=3, max_length=320)
    contact_phone: str | None = Field(None, max_length=50)


class ApiClientCreate(ApiClientBase):
    """Schema for creating a new API client."""

    pass


class ApiClientUpdate(ApiClientBase):
    """Schema for updating an API client."""

    pass


class ApiClientDeactivate(BaseModel):
    """Schema for deactivating an API client."""

    reason: str | None = Field(None, max_length=500)


class ApiClientRead(ApiClientBase):
    """Schema for reading API client data."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Client unique identifier")
    is_active: bool
    user_id: UUID | None = Field(None, description="Linked service account")
    deactivated_at: datetime | None = None
    deactivated_by: str | None = None
    deactivation_reason: str | None = None
    active_key_count: int = 0
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class ApiClientDetail(ApiClientRead):
    """Client with its keys."""

    api_keys: list[ApiKeyRead] = Field(default_factory=list)

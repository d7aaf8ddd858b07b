"""Endpoints for integration partners authenticated by API key."""

import uuid

from fastapi import APIRouter
from pydantic import BaseModel

from src.api.v1.dependencies import Auth

router = APIRouter()


class IntegrationIdentity(BaseModel):
    """The identity resolved from the presented API key."""

    api_key_id: uuid.UUID
    api_client_id: uuid.UUID
    client_name: str
    scopes: list[str]
    rate_limit_per_minute: int


@router.get("/me", response_model=IntegrationIdentity)
async def whoami(auth: Auth) -> IntegrationIdentity:
    """Return the caller's validated identity and permissions."""
    return IntegrationIdentity(
        api_key_id=auth.api_key_id,
        api_client_id=auth.api_client_id,
        client_name=auth.client_name,
        scopes=auth.scopes,
        rate_limit_per_minute=auth.rate_limit_per_minute,
    )

"""API key administration endpoints."""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from src.api.v1.dependencies import Admin, UsageCounterDep, get_validation_service
from src.core.database import DbSession
from src.core.exceptions import unwrap_result
from src.core.scopes import all_scopes
from src.models.domain.api_key import (
    ApiKeyCreate,
    ApiKeyCreateResponse,
    ApiKeyPermissionsUpdate,
    ApiKeyRead,
    ApiKeyRevoke,
    ApiKeyUpdate,
    AvailableScopes,
    IpWhitelistEntryCreate,
    IpWhitelistEntryRead,
)
from src.models.domain.usage import UsageLogPage, UsageStats
from src.models.domain.validation import ApiKeyValidationResult, ValidateApiKeyRequest
from src.services.api_key_service import ApiKeyService
from src.services.usage_service import UsageService
from src.services.validation_service import ValidationService

router = APIRouter()


def get_api_key_service(session: DbSession) -> ApiKeyService:
    """Get API key service instance."""
    return ApiKeyService(session)


def get_usage_service(session: DbSession, counter: UsageCounterDep) -> UsageService:
    """Get usage service instance."""
    return UsageService(session, counter=counter)


KeySvc = Annotated[ApiKeyService, Depends(get_api_key_service)]
UsageSvc = Annotated[UsageService, Depends(get_usage_service)]


@router.get("/available-scopes", response_model=AvailableScopes)
async def available_scopes(admin: Admin) -> AvailableScopes:  # noqa: ARG001
    """List every permission scope a key can be granted."""
    return AvailableScopes(scopes=sorted(all_scopes()))


@router.post("/validate", response_model=ApiKeyValidationResult)
async def validate_api_key(
    data: ValidateApiKeyRequest,
    admin: Admin,  # noqa: ARG001
    service: Annotated[ValidationService, Depends(get_validation_service)],
) -> ApiKeyValidationResult:
    """Diagnose a key as seen from a given address.

    Returns the specific failure code and does not record usage.
    """
    return await service.validate(data.api_key, data.ip_address, track_usage=False)


@router.get("/by-client/{client_id}", response_model=list[ApiKeyRead])
async def list_keys_for_client(
    client_id: uuid.UUID,
    admin: Admin,  # noqa: ARG001
    service: KeySvc,
) -> list[ApiKeyRead]:
    """List all keys owned by a client."""
    return unwrap_result(await service.list_keys_for_client(client_id))


@router.post("", response_model=ApiKeyCreateResponse, status_code=201)
async def create_key(
    data: ApiKeyCreate,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyCreateResponse:
    """Create an API key.

    The plaintext key is in the response and cannot be retrieved again.
    """
    return unwrap_result(await service.create_key(data, created_by=admin.actor))


@router.get("/{key_id}", response_model=ApiKeyRead)
async def get_key(
    key_id: uuid.UUID,
    admin: Admin,  # noqa: ARG001
    service: KeySvc,
) -> ApiKeyRead:
    """Get an API key (never includes the secret)."""
    return unwrap_result(await service.get_key(key_id))


@router.put("/{key_id}", response_model=ApiKeyRead)
async def update_key(
    key_id: uuid.UUID,
    data: ApiKeyUpdate,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyRead:
    """Update a key's name, rate limit and expiration."""
    return unwrap_result(await service.update_key(key_id, data, updated_by=admin.actor))


@router.post("/{key_id}/revoke", response_model=ApiKeyRead)
async def revoke_key(
    key_id: uuid.UUID,
    data: ApiKeyRevoke,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyRead:
    """Revoke a key permanently."""
    return unwrap_result(
        await service.revoke_key(key_id, reason=data.reason, revoked_by=admin.actor)
    )


@router.post("/{key_id}/rotate", response_model=ApiKeyCreateResponse)
async def rotate_key(
    key_id: uuid.UUID,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyCreateResponse:
    """Replace a key with a new one and revoke the old one."""
    return unwrap_result(await service.rotate_key(key_id, rotated_by=admin.actor))


@router.post("/{key_id}/activate", response_model=ApiKeyRead)
async def activate_key(
    key_id: uuid.UUID,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyRead:
    """Set a key's administrative flag to active."""
    return unwrap_result(await service.set_key_active(key_id, True, updated_by=admin.actor))


@router.post("/{key_id}/deactivate", response_model=ApiKeyRead)
async def deactivate_key(
    key_id: uuid.UUID,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyRead:
    """Set a key's administrative flag to inactive."""
    return unwrap_result(await service.set_key_active(key_id, False, updated_by=admin.actor))


@router.put("/{key_id}/permissions", response_model=ApiKeyRead)
async def update_permissions(
    key_id: uuid.UUID,
    data: ApiKeyPermissionsUpdate,
    admin: Admin,
    service: KeySvc,
) -> ApiKeyRead:
    """Replace a key's permission scopes."""
    return unwrap_result(
        await service.update_permissions(key_id, data.scopes, updated_by=admin.actor)
    )


@router.post("/{key_id}/ip-whitelist", response_model=IpWhitelistEntryRead, status_code=201)
async def add_ip_whitelist(
    key_id: uuid.UUID,
    data: IpWhitelistEntryCreate,
    admin: Admin,
    service: KeySvc,
) -> IpWhitelistEntryRead:
    """Allow an address or CIDR range to use a key."""
    return unwrap_result(await service.add_ip_whitelist(key_id, data, updated_by=admin.actor))


@router.delete("/{key_id}/ip-whitelist/{entry_id}", status_code=204)
async def remove_ip_whitelist(
    key_id: uuid.UUID,
    entry_id: uuid.UUID,
    admin: Admin,
    service: KeySvc,
) -> Response:
    """Remove a whitelist entry from a key."""
    unwrap_result(await service.remove_ip_whitelist(key_id, entry_id, updated_by=admin.actor))
    return Response(status_code=204)


@router.get("/{key_id}/usage", response_model=UsageLogPage)
async def get_usage_logs(
    key_id: uuid.UUID,
    admin: Admin,  # noqa: ARG001
    service: UsageSvc,
    from_timestamp: Annotated[datetime | None, Query(alias="from")] = None,
    to_timestamp: Annotated[datetime | None, Query(alias="to")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=500)] = 50,
) -> UsageLogPage:
    """Get usage logs for a key, newest first."""
    return unwrap_result(
        await service.get_usage_logs(
            key_id,
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
            page=page,
            page_size=page_size,
        )
    )


@router.get("/{key_id}/stats", response_model=UsageStats)
async def get_usage_stats(
    key_id: uuid.UUID,
    admin: Admin,  # noqa: ARG001
    service: UsageSvc,
    from_timestamp: Annotated[datetime | None, Query(alias="from")] = None,
    to_timestamp: Annotated[datetime | None, Query(alias="to")] = None,
) -> UsageStats:
    """Get aggregate usage statistics for a key."""
    return unwrap_result(
        await service.get_usage_stats(key_id, from_timestamp=from_timestamp, to_timestamp=to_timestamp)
    )

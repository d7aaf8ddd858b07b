"""API client administration endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Response

from src.api.v1.dependencies import Admin
from src.core.database import DbSession
from src.core.exceptions import unwrap_result
from src.core.pagination import CursorPage
from src.models.domain.api_client import (
    ApiClientCreate,
    ApiClientDeactivate,
    ApiClientDetail,
    ApiClientRead,
    ApiClientUpdate,
)
from src.services.api_client_service import ApiClientService

router = APIRouter()


def get_api_client_service(session: DbSession) -> ApiClientService:
    """Get API client service instance."""
    return ApiClientService(session)


ClientSvc = Annotated[ApiClientService, Depends(get_api_client_service)]


@router.get("", response_model=CursorPage[ApiClientRead])
async def list_clients(
    admin: Admin,  # noqa: ARG001
    service: ClientSvc,
    is_active: Annotated[bool | None, Query(description="Filter by activity")] = None,
    cursor: Annotated[str | None, Query(description="Cursor from a previous page")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> CursorPage[ApiClientRead]:
    """List API clients ordered by name."""
    return await service.list_clients(is_active=is_active, cursor=cursor, limit=limit)


@router.post("", response_model=ApiClientRead, status_code=201)
async def create_client(
    data: ApiClientCreate,
    admin: Admin,
    service: ClientSvc,
) -> ApiClientRead:
    """Create an API client.

    Returns 409 DUPLICATE_NAME if a client with the same name exists.
    """
    return unwrap_result(await service.create_client(data, created_by=admin.actor))


@router.get("/{client_id}", response_model=ApiClientDetail)
async def get_client(
    client_id: uuid.UUID,
    admin: Admin,  # noqa: ARG001
    service: ClientSvc,
) -> ApiClientDetail:
    """Get an API client with its keys."""
    return unwrap_result(await service.get_client(client_id))


@router.put("/{client_id}", response_model=ApiClientRead)
async def update_client(
    client_id: uuid.UUID,
    data: ApiClientUpdate,
    admin: Admin,
    service: ClientSvc,
) -> ApiClientRead:
    """Update an API client's details."""
    return unwrap_result(
        await service.update_client(client_id, data, updated_by=admin.actor)
    )


@router.post("/{client_id}/activate", response_model=ApiClientRead)
async def activate_client(
    client_id: uuid.UUID,
    admin: Admin,
    service: ClientSvc,
) -> ApiClientRead:
    """Reactivate an API client."""
    return unwrap_result(
        await service.activate_client(client_id, activated_by=admin.actor)
    )


@router.post("/{client_id}/deactivate", response_model=ApiClientRead)
async def deactivate_client(
    client_id: uuid.UUID,
    admin: Admin,
    service: ClientSvc,
    data: Annotated[ApiClientDeactivate | None, Body()] = None,
) -> ApiClientRead:
    """Deactivate an API client.

    Its keys stay unrevoked but fail validation until reactivation.
    """
    return unwrap_result(
        await service.deactivate_client(
            client_id,
            reason=data.reason if data else None,
            deactivated_by=admin.actor,
        )
    )


@router.delete("/{client_id}", status_code=204)
async def delete_client(
    client_id: uuid.UUID,
    admin: Admin,
    service: ClientSvc,
) -> Response:
    """Soft-delete an API client.

    Returns 409 HAS_ACTIVE_KEYS while any of its keys is still valid.
    """
    unwrap_result(await service.delete_client(client_id, deleted_by=admin.actor))
    return Response(status_code=204)

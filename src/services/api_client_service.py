"""Service for API client management."""

import logging
import uuid
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.database import transactional, violated_constraint
from src.core.exceptions import DomainError, ValidationError
from src.core.metrics import key_lifecycle_operations_total
from src.core.pagination import CursorPage, paginate
from src.core.result import ErrorCode, Result
from src.models.db.api_client import ApiClient
from src.models.domain.api_client import (
    ApiClientCreate,
    ApiClientDetail,
    ApiClientRead,
    ApiClientUpdate,
)
from src.repositories.api_client_repo import ApiClientRepository
from src.services.api_key_service import to_api_key_read

logger = logging.getLogger(__name__)

CLIENT_NAME_CONSTRAINT = "uq_api_clients_name_lower"


class ApiClientService:
    """Service for managing integration partners."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.repo = ApiClientRepository(session)

    @staticmethod
    def _finish(operation: str, result: Result[Any]) -> Result[Any]:
        outcome = "success" if result.failure is None else result.failure.code.lower()
        key_lifecycle_operations_total.labels(
            operation=f"client_{operation}", outcome=outcome
        ).inc()
        return result

    @staticmethod
    def _from_domain_error(exc: DomainError) -> Result[Any]:
        if exc.code is None:
            raise exc
        return Result.fail(exc.code, exc.message)

    @staticmethod
    def _not_found() -> Result[Any]:
        return Result.fail(ErrorCode.CLIENT_NOT_FOUND, "API client not found")

    @staticmethod
    def _duplicate_name(name: str) -> Result[Any]:
        return Result.fail(
            ErrorCode.DUPLICATE_NAME,
            f"An API client named '{name}' already exists",
        )

    async def create_client(
        self,
        data: ApiClientCreate,
        created_by: str | None = None,
    ) -> Result[ApiClientRead]:
        """Create a client and its linked service account.

        Returns:
            Result with the new client, or DUPLICATE_NAME
        """
        try:
            async with transactional(self.session, self.settings.lifecycle_timeout_seconds):
                if await self.repo.name_exists(data.name):
                    return self._finish("create", self._duplicate_name(data.name))
                client = ApiClient.create(
                    name=data.name,
                    contact_email=data.contact_email,
                    description=data.description,
                    contact_phone=data.contact_phone,
                    created_by=created_by,
                )
                created = await self.repo.create(client)
        except IntegrityError as exc:
            if violated_constraint(exc, [CLIENT_NAME_CONSTRAINT]):
                return self._finish("create", self._duplicate_name(data.name))
            raise

        logger.info(
            "API client created",
            extra={"api_client_id": str(created.id), "actor": created_by},
        )
        return self._finish("create", Result.ok(self._to_read(created)))

    async def get_client(self, client_id: uuid.UUID) -> Result[ApiClientDetail]:
        """Get a client with its keys."""
        client = await self.repo.get_by_id(client_id)
        if client is None:
            return self._not_found()
        return Result.ok(self._to_detail(client))

    async def list_clients(
        self,
        is_active: bool | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> CursorPage[ApiClientRead]:
        """List clients ordered by name with cursor-based pagination.

        Raises:
            ValidationError: If the cursor cannot be decoded
        """
        try:
            clients = await self.repo.list_clients_cursor(
                is_active=is_active,
                cursor=cursor,
                limit=limit,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        return paginate(
            [self._to_read(c) for c in clients],
            limit,
            position=lambda c: (c.name, c.id),
        )

    async def update_client(
        self,
        client_id: uuid.UUID,
        data: ApiClientUpdate,
        updated_by: str | None = None,
    ) -> Result[ApiClientRead]:
        """Update a client's descriptive attributes.

        Returns:
            Result with the client, or CLIENT_NOT_FOUND / DUPLICATE_NAME
        """
        try:
            async with transactional(self.session, self.settings.lifecycle_timeout_seconds):
                client = await self.repo.get_by_id(client_id)
                if client is None:
                    return self._finish("update", self._not_found())
                if await self.repo.name_exists(data.name, exclude_id=client_id):
                    return self._finish("update", self._duplicate_name(data.name))
                client.update(
                    name=data.name,
                    contact_email=data.contact_email,
                    description=data.description,
                    contact_phone=data.contact_phone,
                    updated_by=updated_by,
                )
                await self.repo.save(client)
        except IntegrityError as exc:
            if violated_constraint(exc, [CLIENT_NAME_CONSTRAINT]):
                return self._finish("update", self._duplicate_name(data.name))
            raise

        logger.info(
            "API client updated",
            extra={"api_client_id": str(client.id), "actor": updated_by},
        )
        return self._finish("update", Result.ok(self._to_read(client)))

    async def activate_client(
        self,
        client_id: uuid.UUID,
        activated_by: str | None = None,
    ) -> Result[ApiClientRead]:
        """Reactivate a client; its otherwise-valid keys validate again."""
        try:
            async with transactional(self.session, self.settings.lifecycle_timeout_seconds):
                client = await self.repo.get_by_id(client_id)
                if client is None:
                    return self._finish("activate", self._not_found())
                if client.is_active:
                    return self._finish(
                        "activate",
                        Result.fail(ErrorCode.ALREADY_ACTIVE, "API client is already active"),
                    )
                client.activate(activated_by)
                await self.repo.save(client)
        except DomainError as exc:
            return self._finish("activate", self._from_domain_error(exc))

        logger.info(
            "API client activated",
            extra={"api_client_id": str(client.id), "actor": activated_by},
        )
        return self._finish("activate", Result.ok(self._to_read(client)))

    async def deactivate_client(
        self,
        client_id: uuid.UUID,
        reason: str | None = None,
        deactivated_by: str | None = None,
    ) -> Result[ApiClientRead]:
        """Deactivate a client.

        Keys are not revoked; they fail validation with CLIENT_INACTIVE until
        the client is reactivated.
        """
        try:
            async with transactional(self.session, self.settings.lifecycle_timeout_seconds):
                client = await self.repo.get_by_id(client_id)
                if client is None:
                    return self._finish("deactivate", self._not_found())
                if not client.is_active:
                    return self._finish(
                        "deactivate",
                        Result.fail(ErrorCode.ALREADY_INACTIVE, "API client is already inactive"),
                    )
                client.deactivate(reason, deactivated_by)
                await self.repo.save(client)
        except DomainError as exc:
            return self._finish("deactivate", self._from_domain_error(exc))

        logger.info(
            "API client deactivated",
            extra={
                "api_client_id": str(client.id),
                "reason": reason,
                "actor": deactivated_by,
            },
        )
        return self._finish("deactivate", Result.ok(self._to_read(client)))

    async def delete_client(
        self,
        client_id: uuid.UUID,
        deleted_by: str | None = None,
    ) -> Result[None]:
        """Soft-delete a client that has no valid keys.

        Returns:
            Empty result, or CLIENT_NOT_FOUND / HAS_ACTIVE_KEYS
        """
        try:
            async with transactional(self.session, self.settings.lifecycle_timeout_seconds):
                client = await self.repo.get_by_id(client_id)
                if client is None:
                    return self._finish("delete", self._not_found())
                if client.has_valid_keys():
                    return self._finish(
                        "delete",
                        Result.fail(
                            ErrorCode.HAS_ACTIVE_KEYS,
                            "Cannot delete API client with active API keys. "
                            "Revoke or deactivate them first.",
                            active_key_ids=[str(k.id) for k in client.valid_keys()],
                        ),
                    )
                client.soft_delete(deleted_by)
                await self.repo.save(client)
        except DomainError as exc:
            return self._finish("delete", self._from_domain_error(exc))

        logger.info(
            "API client deleted",
            extra={"api_client_id": str(client_id), "actor": deleted_by},
        )
        return self._finish("delete", Result.ok(None))

    def _to_read(self, client: ApiClient) -> ApiClientRead:
        """Convert ApiClient DB model to ApiClientRead schema."""
        return ApiClientRead(
            id=client.id,
            name=client.name,
            description=client.description,
            contact_email=client.contact_email,
            contact_phone=client.contact_phone,
            is_active=client.is_active,
            user_id=client.user_id,
            deactivated_at=client.deactivated_at,
            deactivated_by=client.deactivated_by,
            deactivation_reason=client.deactivation_reason,
            active_key_count=len(client.valid_keys()),
            created_by=client.created_by,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )

    def _to_detail(self, client: ApiClient) -> ApiClientDetail:
        return ApiClientDetail(
            **self._to_read(client).model_dump(),
            api_keys=[to_api_key_read(k) for k in client.api_keys],
        )

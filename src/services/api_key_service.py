"""Service for API key lifecycle management."""

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.database import transactional, violated_constraint
from src.core.exceptions import DomainError
from src.core.ip_whitelist import is_valid_whitelist_entry
from src.core.metrics import key_lifecycle_operations_total
from src.core.result import ErrorCode, Result
from src.core.scopes import find_invalid_scopes
from src.core.security import generate_api_key
from src.models.db.api_key import REVOKED_REASON_ROTATED, ApiKey
from src.models.db.base import utcnow
from src.models.domain.api_key import (
    ApiKeyCreate,
    ApiKeyCreateResponse,
    ApiKeyRead,
    ApiKeyUpdate,
    IpWhitelistEntryCreate,
    IpWhitelistEntryRead,
)
from src.repositories.api_client_repo import ApiClientRepository
from src.repositories.api_key_repo import ApiKeyRepository

logger = logging.getLogger(__name__)

KEY_HASH_CONSTRAINT = "uq_api_keys_key_hash"
ROTATED_NAME_SUFFIX = " (rotated)"

T = TypeVar("T")


def to_api_key_read(api_key: ApiKey) -> ApiKeyRead:
    """Convert ApiKey DB model to ApiKeyRead schema."""
    return ApiKeyRead(
        id=api_key.id,
        api_client_id=api_key.api_client_id,
        name=api_key.name,
        key_prefix=api_key.display_prefix,
        is_active=api_key.is_active,
        is_revoked=api_key.is_revoked,
        is_expired=api_key.is_expired(),
        rate_limit_per_minute=api_key.rate_limit_per_minute,
        scopes=api_key.scopes,
        ip_whitelist=[IpWhitelistEntryRead.model_validate(e) for e in api_key.ip_whitelist],
        expires_at=api_key.expires_at,
        last_used_at=api_key.last_used_at,
        last_used_ip=api_key.last_used_ip,
        revoked_at=api_key.revoked_at,
        revoked_reason=api_key.revoked_reason,
        revoked_by=api_key.revoked_by,
        created_by=api_key.created_by,
        created_at=api_key.created_at,
        updated_at=api_key.updated_at,
    )


class ApiKeyService:
    """Service for creating, rotating, revoking and configuring API keys.

    Every mutating operation runs in its own savepoint with a deadline and
    returns a Result instead of raising for expected failures.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.repo = ApiKeyRepository(session)
        self.client_repo = ApiClientRepository(session)

    def _transaction(self) -> AbstractAsyncContextManager[None]:
        return transactional(self.session, self.settings.lifecycle_timeout_seconds)

    @staticmethod
    def _finish(operation: str, result: Result[T]) -> Result[T]:
        outcome = "success" if result.is_success else result.failure.code.lower()  # type: ignore[union-attr]
        key_lifecycle_operations_total.labels(operation=operation, outcome=outcome).inc()
        return result

    @staticmethod
    def _from_domain_error(exc: DomainError) -> Result[Any]:
        if exc.code is None:
            raise exc
        return Result.fail(exc.code, exc.message)

    @staticmethod
    def _from_integrity_error(exc: IntegrityError) -> Result[Any]:
        if violated_constraint(exc, [KEY_HASH_CONSTRAINT]):
            logger.error("API key hash collision on insert")
            return Result.fail(ErrorCode.KEY_COLLISION, "Generated key collided, retry the request")
        raise exc

    def _check_scopes(self, scopes: list[str]) -> Result[Any] | None:
        invalid = find_invalid_scopes(scopes)
        if invalid:
            return Result.fail(
                ErrorCode.INVALID_PERMISSIONS,
                f"Invalid permission scopes: {', '.join(invalid)}",
                invalid_scopes=invalid,
            )
        return None

    def _check_rate_limit(self, rate_limit: int) -> Result[Any] | None:
        maximum = self.settings.max_rate_limit_per_minute
        if rate_limit > maximum:
            return Result.fail(
                ErrorCode.INVALID_RATE_LIMIT,
                f"rate_limit_per_minute must not exceed {maximum}",
                rate_limit_per_minute=rate_limit,
                max_rate_limit_per_minute=maximum,
            )
        return None

    async def create_key(
        self,
        data: ApiKeyCreate,
        created_by: str | None = None,
    ) -> Result[ApiKeyCreateResponse]:
        """Create a new API key for a client.

        The plaintext key is returned once in the response and never stored.

        Args:
            data: The key creation request
            created_by: Acting administrator

        Returns:
            Result with the created key and its plaintext, or a failure:
            INVALID_PERMISSIONS, INVALID_IP_ADDRESS, DUPLICATE_IP,
            INVALID_RATE_LIMIT, CLIENT_NOT_FOUND, CLIENT_INACTIVE or KEY_COLLISION
        """
        failure = self._check_scopes(data.scopes)
        if failure is not None:
            return self._finish("create", failure)

        bad_ips = [e.ip_address for e in data.ip_whitelist if not is_valid_whitelist_entry(e.ip_address)]
        if bad_ips:
            return self._finish(
                "create",
                Result.fail(
                    ErrorCode.INVALID_IP_ADDRESS,
                    f"Invalid IP addresses: {', '.join(bad_ips)}",
                    invalid_ips=bad_ips,
                ),
            )

        rate_limit = data.rate_limit_per_minute or self.settings.default_rate_limit_per_minute
        failure = self._check_rate_limit(rate_limit)
        if failure is not None:
            return self._finish("create", failure)

        try:
            async with self._transaction():
                client = await self.client_repo.get_by_id(data.api_client_id)
                if client is None:
                    return self._finish(
                        "create", Result.fail(ErrorCode.CLIENT_NOT_FOUND, "API client not found")
                    )
                if not client.is_active:
                    return self._finish(
                        "create", Result.fail(ErrorCode.CLIENT_INACTIVE, "API client is inactive")
                    )

                material = generate_api_key()
                api_key = ApiKey.create(
                    api_client_id=client.id,
                    name=data.name,
                    key_hash=material.key_hash,
                    key_prefix=material.key_prefix,
                    rate_limit_per_minute=rate_limit,
                    scopes=data.scopes,
                    expires_at=data.expires_at,
                    ip_whitelist=[(e.ip_address, e.description) for e in data.ip_whitelist],
                    created_by=created_by,
                )
                api_key.api_client = client
                created = await self.repo.create(api_key)
        except DomainError as exc:
            return self._finish("create", self._from_domain_error(exc))
        except IntegrityError as exc:
            return self._finish("create", self._from_integrity_error(exc))

        logger.info(
            "API key created",
            extra={
                "api_key_id": str(created.id),
                "api_client_id": str(created.api_client_id),
                "key_prefix": created.key_prefix,
                "actor": created_by,
            },
        )
        response = ApiKeyCreateResponse(
            key=material.plaintext,
            **to_api_key_read(created).model_dump(),
        )
        return self._finish("create", Result.ok(response))

    async def get_key(self, api_key_id: uuid.UUID) -> Result[ApiKeyRead]:
        """Get an API key by ID (never includes plaintext or hash)."""
        api_key = await self.repo.get_by_id(api_key_id)
        if api_key is None:
            return Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
        return Result.ok(to_api_key_read(api_key))

    async def list_keys_for_client(self, api_client_id: uuid.UUID) -> Result[list[ApiKeyRead]]:
        """List every key owned by a client."""
        client = await self.client_repo.get_by_id(api_client_id)
        if client is None:
            return Result.fail(ErrorCode.CLIENT_NOT_FOUND, "API client not found")
        keys = await self.repo.list_by_client(api_client_id)
        return Result.ok([to_api_key_read(k) for k in keys])

    async def update_key(
        self,
        api_key_id: uuid.UUID,
        data: ApiKeyUpdate,
        updated_by: str | None = None,
    ) -> Result[ApiKeyRead]:
        """Update a key's name, rate limit and expiration.

        Returns:
            Result with the updated key, or INVALID_RATE_LIMIT /
            KEY_NOT_FOUND / KEY_REVOKED
        """
        failure = self._check_rate_limit(data.rate_limit_per_minute)
        if failure is not None:
            return self._finish("update", failure)
        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        "update", Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                if api_key.is_revoked:
                    return self._finish(
                        "update",
                        Result.fail(ErrorCode.KEY_REVOKED, "Cannot update a revoked API key"),
                    )
                api_key.update_details(
                    name=data.name,
                    rate_limit_per_minute=data.rate_limit_per_minute,
                    expires_at=data.expires_at,
                    updated_by=updated_by,
                )
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish("update", self._from_domain_error(exc))

        logger.info(
            "API key updated",
            extra={"api_key_id": str(api_key.id), "actor": updated_by},
        )
        return self._finish("update", Result.ok(to_api_key_read(api_key)))

    async def revoke_key(
        self,
        api_key_id: uuid.UUID,
        reason: str,
        revoked_by: str | None = None,
    ) -> Result[ApiKeyRead]:
        """Revoke a key permanently.

        Returns:
            Result with the revoked key, or KEY_NOT_FOUND / ALREADY_REVOKED
        """
        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        "revoke", Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                if api_key.is_revoked:
                    return self._finish(
                        "revoke",
                        Result.fail(ErrorCode.ALREADY_REVOKED, "API key is already revoked"),
                    )
                api_key.revoke(reason, revoked_by)
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish("revoke", self._from_domain_error(exc))

        logger.info(
            "API key revoked",
            extra={
                "api_key_id": str(api_key.id),
                "api_client_id": str(api_key.api_client_id),
                "reason": reason,
                "actor": revoked_by,
            },
        )
        return self._finish("revoke", Result.ok(to_api_key_read(api_key)))

    async def rotate_key(
        self,
        api_key_id: uuid.UUID,
        rotated_by: str | None = None,
    ) -> Result[ApiKeyCreateResponse]:
        """Replace a key with a fresh one carrying the same configuration.

        The new key is created and the old one revoked with reason
        "rotated" in a single savepoint; either both persist or neither.

        Returns:
            Result with the new key and its plaintext, or KEY_NOT_FOUND /
            KEY_REVOKED / KEY_COLLISION
        """
        try:
            async with self._transaction():
                source = await self.repo.get_by_id(api_key_id)
                if source is None:
                    return self._finish(
                        "rotate", Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                if source.is_revoked:
                    return self._finish(
                        "rotate",
                        Result.fail(ErrorCode.KEY_REVOKED, "Cannot rotate a revoked API key"),
                    )

                now = utcnow()
                expires_at = source.expires_at
                if expires_at is not None and expires_at <= now:
                    expires_at = None

                material = generate_api_key()
                replacement = ApiKey.create(
                    api_client_id=source.api_client_id,
                    name=(source.name + ROTATED_NAME_SUFFIX)[:255],
                    key_hash=material.key_hash,
                    key_prefix=material.key_prefix,
                    rate_limit_per_minute=source.rate_limit_per_minute,
                    scopes=source.scopes,
                    expires_at=expires_at,
                    ip_whitelist=[(e.ip_address, e.description) for e in source.ip_whitelist],
                    created_by=rotated_by,
                )
                replacement.api_client = source.api_client
                created = await self.repo.create(replacement)
                source.revoke(REVOKED_REASON_ROTATED, rotated_by)
                await self.repo.save(source)
        except DomainError as exc:
            return self._finish("rotate", self._from_domain_error(exc))
        except IntegrityError as exc:
            return self._finish("rotate", self._from_integrity_error(exc))

        logger.info(
            "API key rotated",
            extra={
                "api_key_id": str(created.id),
                "previous_api_key_id": str(source.id),
                "api_client_id": str(created.api_client_id),
                "actor": rotated_by,
            },
        )
        response = ApiKeyCreateResponse(
            key=material.plaintext,
            **to_api_key_read(created).model_dump(),
        )
        return self._finish("rotate", Result.ok(response))

    async def set_key_active(
        self,
        api_key_id: uuid.UUID,
        active: bool,
        updated_by: str | None = None,
    ) -> Result[ApiKeyRead]:
        """Flip a key's administrative flag.

        Returns:
            Result with the key, or KEY_NOT_FOUND / KEY_REVOKED /
            ALREADY_ACTIVE / ALREADY_INACTIVE
        """
        operation = "activate" if active else "deactivate"
        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        operation, Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                if active:
                    api_key.activate(updated_by)
                else:
                    api_key.deactivate(updated_by)
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish(operation, self._from_domain_error(exc))

        logger.info(
            f"API key {operation}d",
            extra={"api_key_id": str(api_key.id), "actor": updated_by},
        )
        return self._finish(operation, Result.ok(to_api_key_read(api_key)))

    async def update_permissions(
        self,
        api_key_id: uuid.UUID,
        scopes: list[str],
        updated_by: str | None = None,
    ) -> Result[ApiKeyRead]:
        """Replace a key's scope set.

        The whole set is checked before anything changes.

        Returns:
            Result with the key, or INVALID_PERMISSIONS / KEY_NOT_FOUND /
            KEY_REVOKED
        """
        failure = self._check_scopes(scopes)
        if failure is not None:
            return self._finish("update_permissions", failure)

        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        "update_permissions",
                        Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found"),
                    )
                api_key.replace_permissions(scopes)
                api_key.updated_by = updated_by
                api_key.updated_at = utcnow()
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish("update_permissions", self._from_domain_error(exc))

        logger.info(
            "API key permissions updated",
            extra={"api_key_id": str(api_key.id), "scopes": api_key.scopes, "actor": updated_by},
        )
        return self._finish("update_permissions", Result.ok(to_api_key_read(api_key)))

    async def add_ip_whitelist(
        self,
        api_key_id: uuid.UUID,
        entry: IpWhitelistEntryCreate,
        updated_by: str | None = None,
    ) -> Result[IpWhitelistEntryRead]:
        """Add an address or CIDR range to a key's whitelist.

        Returns:
            Result with the new entry, or INVALID_IP_ADDRESS / KEY_NOT_FOUND
            / KEY_REVOKED / DUPLICATE_IP
        """
        if not is_valid_whitelist_entry(entry.ip_address):
            return self._finish(
                "add_ip",
                Result.fail(
                    ErrorCode.INVALID_IP_ADDRESS,
                    f"Invalid IP address or CIDR range: {entry.ip_address}",
                ),
            )

        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        "add_ip", Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                created = api_key.add_ip(entry.ip_address, entry.description)
                api_key.updated_by = updated_by
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish("add_ip", self._from_domain_error(exc))

        logger.info(
            "IP whitelist entry added",
            extra={"api_key_id": str(api_key.id), "ip_address": created.ip_address, "actor": updated_by},
        )
        return self._finish("add_ip", Result.ok(IpWhitelistEntryRead.model_validate(created)))

    async def remove_ip_whitelist(
        self,
        api_key_id: uuid.UUID,
        entry_id: uuid.UUID,
        updated_by: str | None = None,
    ) -> Result[None]:
        """Remove a whitelist entry from a key.

        Returns:
            Empty result, or KEY_NOT_FOUND / KEY_REVOKED / IP_ENTRY_NOT_FOUND
        """
        try:
            async with self._transaction():
                api_key = await self.repo.get_by_id(api_key_id)
                if api_key is None:
                    return self._finish(
                        "remove_ip", Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
                    )
                api_key.remove_ip_entry(entry_id)
                api_key.updated_by = updated_by
                await self.repo.save(api_key)
        except DomainError as exc:
            return self._finish("remove_ip", self._from_domain_error(exc))

        logger.info(
            "IP whitelist entry removed",
            extra={"api_key_id": str(api_key_id), "entry_id": str(entry_id), "actor": updated_by},
        )
        return self._finish("remove_ip", Result.ok(None))

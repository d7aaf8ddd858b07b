"""Repository for API key operations."""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.models.db.api_client import ApiClient
from src.models.db.api_key import ApiKey


class ApiKeyRepository:
    """Repository for API key database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, api_key_id: uuid.UUID) -> ApiKey | None:
        """Get an API key by ID.

        Keys of soft-deleted clients are not returned.

        Args:
            api_key_id: The API key ID

        Returns:
            The API key if found, None otherwise
        """
        result = await self.session.execute(
            select(ApiKey)
            .join(ApiClient, ApiKey.api_client_id == ApiClient.id)
            .where(
                ApiKey.id == api_key_id,
                ApiClient.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def get_by_hash(self, key_hash: str) -> ApiKey | None:
        """Get an API key by the hash of its plaintext.

        Loads the owning client, permissions and whitelist in the same pass
        so validation needs no further round trips.

        Args:
            key_hash: Hex hash of the presented key

        Returns:
            The API key if found, None otherwise
        """
        result = await self.session.execute(
            select(ApiKey)
            .join(ApiClient, ApiKey.api_client_id == ApiClient.id)
            .where(
                ApiKey.key_hash == key_hash,
                ApiClient.is_deleted == False,  # noqa: E712
            )
            .options(
                selectinload(ApiKey.api_client),
                selectinload(ApiKey.permissions),
                selectinload(ApiKey.ip_whitelist),
            )
        )
        return result.scalar_one_or_none()

    async def list_by_client(self, api_client_id: uuid.UUID) -> list[ApiKey]:
        """Get all API keys for a client, oldest first.

        Args:
            api_client_id: The client ID

        Returns:
            List of API keys for the client
        """
        result = await self.session.execute(
            select(ApiKey)
            .where(ApiKey.api_client_id == api_client_id)
            .order_by(ApiKey.created_at.asc())
        )
        return list(result.scalars().all())

    async def create(self, api_key: ApiKey) -> ApiKey:
        """Create a new API key.

        Args:
            api_key: The API key to create

        Returns:
            The created API key
        """
        self.session.add(api_key)
        await self.session.flush()
        await self.session.refresh(api_key)
        return api_key

    async def save(self, api_key: ApiKey) -> ApiKey:
        """Flush pending changes to a key and its children."""
        await self.session.flush()
        return api_key

    async def update_last_used(
        self,
        api_key_id: uuid.UUID,
        used_at: datetime,
        ip_address: str | None,
    ) -> bool:
        """Move last_used_at / last_used_ip forward for an API key.

        Older timestamps never overwrite newer ones.

        Args:
            api_key_id: The API key ID
            used_at: When the key was used
            ip_address: Caller address

        Returns:
            True if the key was updated
        """
        cursor_result = await self.session.execute(
            update(ApiKey)
            .where(
                ApiKey.id == api_key_id,
                (ApiKey.last_used_at.is_(None)) | (ApiKey.last_used_at < used_at),
            )
            .values(last_used_at=used_at, last_used_ip=ip_address)
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(cursor_result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)

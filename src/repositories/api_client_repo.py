"""Repository for API client operations."""

import uuid

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.pagination import decode_cursor
from src.models.db.api_client import ApiClient


class ApiClientRepository:
    """Repository for API client database operations.

    Soft-deleted clients are invisible to every query here.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, client: ApiClient) -> ApiClient:
        """Create a new API client.

        Args:
            client: The client to create

        Returns:
            The created client
        """
        self.session.add(client)
        await self.session.flush()
        await self.session.refresh(client)
        return client

    async def get_by_id(self, client_id: uuid.UUID) -> ApiClient | None:
        """Get a non-deleted API client by ID, with its keys loaded.

        Args:
            client_id: The client ID

        Returns:
            The client if found, None otherwise
        """
        result = await self.session.execute(
            select(ApiClient).where(
                ApiClient.id == client_id,
                ApiClient.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def name_exists(
        self,
        name: str,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        """Check whether a non-deleted client already uses a name (case-insensitive).

        Args:
            name: Name to check
            exclude_id: Client to ignore, for renames

        Returns:
            True if another client has the name
        """
        conditions = [
            func.lower(ApiClient.name) == name.strip().lower(),
            ApiClient.is_deleted == False,  # noqa: E712
        ]
        if exclude_id is not None:
            conditions.append(ApiClient.id != exclude_id)
        result = await self.session.execute(
            select(func.count()).select_from(ApiClient).where(and_(*conditions))
        )
        return (result.scalar() or 0) > 0

    async def list_clients_cursor(
        self,
        is_active: bool | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[ApiClient]:
        """List clients ordered by name with cursor-based pagination.

        Returns limit + 1 items so caller can determine if more exist.

        Args:
            is_active: Optional activity filter
            cursor: Pagination cursor from previous response
            limit: Maximum number of results (will fetch limit + 1)

        Returns:
            List of clients
        """
        conditions = [ApiClient.is_deleted == False]  # noqa: E712

        if is_active is not None:
            conditions.append(ApiClient.is_active == is_active)

        if cursor:
            after = decode_cursor(cursor)
            conditions.append(
                or_(
                    ApiClient.name > after.name,
                    and_(
                        ApiClient.name == after.name,
                        ApiClient.id > after.id,
                    ),
                )
            )

        query = (
            select(ApiClient)
            .where(and_(*conditions))
            .order_by(ApiClient.name.asc(), ApiClient.id.asc())
            .limit(limit + 1)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def save(self, client: ApiClient) -> ApiClient:
        """Flush pending changes to a client."""
        await self.session.flush()
        return client

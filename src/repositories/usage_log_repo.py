"""Repository for API key usage logs."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.usage_log import ApiKeyUsageLog


class UsageLogRepository:
    """Repository for usage log database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_batch(self, logs: list[ApiKeyUsageLog]) -> list[ApiKeyUsageLog]:
        """Insert multiple usage logs."""
        self.session.add_all(logs)
        await self.session.flush()
        return logs

    @staticmethod
    def _conditions(
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None,
        to_timestamp: datetime | None,
    ) -> list[Any]:
        conditions: list[Any] = [ApiKeyUsageLog.api_key_id == api_key_id]
        if from_timestamp is not None:
            conditions.append(ApiKeyUsageLog.request_timestamp >= from_timestamp)
        if to_timestamp is not None:
            conditions.append(ApiKeyUsageLog.request_timestamp <= to_timestamp)
        return conditions

    async def query(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ApiKeyUsageLog], int]:
        """Get a page of usage logs for a key, newest first.

        Returns:
            Tuple of (logs, total matching count)
        """
        conditions = self._conditions(api_key_id, from_timestamp, to_timestamp)

        count_result = await self.session.execute(
            select(func.count()).select_from(ApiKeyUsageLog).where(and_(*conditions))
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            select(ApiKeyUsageLog)
            .where(and_(*conditions))
            .order_by(ApiKeyUsageLog.request_timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def summarize(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        """Aggregate totals, success/failure split, latency and first/last."""
        conditions = self._conditions(api_key_id, from_timestamp, to_timestamp)
        stmt = select(
            func.count().label("total"),
            func.coalesce(
                func.sum(case((ApiKeyUsageLog.status_code < 400, 1), else_=0)), 0
            ).label("successful"),
            func.coalesce(
                func.sum(case((ApiKeyUsageLog.status_code >= 400, 1), else_=0)), 0
            ).label("failed"),
            func.avg(ApiKeyUsageLog.response_time_ms).label("avg_response_time"),
            func.min(ApiKeyUsageLog.request_timestamp).label("first_request"),
            func.max(ApiKeyUsageLog.request_timestamp).label("last_request"),
        ).where(and_(*conditions))
        row = (await self.session.execute(stmt)).one()
        return {
            "total": row.total or 0,
            "successful": int(row.successful or 0),
            "failed": int(row.failed or 0),
            "avg_response_time": float(row.avg_response_time or 0.0),
            "first_request": row.first_request,
            "last_request": row.last_request,
        }

    async def count_by_endpoint(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
        limit: int = 20,
    ) -> list[tuple[str, int]]:
        """Count requests grouped by endpoint, most used first."""
        conditions = self._conditions(api_key_id, from_timestamp, to_timestamp)
        stmt = (
            select(ApiKeyUsageLog.endpoint, func.count().label("count"))
            .where(and_(*conditions))
            .group_by(ApiKeyUsageLog.endpoint)
            .order_by(text("count DESC"))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def count_by_status(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
    ) -> list[tuple[int, int]]:
        """Count requests grouped by HTTP status code."""
        conditions = self._conditions(api_key_id, from_timestamp, to_timestamp)
        stmt = (
            select(ApiKeyUsageLog.status_code, func.count().label("count"))
            .where(and_(*conditions))
            .group_by(ApiKeyUsageLog.status_code)
            .order_by(ApiKeyUsageLog.status_code)
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def count_since(self, api_key_id: uuid.UUID, since: datetime) -> int:
        """Count requests for a key since a point in time."""
        result = await self.session.execute(
            select(func.count())
            .select_from(ApiKeyUsageLog)
            .where(
                ApiKeyUsageLog.api_key_id == api_key_id,
                ApiKeyUsageLog.request_timestamp >= since,
            )
        )
        return result.scalar() or 0

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete usage logs recorded before a cutoff.

        Returns:
            Number of rows deleted
        """
        cursor_result = await self.session.execute(
            delete(ApiKeyUsageLog).where(ApiKeyUsageLog.request_timestamp < cutoff)
        )
        return getattr(cursor_result, "rowcount", 0) or 0

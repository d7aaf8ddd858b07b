"""Service for usage log queries, statistics and retention."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.result import ErrorCode, Result
from src.models.db.base import utcnow
from src.models.domain.usage import UsageLogPage, UsageLogRead, UsagePruneResult, UsageStats
from src.repositories.api_key_repo import ApiKeyRepository
from src.repositories.usage_log_repo import UsageLogRepository
from src.services.usage_counter import UsageCounter

logger = logging.getLogger(__name__)


class UsageService:
    """Read side of usage accounting."""

    def __init__(
        self,
        session: AsyncSession,
        counter: UsageCounter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.repo = UsageLogRepository(session)
        self.key_repo = ApiKeyRepository(session)
        self.counter = counter

    async def get_usage_logs(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Result[UsageLogPage]:
        """Get a page of usage logs for a key, newest first.

        Args:
            api_key_id: The API key ID
            from_timestamp: Start of time range
            to_timestamp: End of time range
            page: 1-based page number
            page_size: Items per page

        Returns:
            Result with the page, or KEY_NOT_FOUND
        """
        if await self.key_repo.get_by_id(api_key_id) is None:
            return Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")

        logs, total = await self.repo.query(
            api_key_id=api_key_id,
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return Result.ok(
            UsageLogPage(
                items=[UsageLogRead.model_validate(log) for log in logs],
                total=total,
                page=page,
                page_size=page_size,
            )
        )

    async def get_usage_stats(
        self,
        api_key_id: uuid.UUID,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
    ) -> Result[UsageStats]:
        """Aggregate usage statistics for a key over a date range.

        Returns:
            Result with the statistics, or KEY_NOT_FOUND
        """
        api_key = await self.key_repo.get_by_id(api_key_id)
        if api_key is None:
            return Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")

        summary = await self.repo.summarize(api_key_id, from_timestamp, to_timestamp)
        by_endpoint = await self.repo.count_by_endpoint(api_key_id, from_timestamp, to_timestamp)
        by_status = await self.repo.count_by_status(api_key_id, from_timestamp, to_timestamp)
        last_24h = await self.repo.count_since(api_key_id, utcnow() - timedelta(hours=24))

        return Result.ok(
            UsageStats(
                api_key_id=api_key_id,
                total_requests=summary["total"],
                successful_requests=summary["successful"],
                failed_requests=summary["failed"],
                average_response_time_ms=round(summary["avg_response_time"], 2),
                first_request_at=summary["first_request"],
                last_request_at=summary["last_request"],
                last_used_at=api_key.last_used_at,
                requests_by_endpoint=dict(by_endpoint),
                requests_by_status_code=dict(by_status),
                current_minute_requests=await self._current_minute(api_key_id),
                requests_last_24h=last_24h,
            )
        )

    async def _current_minute(self, api_key_id: uuid.UUID) -> int:
        if self.counter is None:
            return 0
        try:
            return await self.counter.get_current(api_key_id)
        except Exception:
            logger.warning(
                "Failed to read usage counter",
                extra={"api_key_id": str(api_key_id)},
                exc_info=True,
            )
            return 0

    async def prune(self, older_than_days: int | None = None) -> UsagePruneResult:
        """Delete usage logs older than the retention window.

        Args:
            older_than_days: Override for usage_retention_days

        Returns:
            Number of rows deleted and the cutoff used
        """
        days = older_than_days or self.settings.usage_retention_days
        cutoff = utcnow() - timedelta(days=days)
        deleted = await self.repo.delete_older_than(cutoff)
        logger.info(
            "Pruned usage logs",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        return UsagePruneResult(deleted=deleted, cutoff=cutoff)

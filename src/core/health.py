"""Health check service for monitoring application dependencies."""

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings

if TYPE_CHECKING:
    from src.services.usage_accountant import UsageAccountant

logger = logging.getLogger(__name__)


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


@dataclass
class HealthCheckResult:
    """Overall health check result."""

    status: HealthStatus
    components: list[ComponentHealth]
    version: str = "0.1.0"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "status": self.status.value,
            "version": self.version,
            "components": {
                c.name: {
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                }
                for c in self.components
            },
        }


# Validation cannot work without the database; the rest only degrade accounting
CRITICAL_COMPONENTS = {"database"}


class HealthCheckService:
    """Service for checking health of application dependencies."""

    def __init__(
        self,
        db_session: AsyncSession | None = None,
        settings: Settings | None = None,
        accountant: "UsageAccountant | None" = None,
        redis_client: Redis | None = None,
    ) -> None:
        """Initialize health check service.

        Args:
            db_session: Database session for DB health checks
            settings: Application settings
            accountant: Usage accountant whose worker is checked
            redis_client: Redis client; created from settings when None
        """
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.accountant = accountant
        self.redis_client = redis_client

    async def check_database(self) -> ComponentHealth:
        """Check database connectivity.

        Returns:
            ComponentHealth for database
        """
        if self.db_session is None:
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message="No database session available",
            )

        start = time.perf_counter()
        try:
            result = await self.db_session.execute(text("SELECT 1"))
            result.scalar()
            latency = (time.perf_counter() - start) * 1000

            return ComponentHealth(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Connected",
                latency_ms=round(latency, 2),
            )
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message=str(e),
            )

    async def check_redis(self) -> ComponentHealth:
        """Check Redis connectivity.

        Returns:
            ComponentHealth for Redis
        """
        start = time.perf_counter()
        owns_client = self.redis_client is None
        redis_client = self.redis_client or Redis.from_url(
            str(self.settings.redis_url),
            socket_timeout=5,
        )
        try:
            await redis_client.ping()
            latency = (time.perf_counter() - start) * 1000

            return ComponentHealth(
                name="redis",
                status=HealthStatus.HEALTHY,
                message="Connected",
                latency_ms=round(latency, 2),
            )
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return ComponentHealth(
                name="redis",
                status=HealthStatus.UNHEALTHY,
                message=str(e),
            )
        finally:
            if owns_client:
                await redis_client.aclose()

    def check_usage_worker(self) -> ComponentHealth:
        """Check that the usage accounting worker is running.

        Returns:
            ComponentHealth for the usage worker
        """
        if self.accountant is None or not self.accountant.is_running:
            return ComponentHealth(
                name="usage_worker",
                status=HealthStatus.UNHEALTHY,
                message="Usage accountant not running",
            )
        return ComponentHealth(
            name="usage_worker",
            status=HealthStatus.HEALTHY,
            message=f"{self.accountant.pending} events pending",
        )

    async def check_all(self) -> HealthCheckResult:
        """Check all dependencies and return overall health.

        Returns:
            HealthCheckResult with all component statuses
        """
        components = [
            await self.check_database(),
            await self.check_redis(),
            self.check_usage_worker(),
        ]

        if all(c.status == HealthStatus.HEALTHY for c in components):
            overall_status = HealthStatus.HEALTHY
        elif any(
            c.status == HealthStatus.UNHEALTHY and c.name in CRITICAL_COMPONENTS
            for c in components
        ):
            overall_status = HealthStatus.UNHEALTHY
        else:
            overall_status = HealthStatus.DEGRADED

        return HealthCheckResult(
            status=overall_status,
            components=components,
        )

    async def check_liveness(self) -> ComponentHealth:
        """Simple liveness check (is the app running).

        Returns:
            ComponentHealth for liveness
        """
        return ComponentHealth(
            name="liveness",
            status=HealthStatus.HEALTHY,
            message="Application is running",
        )

    async def check_readiness(self) -> HealthCheckResult:
        """Check if application is ready to serve traffic.

        Only the database gates readiness; validation cannot run without it.

        Returns:
            HealthCheckResult
        """
        database = await self.check_database()
        return HealthCheckResult(status=database.status, components=[database])

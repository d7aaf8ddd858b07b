"""Per-minute request counters in Redis."""

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime

from redis.asyncio import Redis

from src.core.config import Settings, get_settings
from src.models.db.base import utcnow

logger = logging.getLogger(__name__)


class UsageCounter:
    """Fixed-window request counters keyed by API key and minute.

    Counters are consumed by an external rate limiter; nothing here
    enforces a limit. Keys expire on their own shortly after the window
    closes.
    """

    KEY_PREFIX = "usage"

    def __init__(
        self,
        redis_client: Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the usage counter.

        Args:
            redis_client: Redis client instance. If None, creates from settings.
            settings: Application settings. Defaults to get_settings().
        """
        self.settings = settings or get_settings()
        self._redis: Redis | None = redis_client
        self.ttl_seconds = self.settings.usage_counter_ttl_seconds

    @property
    def redis(self) -> Redis:
        """Get or create Redis client (lazy initialization)."""
        if self._redis is None:
            self._redis = Redis.from_url(str(self.settings.redis_url))
        return self._redis

    def _make_key(self, api_key_id: uuid.UUID | str, at: datetime) -> str:
        """Generate a Redis key for a key's minute window.

        Args:
            api_key_id: The API key ID
            at: Any instant inside the window

        Returns:
            Redis key string, e.g. ``usage:<id>:202401311530``
        """
        return f"{self.KEY_PREFIX}:{api_key_id}:{at:%Y%m%d%H%M}"

    async def increment(
        self,
        api_key_id: uuid.UUID | str,
        at: datetime | None = None,
        amount: int = 1,
    ) -> int:
        """Increment the counter for the minute containing ``at``.

        Returns:
            New count value
        """
        key = self._make_key(api_key_id, at or utcnow())

        pipe = self.redis.pipeline()
        pipe.incrby(key, amount)
        pipe.expire(key, self.ttl_seconds)
        results = await pipe.execute()

        return int(results[0])

    async def increment_many(self, counts: Mapping[tuple[uuid.UUID, datetime], int]) -> None:
        """Apply several increments in one round trip.

        Args:
            counts: Increment per (api_key_id, minute) pair
        """
        if not counts:
            return
        pipe = self.redis.pipeline()
        for (api_key_id, minute), amount in counts.items():
            key = self._make_key(api_key_id, minute)
            pipe.incrby(key, amount)
            pipe.expire(key, self.ttl_seconds)
        await pipe.execute()

    async def get_current(self, api_key_id: uuid.UUID | str, now: datetime | None = None) -> int:
        """Get the request count for the current minute without incrementing."""
        value = await self.redis.get(self._make_key(api_key_id, now or utcnow()))
        return int(value) if value else 0

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

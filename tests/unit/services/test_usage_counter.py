"""Tests for per-minute usage counters."""

import uuid
from collections import Counter
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.services.usage_counter import UsageCounter


@pytest.fixture
def mock_pipeline() -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[7, True])
    return pipe


@pytest.fixture
def mock_redis(mock_pipeline: MagicMock) -> MagicMock:
    """Create mock async Redis client."""
    redis = MagicMock()
    redis.pipeline.return_value = mock_pipeline
    redis.get = AsyncMock(return_value=None)
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis


@pytest.fixture
def mock_settings() -> MagicMock:
    """Create mock settings."""
    settings = MagicMock()
    settings.redis_url = "redis://localhost:6379"
    settings.usage_counter_ttl_seconds = 120
    return settings


@pytest.fixture
def counter(mock_redis: MagicMock, mock_settings: MagicMock) -> UsageCounter:
    return UsageCounter(redis_client=mock_redis, settings=mock_settings)


class TestUsageCounter:
    """Tests for UsageCounter."""

    def test_make_key(self, counter: UsageCounter) -> None:
        """Test key generation truncates to the minute."""
        key_id = uuid.uuid4()
        at = datetime(2024, 1, 31, 15, 30, 45, tzinfo=UTC)

        assert counter._make_key(key_id, at) == f"usage:{key_id}:202401311530"

    async def test_increment(
        self, counter: UsageCounter, mock_pipeline: MagicMock
    ) -> None:
        """Test increment sets an expiry alongside the count."""
        key_id = uuid.uuid4()
        at = datetime(2024, 1, 31, 15, 30, tzinfo=UTC)

        count = await counter.increment(key_id, at)

        assert count == 7
        mock_pipeline.incrby.assert_called_once_with(f"usage:{key_id}:202401311530", 1)
        mock_pipeline.expire.assert_called_once_with(f"usage:{key_id}:202401311530", 120)

    async def test_increment_many_single_round_trip(
        self, counter: UsageCounter, mock_pipeline: MagicMock
    ) -> None:
        first, second = uuid.uuid4(), uuid.uuid4()
        minute = datetime(2024, 1, 31, 15, 30, tzinfo=UTC)

        await counter.increment_many(Counter({(first, minute): 3, (second, minute): 1}))

        assert mock_pipeline.incrby.call_count == 2
        assert mock_pipeline.expire.call_count == 2
        mock_pipeline.execute.assert_awaited_once()

    async def test_increment_many_empty(
        self, counter: UsageCounter, mock_redis: MagicMock
    ) -> None:
        await counter.increment_many({})
        mock_redis.pipeline.assert_not_called()

    async def test_get_current(self, counter: UsageCounter, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = b"12"

        assert await counter.get_current(uuid.uuid4()) == 12

    async def test_get_current_missing(self, counter: UsageCounter) -> None:
        assert await counter.get_current(uuid.uuid4()) == 0

    async def test_close(self, counter: UsageCounter, mock_redis: MagicMock) -> None:
        await counter.close()

        mock_redis.aclose.assert_awaited_once()
        await counter.close()
        mock_redis.aclose.assert_awaited_once()

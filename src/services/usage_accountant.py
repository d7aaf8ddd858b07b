"""Asynchronous usage accounting for validated API key calls."""

import asyncio
import contextlib
import logging
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.metrics import (
    usage_events_dropped_total,
    usage_events_enqueued_total,
    usage_events_written_total,
    usage_flush_failures_total,
    usage_queue_depth,
)
from src.models.db.base import utcnow
from src.models.db.usage_log import ApiKeyUsageLog
from src.repositories.api_key_repo import ApiKeyRepository
from src.repositories.usage_log_repo import UsageLogRepository
from src.services.usage_counter import UsageCounter

logger = logging.getLogger(__name__)


class UsageEventKind(StrEnum):
    """Kinds of usage events."""

    LAST_USED = "last_used"
    REQUEST = "request"


@dataclass(frozen=True)
class LastUsedEvent:
    """A successful validation; moves last-used forward and bumps the minute counter."""

    api_key_id: uuid.UUID
    used_at: datetime
    ip_address: str | None

    kind = UsageEventKind.LAST_USED


@dataclass(frozen=True)
class RequestEvent:
    """A completed request made with a validated key."""

    api_key_id: uuid.UUID
    request_timestamp: datetime
    ip_address: str | None
    endpoint: str
    http_method: str
    status_code: int
    response_time_ms: int

    kind = UsageEventKind.REQUEST

    @property
    def outcome(self) -> str:
        return "success" if self.status_code < 400 else "failure"


UsageEvent = LastUsedEvent | RequestEvent


class UsageAccountant:
    """Buffers usage events and persists them off the request path.

    Producers never wait: a full queue drops the event and counts it. One
    background task drains the queue in batches and writes each batch in
    its own session. Write failures are logged and counted, never raised.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        counter: UsageCounter | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the accountant.

        Args:
            session_factory: Callable returning a new AsyncSession
            counter: Redis per-minute counters; skipped when None
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._counter = counter
        self._queue: asyncio.Queue[UsageEvent] = asyncio.Queue(
            maxsize=self.settings.usage_queue_max_size
        )
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the background writer. Must be called inside a running loop."""
        if self.is_running:
            return
        self._closed = False
        self._task = asyncio.create_task(self._run(), name="usage-accountant")
        logger.info("Usage accountant started")

    def mark_used(
        self,
        api_key_id: uuid.UUID,
        ip_address: str | None,
        used_at: datetime | None = None,
    ) -> bool:
        """Record a successful validation without blocking.

        Returns:
            True if the event was queued, False if it was dropped
        """
        return self._offer(LastUsedEvent(api_key_id, used_at or utcnow(), ip_address))

    def record_request(self, event: RequestEvent) -> bool:
        """Record a completed integration request without blocking.

        Returns:
            True if the event was queued, False if it was dropped
        """
        return self._offer(event)

    def _offer(self, event: UsageEvent) -> bool:
        if self._closed:
            usage_events_dropped_total.labels(kind=event.kind).inc()
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            usage_events_dropped_total.labels(kind=event.kind).inc()
            logger.warning(
                "Usage queue full, dropping event",
                extra={"kind": event.kind.value, "api_key_id": str(event.api_key_id)},
            )
            return False
        usage_events_enqueued_total.labels(kind=event.kind).inc()
        usage_queue_depth.set(self._queue.qsize())
        return True

    async def _run(self) -> None:
        while True:
            batch = await self._next_batch()
            try:
                await self.flush(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()
                usage_queue_depth.set(self._queue.qsize())

    async def _next_batch(self) -> list[UsageEvent]:
        """Wait for one event, then gather more until the batch fills or the interval ends."""
        batch = [await self._queue.get()]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.usage_flush_interval_seconds

        while len(batch) < self.settings.usage_batch_size:
            try:
                batch.append(self._queue.get_nowait())
                continue
            except asyncio.QueueEmpty:
                pass
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                batch.append(await asyncio.wait_for(self._queue.get(), timeout=remaining))
            except TimeoutError:
                break
        return batch

    async def flush(self, batch: list[UsageEvent]) -> None:
        """Persist a batch of events.

        Last-used updates are coalesced to the newest event per key.
        """
        latest: dict[uuid.UUID, LastUsedEvent] = {}
        minute_counts: Counter[tuple[uuid.UUID, datetime]] = Counter()
        requests: list[RequestEvent] = []

        for event in batch:
            if isinstance(event, LastUsedEvent):
                current = latest.get(event.api_key_id)
                if current is None or event.used_at > current.used_at:
                    latest[event.api_key_id] = event
                minute = event.used_at.replace(second=0, microsecond=0)
                minute_counts[(event.api_key_id, minute)] += 1
            else:
                requests.append(event)

        await self._write_database(latest, requests)
        await self._write_counters(minute_counts)

    async def _write_database(
        self,
        latest: dict[uuid.UUID, LastUsedEvent],
        requests: list[RequestEvent],
    ) -> None:
        if not latest and not requests:
            return
        try:
            async with self._session_factory() as session:
                key_repo = ApiKeyRepository(session)
                for event in latest.values():
                    await key_repo.update_last_used(
                        event.api_key_id, event.used_at, event.ip_address
                    )
                if requests:
                    await UsageLogRepository(session).create_batch(
                        [
                            ApiKeyUsageLog(
                                api_key_id=e.api_key_id,
                                request_timestamp=e.request_timestamp,
                                ip_address=e.ip_address,
                                outcome=e.outcome,
                                endpoint=e.endpoint[:500],
                                http_method=e.http_method,
                                status_code=e.status_code,
                                response_time_ms=e.response_time_ms,
                            )
                            for e in requests
                        ]
                    )
                await session.commit()
        except Exception:
            usage_flush_failures_total.inc()
            logger.warning(
                "Failed to persist usage batch",
                extra={"last_used": len(latest), "requests": len(requests)},
                exc_info=True,
            )
            return

        usage_events_written_total.labels(kind=UsageEventKind.LAST_USED).inc(len(latest))
        usage_events_written_total.labels(kind=UsageEventKind.REQUEST).inc(len(requests))

    async def _write_counters(self, minute_counts: Counter[tuple[uuid.UUID, datetime]]) -> None:
        if self._counter is None or not minute_counts:
            return
        try:
            await self._counter.increment_many(minute_counts)
        except Exception:
            logger.warning("Failed to update usage counters", exc_info=True)

    async def stop(self) -> None:
        """Stop accepting events, drain within the shutdown time box, then cancel."""
        self._closed = True
        if self._task is None:
            return

        if not self._task.done():
            try:
                async with asyncio.timeout(self.settings.usage_shutdown_timeout_seconds):
                    await self._queue.join()
            except TimeoutError:
                logger.warning(
                    "Usage queue not drained before shutdown",
                    extra={"pending": self._queue.qsize()},
                )

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Usage accountant stopped")

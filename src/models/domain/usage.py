"""Usage log and statistics schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UsageLogRead(BaseModel):
    """A single usage log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    api_key_id: UUID
    request_timestamp: datetime
    ip_address: str | None = None
    outcome: str
    endpoint: str
    http_method: str
    status_code: int
    response_time_ms: int


class UsageLogPage(BaseModel):
    """A page of usage logs."""

    items: list[UsageLogRead]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


class UsageStats(BaseModel):
    """Aggregate usage statistics for an API key over a date range."""

    api_key_id: UUID
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    first_request_at: datetime | None = None
    last_request_at: datetime | None = None
    last_used_at: datetime | None = None
    requests_by_endpoint: dict[str, int] = Field(default_factory=dict)
    requests_by_status_code: dict[int, int] = Field(default_factory=dict)
    current_minute_requests: int = 0
    requests_last_24h: int = 0


class UsagePruneResult(BaseModel):
    """Outcome of pruning old usage logs."""

    deleted: int
    cutoff: datetime

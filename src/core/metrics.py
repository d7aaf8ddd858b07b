"""Prometheus metrics for key validation, lifecycle and usage accounting."""

from prometheus_client import Counter, Gauge

# Validation
api_key_validations_total = Counter(
    "api_key_validations_total",
    "API key validation attempts by outcome",
    ["outcome"],
)

ip_whitelist_config_errors_total = Counter(
    "ip_whitelist_config_errors_total",
    "Malformed IP whitelist entries encountered during validation",
)

# Lifecycle
key_lifecycle_operations_total = Counter(
    "key_lifecycle_operations_total",
    "Key and client lifecycle operations by outcome",
    ["operation", "outcome"],
)

# Usage accounting
usage_events_enqueued_total = Counter(
    "usage_events_enqueued_total",
    "Usage events accepted by the usage queue",
    ["kind"],
)

usage_events_dropped_total = Counter(
    "usage_events_dropped_total",
    "Usage events dropped because the queue was full or closed",
    ["kind"],
)

usage_events_written_total = Counter(
    "usage_events_written_total",
    "Usage events persisted by the usage worker",
    ["kind"],
)

usage_flush_failures_total = Counter(
    "usage_flush_failures_total",
    "Usage batches that failed to persist",
)

usage_queue_depth = Gauge(
    "usage_queue_depth",
    "Events waiting in the usage queue",
)

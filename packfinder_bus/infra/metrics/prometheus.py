"""Prometheus metrics for the outbox publisher, consumers and retention job."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and embedding applications control exposition
REGISTRY = CollectorRegistry()

DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# Outbox publisher
outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Outbox rows acknowledged by the broker",
    ["event_type"],
    registry=REGISTRY,
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Broker send failures recorded on outbox rows",
    ["event_type"],
    registry=REGISTRY,
)

outbox_events_dead_lettered_total = Counter(
    "outbox_events_dead_lettered_total",
    "Outbox rows archived to the DLQ",
    ["event_type", "reason"],
    registry=REGISTRY,
)

outbox_batch_duration_seconds = Histogram(
    "outbox_batch_duration_seconds",
    "Duration of one publisher cycle (lease, send, mark, commit)",
    ["worker"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_batch_size = Histogram(
    "outbox_batch_size",
    "Rows leased per publisher cycle",
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)

outbox_cycle_errors_total = Counter(
    "outbox_cycle_errors_total",
    "Publisher cycles rolled back because of a storage error",
    ["worker"],
    registry=REGISTRY,
)

outbox_pending_events = Gauge(
    "outbox_pending_events",
    "Unpublished outbox rows observed by the last pending count",
    registry=REGISTRY,
)

outbox_retention_deleted_total = Counter(
    "outbox_retention_deleted_total",
    "Published outbox rows deleted by the retention job",
    registry=REGISTRY,
)

# Consumers
consumer_messages_total = Counter(
    "consumer_messages_total",
    "Messages seen by consumer runtimes, by outcome",
    ["consumer", "event_type", "outcome"],
    registry=REGISTRY,
)

consumer_handler_duration_seconds = Histogram(
    "consumer_handler_duration_seconds",
    "Consumer handler execution time",
    ["consumer", "event_type"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Retry helper
retry_attempts_total = Counter(
    "retry_attempts_total",
    "Total number of retry attempts",
    ["operation", "attempt_number"],
    registry=REGISTRY,
)

retry_exhausted_total = Counter(
    "retry_exhausted_total",
    "Total number of operations that exhausted all retries",
    ["operation"],
    registry=REGISTRY,
)

retry_success_after_failure_total = Counter(
    "retry_success_after_failure_total",
    "Operations that succeeded after at least one retry",
    ["operation", "attempts_needed"],
    registry=REGISTRY,
)

"""Helper functions that record bus events into the Prometheus metrics.

Call sites use these instead of touching the metric objects so label
names stay consistent.
"""

from __future__ import annotations

from packfinder_bus.infra.metrics import prometheus as m


def track_published(event_type: str) -> None:
    m.outbox_events_published_total.labels(event_type=event_type).inc()


def track_publish_failure(event_type: str) -> None:
    m.outbox_publish_failures_total.labels(event_type=event_type).inc()


def track_dead_lettered(event_type: str, reason: str) -> None:
    """Track a row archived to the DLQ.

    Args:
        event_type: Event type of the row
        reason: ``max_attempts`` (attempts exhausted) or ``non_retryable`` (undecodable payload)
    """
    m.outbox_events_dead_lettered_total.labels(event_type=event_type, reason=reason).inc()


def track_batch(worker: int, size: int, duration: float) -> None:
    m.outbox_batch_size.observe(size)
    m.outbox_batch_duration_seconds.labels(worker=str(worker)).observe(duration)


def track_cycle_error(worker: int) -> None:
    m.outbox_cycle_errors_total.labels(worker=str(worker)).inc()


def set_pending(count: int) -> None:
    m.outbox_pending_events.set(count)


def track_retention_deleted(count: int) -> None:
    if count > 0:
        m.outbox_retention_deleted_total.inc(count)


def track_consumer_message(consumer: str, event_type: str, outcome: str) -> None:
    """Track one message outcome.

    Args:
        consumer: Consumer name
        event_type: Event type attribute of the message ("" when missing)
        outcome: One of processed, duplicate, skipped, dropped, retried
    """
    m.consumer_messages_total.labels(
        consumer=consumer,
        event_type=event_type,
        outcome=outcome,
    ).inc()


def observe_handler_duration(consumer: str, event_type: str, duration: float) -> None:
    m.consumer_handler_duration_seconds.labels(
        consumer=consumer,
        event_type=event_type,
    ).observe(duration)


def track_retry_attempt(operation: str, attempt_number: int) -> None:
    """Track a retry attempt.

    Args:
        operation: Name of the operation being retried
        attempt_number: Current attempt number (1-indexed)
    """
    m.retry_attempts_total.labels(
        operation=operation,
        attempt_number=str(attempt_number),
    ).inc()


def track_retry_exhausted(operation: str) -> None:
    m.retry_exhausted_total.labels(operation=operation).inc()


def track_retry_success(operation: str, attempts_needed: int) -> None:
    m.retry_success_after_failure_total.labels(
        operation=operation,
        attempts_needed=str(attempts_needed),
    ).inc()

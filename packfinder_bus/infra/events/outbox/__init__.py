"""Transactional outbox: storage, dead-letter archive, publisher and retention.

Usage:
    from packfinder_bus.infra.events.outbox import OutboxPublisher, OutboxRetentionJob

    publisher = OutboxPublisher(broker)
    await publisher.start()
"""

from packfinder_bus.infra.events.outbox.dlq import DLQRepository
from packfinder_bus.infra.events.outbox.models import DLQEntry, DLQReason, OutboxEvent
from packfinder_bus.infra.events.outbox.processor import OutboxPublisher
from packfinder_bus.infra.events.outbox.repository import OutboxRepository
from packfinder_bus.infra.events.outbox.retention import OutboxRetentionJob

__all__ = [
    "DLQEntry",
    "DLQReason",
    "DLQRepository",
    "OutboxEvent",
    "OutboxPublisher",
    "OutboxRepository",
    "OutboxRetentionJob",
]

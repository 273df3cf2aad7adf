"""Outbox and dead-letter tables for the transactional outbox pattern.

Events are written to ``event_outbox`` in the same transaction as the business
change, so either both are committed or neither is. The publisher leases
unpublished rows, ships them to the broker and stamps ``published_at``. Rows
that exhaust the terminal attempt threshold (or whose payload cannot be
decoded) are copied into ``event_outbox_dlq`` for operators.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, Integer, LargeBinary, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from packfinder_bus.core.database.base import (
    Base,
    CreatedAtMixin,
    UTCDateTime,
    UUIDPKMixin,
    UUIDv7PKMixin,
    utcnow,
)
from packfinder_bus.core.events.types import IDEMPOTENT_EVENT_TYPES


class DLQReason(StrEnum):
    """Why a row was archived."""

    MAX_ATTEMPTS = "max_attempts"
    NON_RETRYABLE = "non_retryable"


_idempotent_types = ", ".join(f"'{event_type}'" for event_type in sorted(IDEMPOTENT_EVENT_TYPES))
_EVENT_KEY_PREDICATE = f"event_type IN ({_idempotent_types})"


class OutboxEvent(Base, UUIDv7PKMixin, CreatedAtMixin):
    """One staged domain event.

    Attributes:
        id: UUID v7 primary key, time-sortable
        event_type: Dotted event type (e.g. "order.decided")
        aggregate_type: Aggregate the event describes (e.g. "vendor_order")
        aggregate_id: Aggregate identifier
        payload: Envelope JSON bytes, shipped to the broker unchanged
        published_at: When the broker acknowledged the send; never cleared
        attempt_count: Failed publish attempts; never decreases
        last_error: Last broker error, truncated to 1024 bytes
    """

    __tablename__ = "event_outbox"

    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Dotted event type identifier",
    )
    aggregate_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Aggregate type (e.g. vendor_order)",
    )
    aggregate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Aggregate identifier",
    )
    payload: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        comment="Envelope JSON bytes",
    )
    published_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the event was acknowledged by the broker",
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Number of failed publish attempts",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last publish error, truncated",
    )

    __table_args__ = (
        # Lease query: unpublished rows in creation order
        Index(
            "ix_event_outbox_pending",
            "published_at",
            "created_at",
            "id",
        ),
        Index(
            "ix_event_outbox_aggregate",
            "aggregate_type",
            "aggregate_id",
        ),
        # At most one row per key for events that describe a one-time fact
        Index(
            "ux_event_outbox_event_key",
            "event_type",
            "aggregate_type",
            "aggregate_id",
            unique=True,
            postgresql_where=_EVENT_KEY_PREDICATE,
            sqlite_where=_EVENT_KEY_PREDICATE,
        ),
    )

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def __repr__(self) -> str:
        status = "published" if self.is_published else f"pending (attempts={self.attempt_count})"
        return f"OutboxEvent(id={self.id}, event_type={self.event_type!r}, status={status})"


class DLQEntry(Base, UUIDPKMixin, CreatedAtMixin):
    """Archived terminal failure, unique per envelope event id.

    Entries are never retried automatically; operators inspect them with
    ``packfinder-bus dlq``.
    """

    __tablename__ = "event_outbox_dlq"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
        comment="Envelope event id (outbox row id when the envelope is unreadable)",
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    payload: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        comment="Envelope bytes as stored in the outbox",
    )
    error_reason: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=DLQReason.MAX_ATTEMPTS,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last error, truncated to 1024 bytes",
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (Index("ix_event_outbox_dlq_failed_at", "failed_at"),)

    def __repr__(self) -> str:
        return (
            f"DLQEntry(event_id={self.event_id}, event_type={self.event_type!r}, "
            f"reason={self.error_reason})"
        )


__all__ = ["DLQEntry", "DLQReason", "OutboxEvent"]

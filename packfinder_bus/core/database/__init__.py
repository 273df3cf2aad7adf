"""Database primitives shared by the outbox and the business tables."""

from packfinder_bus.core.database.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UTCDateTime,
    UUIDPKMixin,
    UUIDv7PKMixin,
    utcnow,
    uuid7,
)
from packfinder_bus.core.database.repository import BaseRepository, require_session, storage_errors

__all__ = [
    "Base",
    "BaseRepository",
    "CreatedAtMixin",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDPKMixin",
    "UUIDv7PKMixin",
    "require_session",
    "storage_errors",
    "utcnow",
    "uuid7",
]

"""Repository for the dead-letter archive."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.database.repository import BaseRepository, require_session
from packfinder_bus.core.exceptions import truncate_error
from packfinder_bus.infra.events.outbox.models import DLQEntry

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_LIST_LIMIT = 50


class DLQRepository(BaseRepository[DLQEntry]):
    """Terminal failures, one entry per envelope event id."""

    def __init__(self) -> None:
        super().__init__(DLQEntry)

    async def insert(self, session: AsyncSession | None, entry: DLQEntry) -> DLQEntry:
        """Archive an entry in the caller's transaction.

        The error message is truncated to 1024 bytes and ``failed_at``
        defaults to now.

        Raises:
            InvalidArgError: If no session is given.
        """
        session = require_session(session)
        if entry.error_message is not None:
            entry.error_message = truncate_error(entry.error_message)
        if entry.failed_at is None:
            entry.failed_at = utcnow()
        return await self.create(session, entry)

    async def find_by_event_id(self, session: AsyncSession, event_id: uuid.UUID) -> DLQEntry | None:
        stmt = select(DLQEntry).where(DLQEntry.event_id == event_id)
        result = await require_session(session).execute(stmt)
        return result.scalar_one_or_none()

    async def list(
        self,
        session: AsyncSession,
        *,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> Sequence[DLQEntry]:
        """Most recent failures first. A non-positive limit falls back to 50."""
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        stmt = (
            select(DLQEntry)
            .order_by(DLQEntry.failed_at.desc(), DLQEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await require_session(session).execute(stmt)
        return result.scalars().all()


__all__ = ["DEFAULT_LIST_LIMIT", "DLQRepository"]

"""Repository for outbox rows.

Provides methods for:
- Inserting rows inside the caller's business transaction
- Leasing unpublished rows with ``FOR UPDATE SKIP LOCKED``
- Marking rows published, failed or terminal
- Event-key lookups for ``emit_if_absent``
- Retention deletes of old published rows

Every method takes the caller's session; nothing here commits.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func, select, update

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.database.repository import BaseRepository, require_session
from packfinder_bus.core.exceptions import truncate_error
from packfinder_bus.infra.events.outbox.models import OutboxEvent

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


class OutboxRepository(BaseRepository[OutboxEvent]):
    """Outbox store operations on top of the generic repository."""

    def __init__(self) -> None:
        super().__init__(OutboxEvent)

    async def insert(self, session: AsyncSession | None, row: OutboxEvent) -> OutboxEvent:
        """Stage a row in the caller's transaction.

        Raises:
            InvalidArgError: If no session is given.
        """
        return await self.create(require_session(session), row)

    async def fetch_batch(
        self,
        session: AsyncSession,
        *,
        limit: int,
        max_attempts: int = 0,
    ) -> Sequence[OutboxEvent]:
        """Lease up to ``limit`` unpublished rows.

        Rows are returned oldest first by ``(created_at, id)``. Rows locked by
        another transaction are skipped, never waited on. When
        ``max_attempts > 0`` rows that already reached it are excluded.

        Args:
            session: Open transaction; the row locks are held until it ends
            limit: Maximum number of rows
            max_attempts: Exclusive attempt ceiling, 0 for none
        """
        stmt = select(OutboxEvent).where(OutboxEvent.published_at.is_(None))
        if max_attempts > 0:
            stmt = stmt.where(OutboxEvent.attempt_count < max_attempts)
        stmt = (
            stmt.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await require_session(session).execute(stmt)
        return result.scalars().all()

    async def mark_published(self, session: AsyncSession, row_id: uuid.UUID) -> None:
        """Stamp ``published_at``; a second call keeps the first timestamp."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == row_id, OutboxEvent.published_at.is_(None))
            .values(published_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await require_session(session).execute(stmt)

    async def mark_failed(self, session: AsyncSession, row_id: uuid.UUID, error: str | BaseException) -> None:
        """Record a failed attempt."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == row_id)
            .values(
                attempt_count=OutboxEvent.attempt_count + 1,
                last_error=truncate_error(error),
            )
            .execution_options(synchronize_session=False)
        )
        await require_session(session).execute(stmt)

    async def mark_terminal(
        self,
        session: AsyncSession,
        row_id: uuid.UUID,
        error: str | BaseException,
        terminal_attempts: int,
    ) -> None:
        """Raise ``attempt_count`` to the terminal threshold so the row is never leased again."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == row_id)
            .values(
                attempt_count=case(
                    (OutboxEvent.attempt_count < terminal_attempts, terminal_attempts),
                    else_=OutboxEvent.attempt_count,
                ),
                last_error=truncate_error(error),
            )
            .execution_options(synchronize_session=False)
        )
        await require_session(session).execute(stmt)

    async def exists(
        self,
        session: AsyncSession,
        event_type: str,
        aggregate_type: str,
        aggregate_id: uuid.UUID,
    ) -> bool:
        """Whether a row with this event key is already stored, published or not."""
        stmt = (
            select(OutboxEvent.id)
            .where(
                OutboxEvent.event_type == str(event_type),
                OutboxEvent.aggregate_type == str(aggregate_type),
                OutboxEvent.aggregate_id == aggregate_id,
            )
            .limit(1)
        )
        result = await require_session(session).execute(stmt)
        return result.scalar_one_or_none() is not None

    async def delete_published_before(
        self,
        session: AsyncSession,
        cutoff: datetime,
        min_attempts: int = 0,
    ) -> int:
        """Delete published rows older than ``cutoff``.

        Unpublished rows are never touched.

        Args:
            session: Database session
            cutoff: Rows with ``published_at < cutoff`` are deleted
            min_attempts: When > 0, only rows with at least this many attempts

        Returns:
            Number of rows deleted
        """
        stmt = delete(OutboxEvent).where(
            OutboxEvent.published_at.is_not(None),
            OutboxEvent.published_at < cutoff,
        )
        if min_attempts > 0:
            stmt = stmt.where(OutboxEvent.attempt_count >= min_attempts)
        result = await require_session(session).execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_pending(self, session: AsyncSession) -> int:
        """Count rows waiting to be published. Useful for monitoring."""
        stmt = select(func.count()).select_from(OutboxEvent).where(OutboxEvent.published_at.is_(None))
        result = await require_session(session).execute(stmt)
        return result.scalar_one()

    async def count_terminal(self, session: AsyncSession, terminal_attempts: int) -> int:
        """Count unpublished rows that reached the terminal threshold."""
        if terminal_attempts <= 0:
            return 0
        stmt = (
            select(func.count())
            .select_from(OutboxEvent)
            .where(
                OutboxEvent.published_at.is_(None),
                OutboxEvent.attempt_count >= terminal_attempts,
            )
        )
        result = await require_session(session).execute(stmt)
        return result.scalar_one()


__all__ = ["OutboxRepository"]

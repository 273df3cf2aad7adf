"""Minimal generic repository for SQLAlchemy models.

Session is always explicit: every method takes the caller's ``AsyncSession``
so repository calls join whatever transaction the caller opened with
``TransactionRunner.with_tx``. For queries not covered here, subclasses use
the session directly.

Example:
    class OrderRepository(BaseRepository[VendorOrder]):
        async def get_for_update(self, session, order_id):
            stmt = select(VendorOrder).where(VendorOrder.id == order_id).with_for_update()
            return (await session.execute(stmt)).scalar_one_or_none()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from packfinder_bus.core.exceptions import DependencyError, InvalidArgError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


def require_session(session: AsyncSession | None) -> AsyncSession:
    """Reject a missing transaction handle."""
    if session is None:
        msg = "transaction is required"
        raise InvalidArgError(msg)
    return session


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Report SQLAlchemy failures inside the block as ``DependencyError(operation)``.

    Example:
        with storage_errors("load vendor order"):
            order = await session.get(VendorOrder, order_id)
    """
    try:
        yield
    except SQLAlchemyError as e:
        raise DependencyError(operation, extra={"error_type": type(e).__name__}) from e


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Generic CRUD helpers bound to one model class.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - list(session, limit, offset) -> Sequence[T]
        - create(session, instance) -> T
    """

    __slots__ = ("model", "_logger")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value

        Returns:
            Entity if found, None otherwise
        """
        return await require_session(session).get(self.model, id)

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError."""
        instance = await self.get(session, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={"entity": self.model.__name__, "id": str(id)},
            )
            msg = f"{self.model.__name__} not found"
            raise NotFoundError(msg, extra={"id": str(id)})
        return instance

    async def list(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        stmt = select(self.model).limit(limit).offset(offset)
        result = await require_session(session).execute(stmt)
        return result.scalars().all()

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add an entity to the session and flush so defaults are populated.

        The caller's transaction commits it.
        """
        session = require_session(session)
        session.add(instance)
        await session.flush()
        return instance


__all__ = ["BaseRepository", "require_session", "storage_errors"]

"""Database engine, session factory and the transactional runner.

``TransactionRunner.with_tx`` is the single boundary inside which outbox rows
are written: the business mutation and the event commit together or not at
all.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Concatenate, ParamSpec, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from packfinder_bus.core.exceptions import BusError, DependencyError
from packfinder_bus.core.settings import get_db_settings
from packfinder_bus.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_FALLBACK_URL = "sqlite+aiosqlite:///./packfinder.db"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the settings every component relies on."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def enable_sqlite_savepoints(engine: AsyncEngine) -> AsyncEngine:
    """Let the sqlite driver honour SAVEPOINT and explicit BEGIN.

    pysqlite opens transactions lazily and breaks ``begin_nested``; taking
    over BEGIN restores the semantics ``emit_if_absent`` relies on.
    """
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


def get_engine() -> AsyncEngine:
    """Create (once) and return the process-wide async engine."""
    global _engine

    if _engine is None:
        db_settings = get_db_settings()
        if db_settings.is_configured:
            _engine = create_async_engine(db_settings.url, **db_settings.sqlalchemy_engine_kwargs())
        else:
            _engine = create_async_engine(_FALLBACK_URL, echo=db_settings.echo)
        enable_sqlite_savepoints(_engine)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed.
    """
    async with get_session_factory()() as session:
        yield session


class TransactionRunner:
    """Run a coroutine inside one atomic database transaction.

    The callable receives the open ``AsyncSession`` as its first argument.
    The transaction commits when the callable returns and rolls back when it
    raises, including on task cancellation. Typed ``BusError`` exceptions
    propagate unchanged; raw SQLAlchemy errors are reported as
    ``DependencyError``.

    Example:
        runner = TransactionRunner(session_factory)

        async def accept(session: AsyncSession) -> None:
            order = await orders.get_or_raise(session, order_id)
            order.status = OrderStatus.ACCEPTED
            await emitter.emit(session, DomainEvent(...))

        await runner.with_tx(accept)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def with_tx(
        self,
        fn: Callable[Concatenate[AsyncSession, P], Awaitable[R]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    return await fn(session, *args, **kwargs)
            except BusError:
                raise
            except SQLAlchemyError as e:
                logger.warning(
                    "Transaction rolled back",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
                msg = "database transaction failed"
                raise DependencyError(msg) from e


_runner: TransactionRunner | None = None


def get_transaction_runner() -> TransactionRunner:
    """Process-wide runner over the default session factory."""
    global _runner

    if _runner is None:
        _runner = TransactionRunner()
    return _runner


async def init_database(*, create_tables: bool = False) -> None:
    """Verify connectivity with retry, optionally creating all tables.

    Raises:
        RetryError: If unable to connect after all retry attempts.
    """
    db_settings = get_db_settings()

    @retry(
        max_attempts=db_settings.startup_retry_attempts,
        initial_delay=db_settings.startup_retry_delay,
        max_delay=30.0,
        stop_after_delay=db_settings.startup_retry_timeout,
        exceptions=(SQLAlchemyError, OSError),
    )
    async def _connect() -> None:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await create_all(conn)

    await _connect()
    logger.info(
        "Database connection established",
        extra={"dialect": get_engine().dialect.name, "create_tables": create_tables},
    )


async def create_all(conn: Any) -> None:
    """Create every table registered on the declarative base."""
    # Model modules register their tables on import
    import packfinder_bus.features.analytics.models  # noqa: F401
    import packfinder_bus.features.orders.models  # noqa: F401
    import packfinder_bus.infra.events.outbox.models  # noqa: F401
    from packfinder_bus.core.database import Base

    await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of the engine and forget the cached factory."""
    global _engine, _session_factory, _runner

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connection closed")
    _engine = None
    _session_factory = None
    _runner = None


__all__ = [
    "TransactionRunner",
    "close_database",
    "create_all",
    "create_session_factory",
    "enable_sqlite_savepoints",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "get_transaction_runner",
    "init_database",
]

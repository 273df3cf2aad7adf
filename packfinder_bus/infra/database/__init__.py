"""Database session management."""

from packfinder_bus.infra.database.session import (
    TransactionRunner,
    close_database,
    create_all,
    create_session_factory,
    enable_sqlite_savepoints,
    get_async_session,
    get_engine,
    get_session_factory,
    get_transaction_runner,
    init_database,
)

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

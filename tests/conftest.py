"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Settings Fixtures: isolated settings with fast publisher timings
    - Database Fixtures: in-memory SQLite engine, session factory, transaction runner
    - Idempotency Fixtures: dict-backed Redis double and the guard on top of it
    - Messaging Fixtures: in-memory broker
    - Identity Fixtures: buyer, vendor and agent ids

The SQLite engine uses a ``StaticPool``, so every session shares one
connection. Tests must not open a second transaction while one is still
running (for example a SQL warehouse sink fed synchronously from inside a
publisher cycle); use ``InMemoryBroker(auto_deliver=False)`` and deliver after
the cycle commits instead.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_JSON_LOGS", "false")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Reload settings for every test so env overrides never leak."""
    from packfinder_bus.core.settings import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def publisher_settings():
    """Publisher settings with a small terminal threshold and fast timings."""
    from packfinder_bus.core.settings import PublisherSettings

    return PublisherSettings(
        batch_size=10,
        terminal_attempts=3,
        poll_interval=0.01,
        send_timeout=1.0,
        max_backoff=0.05,
        max_jitter=0.0,
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with every table created.

    Yields:
        Async engine whose single connection keeps the database alive.
    """
    from packfinder_bus.infra.database import create_all, enable_sqlite_savepoints

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await create_all(conn)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from packfinder_bus.infra.database import create_session_factory

    return create_session_factory(db_engine)


@pytest.fixture
def runner(session_factory):
    """Transaction runner bound to the test database."""
    from packfinder_bus.infra.database import TransactionRunner

    return TransactionRunner(session_factory)


@pytest.fixture
def seed(session_factory):
    """Insert rows in their own committed transaction.

    Example:
        async def test_cancel(seed):
            await seed(order, *items)
    """

    async def _seed(*rows: object) -> None:
        async with session_factory() as session, session.begin():
            session.add_all(list(rows))

    return _seed


# ============================================================================
# Idempotency Fixtures
# ============================================================================


@pytest.fixture
def mock_redis_client():
    """Dict-backed Redis double supporting ``SET NX EX`` and ``DELETE``.

    ``mock_client.storage`` maps keys to values and ``mock_client.ttls`` keeps
    the ``ex`` passed for each key.
    """
    mock_client = AsyncMock()
    storage: dict[str, str] = {}
    ttls: dict[str, int | None] = {}

    async def mock_set(key: str, value, nx: bool = False, ex: int | None = None):
        if nx and key in storage:
            return None
        storage[key] = value
        ttls[key] = ex
        return True

    async def mock_delete(*keys: str):
        deleted = 0
        for key in keys:
            if storage.pop(key, None) is not None:
                ttls.pop(key, None)
                deleted += 1
        return deleted

    mock_client.set = AsyncMock(side_effect=mock_set)
    mock_client.delete = AsyncMock(side_effect=mock_delete)
    mock_client.storage = storage
    mock_client.ttls = ttls
    return mock_client


@pytest.fixture
def guard(mock_redis_client, publisher_settings):
    from packfinder_bus.core.settings import IdempotencySettings
    from packfinder_bus.infra.idempotency import IdempotencyGuard

    return IdempotencyGuard(
        mock_redis_client,
        settings=IdempotencySettings(),
        publisher_settings=publisher_settings,
    )


# ============================================================================
# Messaging Fixtures
# ============================================================================


@pytest.fixture
def broker():
    """In-memory broker that delivers synchronously on send."""
    from packfinder_bus.infra.messaging import InMemoryBroker

    return InMemoryBroker()


# ============================================================================
# Identity Fixtures
# ============================================================================


@pytest.fixture
def buyer_store_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def vendor_store_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def agent_user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def buyer(buyer_store_id):
    from packfinder_bus.core.events import Actor

    return Actor(user_id=uuid.uuid4(), store_id=buyer_store_id, role="buyer")


@pytest.fixture
def vendor(vendor_store_id):
    from packfinder_bus.core.events import Actor

    return Actor(user_id=uuid.uuid4(), store_id=vendor_store_id, role="vendor")

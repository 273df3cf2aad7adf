"""Per-consumer processed-event marks in Redis.

Each consumer records every event id it has handled under
``<prefix>:<consumer>:<event_id>`` with ``SET NX EX``. The first delivery sets
the mark; redeliveries find it and are skipped. The mark must outlive the
publisher's worst-case retry window, otherwise a late redelivery is processed
twice.

Example:
    guard = IdempotencyGuard(redis_client)

    if await guard.check_and_mark("analytics", event_id):
        return  # duplicate
    try:
        await handle(event)
    except Exception:
        await guard.release("analytics", event_id)
        raise
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from packfinder_bus.core.events.envelope import NIL_UUID
from packfinder_bus.core.exceptions import DependencyError, InvalidArgError
from packfinder_bus.core.settings import (
    IdempotencySettings,
    PublisherSettings,
    RedisSettings,
    get_idempotency_settings,
    get_publisher_settings,
    get_redis_settings,
)
from packfinder_bus.utils.retry import retry

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable

logger = logging.getLogger(__name__)

_MARK_VALUE = "1"


class IdempotencyGuard:
    """Check-and-mark of processed event ids with a TTL.

    Attributes:
        ttl_seconds: Lifetime of a mark
        key_prefix: Namespace of every mark key
    """

    def __init__(
        self,
        client: Redis,
        *,
        settings: IdempotencySettings | None = None,
        publisher_settings: PublisherSettings | None = None,
    ) -> None:
        settings = settings or get_idempotency_settings()
        self._client = client
        self.ttl_seconds = settings.ttl_seconds
        self.key_prefix = settings.key_prefix.rstrip(":")

        window = (publisher_settings or get_publisher_settings()).worst_case_retry_window
        if self.ttl_seconds < window:
            logger.warning(
                "Idempotency TTL is shorter than the publisher retry window",
                extra={"ttl_seconds": self.ttl_seconds, "retry_window_seconds": window},
            )

    def key(self, consumer: str, event_id: uuid.UUID) -> str:
        """Mark key for one consumer and event.

        Raises:
            InvalidArgError: Empty consumer name or nil event id.
        """
        consumer = (consumer or "").strip()
        if not consumer:
            msg = "consumer name is required"
            raise InvalidArgError(msg)
        if event_id is None or event_id == NIL_UUID:
            msg = "event id is required"
            raise InvalidArgError(msg, extra={"consumer": consumer})
        return f"{self.key_prefix}:{consumer}:{event_id}"

    async def check_and_mark(self, consumer: str, event_id: uuid.UUID) -> bool:
        """Atomically set the mark.

        Returns:
            ``True`` when the event was already processed, ``False`` when the
            mark was just set by this call.

        Raises:
            InvalidArgError: Empty consumer name or nil event id.
            DependencyError: Redis is unreachable or rejected the command.
        """
        key = self.key(consumer, event_id)
        try:
            created = await self._client.set(key, _MARK_VALUE, nx=True, ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning(
                "Idempotency check failed",
                extra={"consumer": consumer, "event_id": str(event_id), "error": str(e)},
            )
            msg = "idempotency check failed"
            raise DependencyError(msg, extra={"consumer": consumer}) from e
        return not created

    async def release(self, consumer: str, event_id: uuid.UUID) -> None:
        """Delete the mark so a redelivery is processed again.

        Raises:
            InvalidArgError: Empty consumer name or nil event id.
            DependencyError: Redis is unreachable or rejected the command.
        """
        key = self.key(consumer, event_id)
        try:
            await self._client.delete(key)
        except RedisError as e:
            msg = "idempotency release failed"
            raise DependencyError(msg, extra={"consumer": consumer}) from e


async def create_redis_client(settings: RedisSettings | None = None) -> Redis:
    """Connect to Redis with retry and return a pooled client.

    Raises:
        RetryError: If Redis cannot be reached within the retry budget.
    """
    settings = settings or get_redis_settings()
    logger.info(
        "Connecting to Redis",
        extra={
            "host": settings.host,
            "port": settings.port,
            "db": settings.db,
            "max_connections": settings.max_connections,
        },
    )

    @retry(
        max_attempts=settings.startup_retry_attempts,
        initial_delay=settings.startup_retry_delay,
        max_delay=5.0,
        exceptions=(RedisConnectionError, RedisTimeoutError, OSError),
    )
    async def _connect() -> Redis:
        pool = ConnectionPool.from_url(settings.url, **settings.connection_pool_kwargs())
        client = Redis(connection_pool=pool)
        try:
            await cast("Awaitable[bool]", client.ping())
        except Exception:
            await cast("Any", client).aclose()
            await cast("Any", pool).aclose()
            raise
        return client

    client = await _connect()
    logger.info("Redis connection established successfully")
    return client


__all__ = ["IdempotencyGuard", "create_redis_client"]

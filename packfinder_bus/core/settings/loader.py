"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process. In tests, clear the cache to force a reload::

    get_publisher_settings.cache_clear()
"""

from __future__ import annotations

from functools import lru_cache

from .bus import ConsumerSettings, IdempotencySettings, OutboxSettings, PublisherSettings
from .logs import LoggingSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings
from .redis import RedisSettings


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen PostgresSettings instance.
    """
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings.

    Returns:
        Validated and frozen RedisSettings instance.
    """
    return RedisSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    """Get cached RabbitMQ settings.

    Returns:
        Validated and frozen RabbitSettings instance.
    """
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_publisher_settings() -> PublisherSettings:
    """Get cached outbox publisher settings."""
    return PublisherSettings()


@lru_cache(maxsize=1)
def get_consumer_settings() -> ConsumerSettings:
    """Get cached consumer runtime settings."""
    return ConsumerSettings()


@lru_cache(maxsize=1)
def get_idempotency_settings() -> IdempotencySettings:
    """Get cached idempotency settings."""
    return IdempotencySettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox retention settings."""
    return OutboxSettings()


def clear_settings_cache() -> None:
    """Drop every cached settings instance (used by tests)."""
    for loader in (
        get_db_settings,
        get_redis_settings,
        get_rabbit_settings,
        get_logging_settings,
        get_publisher_settings,
        get_consumer_settings,
        get_idempotency_settings,
        get_outbox_settings,
    ):
        loader.cache_clear()

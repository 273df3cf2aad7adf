"""Typed, cached settings for every concern of the bus."""

from __future__ import annotations

from .bus import ConsumerSettings, IdempotencySettings, OutboxSettings, PublisherSettings
from .loader import (
    clear_settings_cache,
    get_consumer_settings,
    get_db_settings,
    get_idempotency_settings,
    get_logging_settings,
    get_outbox_settings,
    get_publisher_settings,
    get_rabbit_settings,
    get_redis_settings,
)
from .logs import LoggingSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings
from .redis import RedisSettings

__all__ = [
    "ConsumerSettings",
    "IdempotencySettings",
    "LoggingSettings",
    "OutboxSettings",
    "PostgresSettings",
    "PublisherSettings",
    "RabbitSettings",
    "RedisSettings",
    "clear_settings_cache",
    "get_consumer_settings",
    "get_db_settings",
    "get_idempotency_settings",
    "get_logging_settings",
    "get_outbox_settings",
    "get_publisher_settings",
    "get_rabbit_settings",
    "get_redis_settings",
]

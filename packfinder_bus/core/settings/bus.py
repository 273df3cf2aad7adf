"""Settings for the outbox publisher, consumers, idempotency store and retention.

Durations accept seconds or a suffixed string (``"500ms"``, ``"10s"``, ``"7d"``).
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import parse_duration_seconds
from .yaml_sources import create_yaml_source

_COMMON_CONFIG: dict[str, Any] = {
    "env_file": ".env",
    "env_file_encoding": "utf-8",
    "case_sensitive": False,
    "frozen": True,
    "populate_by_name": True,
    "extra": "ignore",
    "env_ignore_empty": True,
}


class PublisherSettings(BaseSettings):
    """Outbox publisher loop settings.

    Environment variables use PUBLISHER_ prefix.
    Example: PUBLISHER_BATCH_SIZE=100, PUBLISHER_POLL_INTERVAL=500ms
    """

    batch_size: int = Field(
        default=50,
        ge=1,
        le=10_000,
        description="Max rows leased per cycle.",
    )
    terminal_attempts: int = Field(
        default=10,
        description="Attempt count at which a row is dead-lettered (<= 0 retries forever).",
    )
    poll_interval: float = Field(
        default=1.0,
        gt=0,
        le=300.0,
        description="Seconds to sleep when no unpublished rows are found.",
    )
    worker_count: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Number of parallel publisher loops.",
    )
    send_timeout: float = Field(
        default=10.0,
        gt=0,
        le=300.0,
        description="Per-message broker send timeout in seconds.",
    )
    max_backoff: float = Field(
        default=10.0,
        gt=0,
        le=3600.0,
        description="Upper bound for the error backoff between failed cycles.",
    )
    max_jitter: float = Field(
        default=0.25,
        ge=0,
        le=60.0,
        description="Random jitter added to the error backoff.",
    )
    default_topic: str = Field(
        default="events",
        min_length=1,
        description="Topic for rows whose event type has no registered descriptor.",
    )

    model_config = SettingsConfigDict(env_prefix="PUBLISHER_", **_COMMON_CONFIG)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "publisher"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("poll_interval", "send_timeout", "max_backoff", "max_jitter", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return parse_duration_seconds(value)

    @property
    def concurrency_cap(self) -> int:
        """Maximum number of rows in flight across all loops."""
        return self.batch_size * self.worker_count

    @property
    def worst_case_retry_window(self) -> float:
        """Upper bound in seconds for a row to reach its terminal attempt."""
        if self.terminal_attempts <= 0:
            return float("inf")
        return self.terminal_attempts * (self.max_backoff + self.max_jitter + self.send_timeout)


class ConsumerSettings(BaseSettings):
    """Consumer runtime settings.

    Environment variables use CONSUMER_ prefix. Per-subscription deadlines are
    given as a JSON map: CONSUMER_ACK_DEADLINES='{"analytics": 30}'.
    """

    ack_deadline: float = Field(
        default=60.0,
        gt=0,
        le=3600.0,
        description="Default handler budget in seconds.",
    )
    ack_deadlines: dict[str, float] = Field(
        default_factory=dict,
        description="Per-consumer handler budget overrides in seconds.",
    )

    model_config = SettingsConfigDict(env_prefix="CONSUMER_", **_COMMON_CONFIG)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "consumer"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("ack_deadline", mode="before")
    @classmethod
    def _parse_deadline(cls, value: Any) -> Any:
        return parse_duration_seconds(value)

    @field_validator("ack_deadlines", mode="before")
    @classmethod
    def _parse_deadlines(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {name: parse_duration_seconds(v) for name, v in value.items()}
        return value

    def ack_deadline_for(self, consumer: str) -> float:
        """Handler budget for one subscription."""
        return self.ack_deadlines.get(consumer, self.ack_deadline)


class IdempotencySettings(BaseSettings):
    """Idempotency mark settings.

    Environment variables use IDEMPOTENCY_ prefix.
    Example: IDEMPOTENCY_TTL=7d
    """

    ttl: float = Field(
        default=7 * 24 * 3600,
        gt=0,
        description="Lifetime of a processed-event mark in seconds.",
    )
    key_prefix: str = Field(
        default="pf:idempotency:evt:processed",
        min_length=1,
    )

    model_config = SettingsConfigDict(env_prefix="IDEMPOTENCY_", **_COMMON_CONFIG)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "idempotency"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("ttl", mode="before")
    @classmethod
    def _parse_ttl(cls, value: Any) -> Any:
        return parse_duration_seconds(value)

    @property
    def ttl_seconds(self) -> int:
        """TTL rounded up to whole seconds for SET EX."""
        return max(1, math.ceil(self.ttl))


class OutboxSettings(BaseSettings):
    """Outbox retention settings.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_RETENTION_DAYS=30, OUTBOX_RETENTION_MIN_ATTEMPTS=0
    """

    retention_days: int = Field(
        default=30,
        description="Published rows older than this many days are deleted (<= 0 uses 30).",
    )
    retention_min_attempts: int = Field(
        default=0,
        ge=0,
        description="Only delete rows with at least this many attempts (0 disables the filter).",
    )

    model_config = SettingsConfigDict(env_prefix="OUTBOX_", **_COMMON_CONFIG)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "outbox"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _default_retention(self) -> OutboxSettings:
        if self.retention_days <= 0:
            object.__setattr__(self, "retention_days", 30)
        return self


__all__ = [
    "ConsumerSettings",
    "IdempotencySettings",
    "OutboxSettings",
    "PublisherSettings",
]

"""Redis settings for the idempotency store."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlparse

from pydantic import Field, SecretStr, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_yaml_source


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Environment variables use REDIS_ prefix.
    Example: REDIS_URL="redis://localhost:6379/0"

    Provide REDIS_URL and the components are parsed from it, or provide the
    components and the URL is built from them.
    """

    # ──────────────────────────────────────────────────────────────
    # Connection configuration
    # ──────────────────────────────────────────────────────────────

    redis_url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection URL. If provided, overrides component fields.",
    )
    host: str = Field(default="localhost")
    port: int = Field(default=6379, ge=1, le=65535)
    db: int = Field(default=0, ge=0, le=15)
    username: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)
    ssl_enabled: bool = Field(default=False)

    # ──────────────────────────────────────────────────────────────
    # Connection pool settings
    # ──────────────────────────────────────────────────────────────

    max_connections: int = Field(default=50, ge=1, le=1000)
    socket_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=30.0,
        description="Redis socket timeout in seconds (for operations)",
    )
    socket_connect_timeout: float = Field(default=5.0, ge=0.1, le=30.0)

    # ──────────────────────────────────────────────────────────────
    # Retry and resilience settings
    # ──────────────────────────────────────────────────────────────

    startup_retry_attempts: int = Field(default=3, ge=1, le=10)
    startup_retry_delay: float = Field(default=1.0, ge=0.1, le=10.0)

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "redis"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_url(self) -> RedisSettings:
        """Parse redis_url into component fields if provided."""
        if not self.redis_url:
            return self

        parsed = urlparse(self.redis_url)
        if parsed.hostname:
            object.__setattr__(self, "host", parsed.hostname)
        if parsed.port:
            object.__setattr__(self, "port", parsed.port)
        if parsed.path and len(parsed.path) > 1 and parsed.path.lstrip("/").isdigit():
            object.__setattr__(self, "db", int(parsed.path.lstrip("/")))
        if parsed.username:
            object.__setattr__(self, "username", parsed.username)
        if parsed.password:
            object.__setattr__(self, "password", SecretStr(parsed.password))
        if parsed.scheme == "rediss":
            object.__setattr__(self, "ssl_enabled", True)
        return self

    @computed_field
    @property
    def url(self) -> str:
        """Build Redis URL from component fields."""
        scheme = "rediss" if self.ssl_enabled else "redis"
        auth = ""
        if self.password:
            password_part = quote(self.password.get_secret_value())
            username_part = quote(self.username) if self.username else ""
            auth = f"{username_part}:{password_part}@"
        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"

    def connection_pool_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for redis.asyncio.ConnectionPool.from_url."""
        return {
            "max_connections": self.max_connections,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "decode_responses": True,
        }

"""Processed-event marks for idempotent consumers."""

from packfinder_bus.infra.idempotency.guard import IdempotencyGuard, create_redis_client

__all__ = ["IdempotencyGuard", "create_redis_client"]

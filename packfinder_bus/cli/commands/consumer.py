"""Consumer worker commands."""

import asyncio
import sys

import click

from packfinder_bus.cli.utils import coro, error, info


@click.group(name="consumer")
def consumer() -> None:
    """Run event consumers."""


@consumer.command()
@click.option(
    "--topic",
    "topics",
    multiple=True,
    default=("orders", "billing"),
    show_default=True,
    help="Topic to bind (repeatable)",
)
@click.option(
    "--sink",
    type=click.Choice(["sql", "memory"]),
    default="sql",
    show_default=True,
    help="Warehouse sink the analytics rows are written to",
)
@coro
async def analytics(topics: tuple[str, ...], sink: str) -> None:
    """Run the analytics consumer against RabbitMQ until interrupted."""
    from packfinder_bus.features.analytics import (
        InMemoryWarehouseSink,
        SqlWarehouseSink,
        build_analytics_consumer,
    )
    from packfinder_bus.infra.database import close_database, get_session_factory
    from packfinder_bus.infra.idempotency import IdempotencyGuard, create_redis_client
    from packfinder_bus.infra.messaging.rabbit import RabbitBroker
    from packfinder_bus.utils.retry import RetryError

    try:
        redis = await create_redis_client()
    except RetryError as e:
        error(f"Failed to connect to Redis: {e}")
        sys.exit(1)

    warehouse = SqlWarehouseSink(get_session_factory()) if sink == "sql" else InMemoryWarehouseSink()
    runtime = build_analytics_consumer(IdempotencyGuard(redis), warehouse)
    broker = RabbitBroker()
    broker.subscribe(runtime, topics)

    try:
        await broker.start()
        info(f"Consumer '{runtime.name}' bound to {', '.join(topics)}")
        await asyncio.Event().wait()
    except ConnectionError as e:
        error(str(e))
        sys.exit(1)
    finally:
        await broker.close()
        await redis.aclose()
        await close_database()

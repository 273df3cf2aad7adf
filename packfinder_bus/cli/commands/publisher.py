"""Outbox publisher commands.

Example:bash
    # Drain the outbox to RabbitMQ until interrupted
    packfinder-bus publisher run --workers 4

    # Run a single cycle (cron style)
    packfinder-bus publisher run --once
"""

import sys

import click

from packfinder_bus.cli.utils import coro, error, info, success
from packfinder_bus.core.exceptions import BusError
from packfinder_bus.core.settings import get_publisher_settings


def build_broker(kind: str):
    """Broker for ``kind``; imported lazily so ``memory`` runs need no RabbitMQ client."""
    if kind == "memory":
        from packfinder_bus.infra.messaging import InMemoryBroker

        return InMemoryBroker(auto_deliver=False)

    from packfinder_bus.infra.messaging.rabbit import RabbitBroker

    return RabbitBroker()


@click.group(name="publisher")
def publisher() -> None:
    """Outbox publisher commands."""


@publisher.command()
@click.option("--once", is_flag=True, help="Run a single publish cycle and exit")
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Number of concurrent publisher loops (overrides PUBLISHER_WORKER_COUNT)",
)
@click.option(
    "--broker",
    "broker_kind",
    type=click.Choice(["rabbit", "memory"]),
    default="rabbit",
    show_default=True,
    help="Transport to publish to",
)
@coro
async def run(once: bool, workers: int | None, broker_kind: str) -> None:
    """Publish committed outbox rows to the broker."""
    from packfinder_bus.infra.database import close_database
    from packfinder_bus.infra.events.outbox import OutboxPublisher

    settings = get_publisher_settings()
    if workers is not None:
        settings = settings.model_copy(update={"worker_count": workers})

    broker = build_broker(broker_kind)
    try:
        if hasattr(broker, "start"):
            await broker.start()
        outbox_publisher = OutboxPublisher(broker, settings=settings)

        if once:
            leased = await outbox_publisher.run_once()
            success(f"Publish cycle complete: {leased} row(s) leased")
            return

        info(f"Starting {settings.worker_count} publisher loop(s) on the {broker_kind} broker")
        await outbox_publisher.run()
    except (BusError, ConnectionError) as e:
        error(f"Publisher failed: {e}")
        sys.exit(1)
    finally:
        if hasattr(broker, "close"):
            await broker.close()
        await close_database()

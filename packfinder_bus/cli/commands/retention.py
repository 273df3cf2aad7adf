"""Outbox retention commands."""

import sys

import click

from packfinder_bus.cli.utils import coro, error, success


@click.group(name="retention")
def retention() -> None:
    """Outbox retention maintenance."""


@retention.command()
@click.option("--days", type=int, default=None, help="Delete published rows older than this many days")
@click.option(
    "--min-attempts",
    type=click.IntRange(min=0),
    default=None,
    help="Only delete rows with at least this many failed attempts (0 = no filter)",
)
@coro
async def run(days: int | None, min_attempts: int | None) -> None:
    """Delete old published outbox rows."""
    from packfinder_bus.core.exceptions import BusError
    from packfinder_bus.infra.database import close_database
    from packfinder_bus.infra.events.outbox import OutboxRetentionJob

    job = OutboxRetentionJob(retention_days=days, min_attempts=min_attempts)
    try:
        deleted = await job.run()
    except BusError as e:
        error(f"Retention cleanup failed: {e}")
        sys.exit(1)
    finally:
        await close_database()

    success(
        f"Deleted {deleted} published row(s) older than {job.retention_days} day(s)"
        f" (min attempts {job.min_attempts})"
    )

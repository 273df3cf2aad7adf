"""Database commands."""

import sys

import click

from packfinder_bus.cli.utils import coro, error, info, success


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@coro
async def init() -> None:
    """Verify connectivity and create the outbox, DLQ and business tables."""
    from packfinder_bus.infra.database import close_database, get_engine, init_database
    from packfinder_bus.utils.retry import RetryError

    info("Initializing database...")
    try:
        await init_database(create_tables=True)
        success(f"Tables created on {get_engine().dialect.name}")
    except RetryError as e:
        error(f"Failed to connect to database: {e}")
        sys.exit(1)
    finally:
        await close_database()

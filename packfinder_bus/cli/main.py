"""Main CLI entry point for packfinder-bus operations commands."""

import click

from packfinder_bus import __version__
from packfinder_bus.cli.commands import consumer, database, dlq, publisher, retention
from packfinder_bus.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="packfinder-bus")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Packfinder event bus - outbox publisher, consumers and maintenance.

    \b
    Command Groups:
      publisher  Drain the outbox to the broker
      consumer   Run event consumers
      retention  Delete old published outbox rows
      dlq        Inspect dead-lettered events
      db         Database setup

    \b
    Quick Start:
      packfinder-bus db init                 # Create tables
      packfinder-bus publisher run --once    # One publish cycle
      packfinder-bus dlq list --limit 20     # Recent terminal failures
    """
    ctx.ensure_object(dict)


cli.add_command(publisher.publisher)
cli.add_command(consumer.consumer)
cli.add_command(retention.retention)
cli.add_command(dlq.dlq)
cli.add_command(database.db)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()

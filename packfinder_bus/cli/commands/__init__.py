"""CLI command modules."""

from packfinder_bus.cli.commands import consumer, database, dlq, publisher, retention

__all__ = [
    "consumer",
    "database",
    "dlq",
    "publisher",
    "retention",
]

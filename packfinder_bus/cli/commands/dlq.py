"""Dead-letter queue inspection commands.

Example:bash
    packfinder-bus dlq list --limit 20
    packfinder-bus dlq show 0b9a6c2e-0d3f-4b43-9d2c-6f1f5e3b7a10
    packfinder-bus dlq stats
"""

import json
import sys
import uuid

import click

from packfinder_bus.cli.utils import coro, error, field, header, info


@click.group(name="dlq")
def dlq() -> None:
    """Inspect dead-lettered outbox events."""


@dlq.command("list")
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum entries to show")
@coro
async def list_entries(limit: int) -> None:
    """List the most recent dead-lettered events."""
    from packfinder_bus.infra.database import close_database, get_async_session
    from packfinder_bus.infra.events.outbox import DLQRepository

    try:
        async with get_async_session() as session:
            entries = await DLQRepository().list(session, limit=limit)
    finally:
        await close_database()

    if not entries:
        info("Dead-letter queue is empty")
        return

    header(f"Dead-lettered events ({len(entries)})")
    for entry in entries:
        click.echo(
            f"  {entry.failed_at.isoformat()}  {entry.event_id}  {entry.event_type:<28}"
            f"  {entry.error_reason:<14} attempts={entry.attempt_count}"
        )


@dlq.command()
@click.argument("event_id", type=click.UUID)
@coro
async def show(event_id: uuid.UUID) -> None:
    """Show one dead-lettered event, including its envelope."""
    from packfinder_bus.infra.database import close_database, get_async_session
    from packfinder_bus.infra.events.outbox import DLQRepository

    try:
        async with get_async_session() as session:
            entry = await DLQRepository().find_by_event_id(session, event_id)
    finally:
        await close_database()

    if entry is None:
        error(f"No dead-lettered event with id {event_id}")
        sys.exit(1)

    header(f"Dead-lettered event {entry.event_id}")
    field("Event type", entry.event_type)
    field("Aggregate", f"{entry.aggregate_type}/{entry.aggregate_id}")
    field("Reason", entry.error_reason)
    field("Attempts", entry.attempt_count)
    field("Failed at", entry.failed_at.isoformat())
    field("Error", entry.error_message or "-")

    try:
        envelope = json.dumps(json.loads(entry.payload), indent=2, sort_keys=True)
    except (ValueError, UnicodeDecodeError):
        envelope = repr(entry.payload[:200])
    click.echo("\nEnvelope:")
    click.echo(envelope)


@dlq.command()
@click.option(
    "--terminal-attempts",
    type=int,
    default=None,
    help="Threshold to count against (default: PUBLISHER_TERMINAL_ATTEMPTS)",
)
@coro
async def stats(terminal_attempts: int | None) -> None:
    """Show pending outbox rows and rows stuck at the terminal threshold."""
    from packfinder_bus.core.settings import get_publisher_settings
    from packfinder_bus.infra.database import close_database, get_async_session
    from packfinder_bus.infra.events.outbox import OutboxRepository

    if terminal_attempts is None:
        terminal_attempts = get_publisher_settings().terminal_attempts

    repository = OutboxRepository()
    try:
        async with get_async_session() as session:
            pending = await repository.count_pending(session)
            terminal = await repository.count_terminal(session, terminal_attempts)
    finally:
        await close_database()

    header("Outbox backlog")
    field("Pending", pending)
    field("At threshold", f"{terminal} (terminal_attempts={terminal_attempts})")

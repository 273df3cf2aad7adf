"""Outbox publisher: drains committed outbox rows to the broker.

Each worker loop repeats one cycle:

1. Open a transaction and lease a batch with ``FOR UPDATE SKIP LOCKED``
2. Ship every row's envelope bytes to the broker, routed by event type topic
3. Mark the row published, or record the failure; once a row reaches the
   terminal attempt threshold it is archived to the DLQ
4. Commit, releasing the leases

An empty batch sleeps ``poll_interval``; a full one loops at once. A cycle that
fails as a whole (lease deadlock, commit failure) rolls back and the loop
backs off exponentially up to ``max_backoff``. Broker errors are recorded on
the rows and never escape the loop.

Delivery is at-least-once: a crash between the broker ack and the commit
re-publishes the row, and consumers deduplicate on ``event_id``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time
from typing import TYPE_CHECKING, Any

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.events.envelope import decode_envelope, format_timestamp
from packfinder_bus.core.events.registry import event_registry
from packfinder_bus.core.exceptions import InvalidArgError, truncate_error
from packfinder_bus.core.settings import get_publisher_settings
from packfinder_bus.infra.database.session import get_transaction_runner
from packfinder_bus.infra.events.outbox.dlq import DLQRepository
from packfinder_bus.infra.events.outbox.models import DLQEntry, DLQReason
from packfinder_bus.infra.events.outbox.repository import OutboxRepository
from packfinder_bus.infra.logging import log_context
from packfinder_bus.infra.metrics.tracking import (
    set_pending,
    track_batch,
    track_cycle_error,
    track_dead_lettered,
    track_publish_failure,
    track_published,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from packfinder_bus.core.events.registry import EventRegistry
    from packfinder_bus.core.settings import PublisherSettings
    from packfinder_bus.infra.database.session import TransactionRunner
    from packfinder_bus.infra.events.outbox.models import OutboxEvent
    from packfinder_bus.infra.messaging.broker import Broker

logger = logging.getLogger(__name__)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class OutboxPublisher:
    """Background publisher for outbox rows.

    Attributes:
        broker: Transport rows are shipped to
        settings: Batch size, thresholds, intervals and worker count
    """

    def __init__(
        self,
        broker: Broker,
        *,
        runner: TransactionRunner | None = None,
        settings: PublisherSettings | None = None,
        repository: OutboxRepository | None = None,
        dlq_repository: DLQRepository | None = None,
        registry: EventRegistry = event_registry,
    ) -> None:
        self.broker = broker
        self.settings = settings or get_publisher_settings()
        self._runner = runner
        self._repository = repository or OutboxRepository()
        self._dlq = dlq_repository or DLQRepository()
        self._registry = registry

        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def runner(self) -> TransactionRunner:
        if self._runner is None:
            self._runner = get_transaction_runner()
        return self._runner

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # ──────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn ``worker_count`` independent loops."""
        if self.running:
            logger.warning("Outbox publisher already running")
            return

        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._run_worker(worker), name=f"outbox-publisher-{worker}")
            for worker in range(self.settings.worker_count)
        ]
        logger.info(
            "Outbox publisher started",
            extra={
                "batch_size": self.settings.batch_size,
                "worker_count": self.settings.worker_count,
                "terminal_attempts": self.settings.terminal_attempts,
                "poll_interval": self.settings.poll_interval,
                "concurrency_cap": self.settings.concurrency_cap,
            },
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Let every loop finish its current cycle, cancelling after ``timeout``."""
        if not self._tasks:
            return

        self._stopping.set()
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            logger.warning("Outbox publisher shutdown timed out, cancelling")
            for task in pending:
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Outbox publisher stopped")

    async def run(self) -> None:
        """Run the loops until they are cancelled or ``stop`` is called."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    # ──────────────────────────────────────────────────────────────────────
    # Cycles
    # ──────────────────────────────────────────────────────────────────────

    async def run_once(self, worker: int = 0) -> int:
        """Run exactly one cycle.

        Returns:
            Number of rows leased in the cycle

        Raises:
            DependencyError: If the lease or the commit failed; the whole
                cycle was rolled back.
        """
        start = time.perf_counter()
        leased = await self.runner.with_tx(self._cycle)
        track_batch(worker, leased, time.perf_counter() - start)
        return leased

    async def _run_worker(self, worker: int) -> None:
        failures = 0
        with log_context(worker=worker):
            while not self._stopping.is_set():
                try:
                    leased = await self.run_once(worker)
                except asyncio.CancelledError:
                    logger.info("Outbox publisher loop cancelled")
                    raise
                except Exception:
                    failures += 1
                    track_cycle_error(worker)
                    delay = self.backoff_delay(failures)
                    logger.exception(
                        "Outbox publisher cycle failed",
                        extra={"consecutive_failures": failures, "backoff_seconds": round(delay, 3)},
                    )
                    await self._sleep(delay)
                    continue

                failures = 0
                if leased == 0:
                    await self._sleep(self.settings.poll_interval)
                else:
                    # Yield to other tasks between full batches
                    await asyncio.sleep(0)

    def backoff_delay(self, failures: int) -> float:
        """Delay after ``failures`` consecutive failed cycles.

        ``poll_interval * 2**failures`` capped at ``max_backoff``, plus up to
        ``max_jitter`` seconds of jitter.
        """
        base = min(self.settings.poll_interval * (2 ** max(failures, 0)), self.settings.max_backoff)
        return base + random.uniform(0, self.settings.max_jitter)

    async def _sleep(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)

    async def _cycle(self, session: AsyncSession) -> int:
        rows = await self._repository.fetch_batch(
            session,
            limit=self.settings.batch_size,
            max_attempts=self.settings.terminal_attempts,
        )
        for row in rows:
            await self._publish_row(session, row)

        set_pending(await self._repository.count_pending(session))
        if rows:
            logger.debug("Outbox batch processed", extra={"batch_size": len(rows)})
        return len(rows)

    async def _publish_row(self, session: AsyncSession, row: OutboxEvent) -> None:
        attempt_count = row.attempt_count
        fields = {
            "outbox_id": str(row.id),
            "event_type": row.event_type,
            "aggregate_type": row.aggregate_type,
            "aggregate_id": str(row.aggregate_id),
            "attempt_count": attempt_count,
        }

        try:
            envelope = decode_envelope(row.payload)
        except InvalidArgError as e:
            logger.error("Undecodable outbox payload", extra={**fields, "error": str(e)})
            await self._dead_letter(session, row, row.id, attempt_count, DLQReason.NON_RETRYABLE, _describe(e))
            return

        fields["event_id"] = str(envelope.event_id)
        attributes = {
            "event_id": str(envelope.event_id),
            "event_type": row.event_type,
            "aggregate_type": row.aggregate_type,
            "aggregate_id": str(row.aggregate_id),
            "created_at": format_timestamp(row.created_at or utcnow()),
        }
        topic = self._registry.topic_for(row.event_type, default=self.settings.default_topic)

        try:
            await asyncio.wait_for(
                self.broker.send(topic, row.payload, attributes),
                timeout=self.settings.send_timeout,
            )
        except TimeoutError:
            error = f"send timed out after {self.settings.send_timeout}s"
            await self._record_failure(session, row, envelope.event_id, attempt_count, error, fields)
            return
        except Exception as e:
            await self._record_failure(session, row, envelope.event_id, attempt_count, _describe(e), fields)
            return

        await self._repository.mark_published(session, row.id)
        track_published(row.event_type)
        logger.info("Outbox event published", extra={**fields, "topic": topic})

    async def _record_failure(
        self,
        session: AsyncSession,
        row: OutboxEvent,
        event_id: uuid.UUID,
        attempt_count: int,
        error: str,
        fields: dict[str, Any],
    ) -> None:
        track_publish_failure(row.event_type)
        terminal = self.settings.terminal_attempts
        next_attempt = attempt_count + 1

        if terminal <= 0 or next_attempt < terminal:
            await self._repository.mark_failed(session, row.id, error)
            logger.warning(
                "Outbox publish failed",
                extra={**fields, "attempt_count": next_attempt, "error": error},
            )
            return

        await self._dead_letter(session, row, event_id, attempt_count, DLQReason.MAX_ATTEMPTS, error)

    async def _dead_letter(
        self,
        session: AsyncSession,
        row: OutboxEvent,
        event_id: uuid.UUID,
        attempt_count: int,
        reason: DLQReason,
        error: str,
    ) -> None:
        terminal = self.settings.terminal_attempts
        if terminal > 0:
            await self._repository.mark_terminal(session, row.id, error, terminal)
        else:
            # No threshold can exclude the row; keep counting attempts
            await self._repository.mark_failed(session, row.id, error)
            if await self._dlq.find_by_event_id(session, event_id) is not None:
                return

        await self._dlq.insert(
            session,
            DLQEntry(
                event_id=event_id,
                event_type=row.event_type,
                aggregate_type=row.aggregate_type,
                aggregate_id=row.aggregate_id,
                payload=row.payload,
                error_reason=str(reason),
                error_message=truncate_error(error),
                attempt_count=max(attempt_count + 1, terminal),
                failed_at=utcnow(),
            ),
        )
        track_dead_lettered(row.event_type, str(reason))
        logger.error(
            "Outbox event dead-lettered",
            extra={
                "outbox_id": str(row.id),
                "event_id": str(event_id),
                "event_type": row.event_type,
                "reason": str(reason),
                "error": error,
            },
        )


__all__ = ["OutboxPublisher"]

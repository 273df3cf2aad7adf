"""Maintenance job that deletes old published outbox rows."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.settings import get_outbox_settings
from packfinder_bus.infra.database.session import get_transaction_runner
from packfinder_bus.infra.events.outbox.repository import OutboxRepository
from packfinder_bus.infra.metrics.tracking import track_retention_deleted

if TYPE_CHECKING:
    from collections.abc import Callable

    from packfinder_bus.infra.database.session import TransactionRunner

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class OutboxRetentionJob:
    """Delete published rows older than ``retention_days``.

    Unpublished rows are never deleted, whatever their age.

    Example:
        job = OutboxRetentionJob(retention_days=14)
        deleted = await job.run()
    """

    name = "outbox-retention"

    def __init__(
        self,
        retention_days: int | None = None,
        min_attempts: int | None = None,
        *,
        runner: TransactionRunner | None = None,
        repository: OutboxRepository | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_outbox_settings()
        if retention_days is None:
            retention_days = settings.retention_days
        if min_attempts is None:
            min_attempts = settings.retention_min_attempts

        self.retention_days = retention_days if retention_days > 0 else DEFAULT_RETENTION_DAYS
        self.min_attempts = max(min_attempts, 0)
        self._runner = runner
        self._repository = repository or OutboxRepository()
        self._now = now

    @property
    def runner(self) -> TransactionRunner:
        if self._runner is None:
            self._runner = get_transaction_runner()
        return self._runner

    def cutoff(self) -> datetime:
        return self._now() - timedelta(days=self.retention_days)

    async def run(self) -> int:
        """Delete in one transaction and return the number of rows removed."""
        cutoff = self.cutoff()
        deleted = await self.runner.with_tx(
            self._repository.delete_published_before,
            cutoff,
            self.min_attempts,
        )
        track_retention_deleted(deleted)
        logger.info(
            "outbox retention cleanup complete",
            extra={
                "cutoff": cutoff.isoformat(),
                "retention_days": self.retention_days,
                "min_attempts": self.min_attempts,
                "rows_deleted": deleted,
            },
        )
        return deleted


__all__ = ["DEFAULT_RETENTION_DAYS", "OutboxRetentionJob"]

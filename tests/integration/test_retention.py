"""Integration tests for the outbox retention job."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from packfinder_bus.infra.events.outbox import OutboxEvent, OutboxRetentionJob
from packfinder_bus.infra.events.outbox.retention import DEFAULT_RETENTION_DAYS

NOW = datetime(2026, 6, 1, tzinfo=UTC)


def _row(*, published_days_ago: int | None, attempt_count: int = 0) -> OutboxEvent:
    published_at = NOW - timedelta(days=published_days_ago) if published_days_ago is not None else None
    return OutboxEvent(
        event_type="order.canceled",
        aggregate_type="vendor_order",
        aggregate_id=uuid.uuid4(),
        payload=b"{}",
        published_at=published_at,
        attempt_count=attempt_count,
        created_at=NOW - timedelta(days=400),
    )


async def _remaining(session_factory) -> set[uuid.UUID]:
    async with session_factory() as session:
        return set((await session.execute(select(OutboxEvent.id))).scalars())


@pytest.mark.integration
class TestOutboxRetentionJob:
    """Deleting old published rows."""

    async def test_deletes_only_old_published(self, runner, seed, session_factory):
        old = _row(published_days_ago=40)
        fresh = _row(published_days_ago=5)
        pending = _row(published_days_ago=None)
        await seed(old, fresh, pending)

        job = OutboxRetentionJob(30, runner=runner, now=lambda: NOW)
        assert await job.run() == 1

        assert await _remaining(session_factory) == {fresh.id, pending.id}

    async def test_min_attempts(self, runner, seed, session_factory):
        retried = _row(published_days_ago=40, attempt_count=2)
        clean = _row(published_days_ago=40)
        await seed(retried, clean)

        job = OutboxRetentionJob(30, 1, runner=runner, now=lambda: NOW)
        assert await job.run() == 1

        assert await _remaining(session_factory) == {clean.id}

    def test_cutoff(self):
        job = OutboxRetentionJob(7, now=lambda: NOW)
        assert job.cutoff() == NOW - timedelta(days=7)

    @pytest.mark.parametrize("days", [0, -3])
    def test_non_positive_days_fall_back(self, days):
        assert OutboxRetentionJob(days).retention_days == DEFAULT_RETENTION_DAYS

    def test_defaults_from_settings(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_RETENTION_DAYS", "14")
        monkeypatch.setenv("OUTBOX_RETENTION_MIN_ATTEMPTS", "2")

        job = OutboxRetentionJob()

        assert (job.retention_days, job.min_attempts) == (14, 2)

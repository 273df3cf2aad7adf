"""Tests for structured logging."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid

import pytest

from packfinder_bus.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    configure_logging,
    get_log_context,
    log_context,
    set_log_context,
    shutdown,
)


def _record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("packfinder_bus.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.mark.unit
class TestLogContext:
    """Task-local logging context."""

    def test_set_and_get(self):
        set_log_context(worker=1)
        set_log_context(consumer="analytics")
        assert get_log_context() == {"worker": 1, "consumer": "analytics"}

    def test_scoped_context_is_restored(self):
        set_log_context(worker=0)
        with log_context(event_id="e-1"):
            assert get_log_context() == {"worker": 0, "event_id": "e-1"}
        assert get_log_context() == {"worker": 0}

    async def test_tasks_do_not_share_context(self):
        async def _task(name: str) -> dict:
            with log_context(consumer=name):
                await asyncio.sleep(0)
                return get_log_context()

        first, second = await asyncio.gather(_task("a"), _task("b"))
        assert first == {"consumer": "a"}
        assert second == {"consumer": "b"}

    def test_filter_injects_without_overwriting(self):
        record = _record(consumer="explicit")
        with log_context(consumer="ambient", event_id="e-2"):
            assert ContextInjectingFilter().filter(record)
        assert record.consumer == "explicit"
        assert record.event_id == "e-2"


@pytest.mark.unit
class TestJSONFormatter:
    """One JSON object per record."""

    def test_core_fields_and_extras(self):
        formatter = JSONFormatter(static={"service": "packfinder-bus"})
        data = json.loads(formatter.format(_record("Outbox event published", event_type="order.paid")))

        assert data["level"] == "INFO"
        assert data["logger"] == "packfinder_bus.test"
        assert data["message"] == "Outbox event published"
        assert data["service"] == "packfinder-bus"
        assert data["event_type"] == "order.paid"
        assert data["timestamp"].endswith("Z")

    def test_exception_kept_on_one_line(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = JSONFormatter().format(record)

        assert "\n" not in output
        assert "ValueError: boom" in json.loads(output)["exception"]

    def test_non_serializable_extras_are_stringified(self):
        event_id = uuid.uuid4()
        data = json.loads(JSONFormatter().format(_record(event_id=event_id)))
        assert data["event_id"] == str(event_id)


@pytest.mark.unit
class TestConfigureLogging:
    """Queue-based logging configuration."""

    def test_writes_jsonl_file(self, tmp_path):
        log_file = tmp_path / "bus.jsonl"
        try:
            configure_logging("DEBUG", file_path=log_file, console_enabled=False)
            with log_context(worker=3):
                logging.getLogger("packfinder_bus.test").info("cycle done", extra={"leased": 2})
        finally:
            shutdown()

        line = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert line["message"] == "cycle done"
        assert line["leased"] == 2
        assert line["worker"] == 3

    def test_no_handlers_configured(self):
        configure_logging("INFO", console_enabled=False, file_path=None)
        shutdown()

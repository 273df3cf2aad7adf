"""Logging infrastructure.

Structured JSONL logging with task-local context injection::

    from packfinder_bus.infra.logging import log_context
    import logging

    logger = logging.getLogger(__name__)

    with log_context(consumer="analytics", event_id=event_id):
        logger.info("Handling event")  # includes consumer and event_id
"""

from packfinder_bus.infra.logging.config import configure_logging, setup_logging, shutdown
from packfinder_bus.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from packfinder_bus.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]

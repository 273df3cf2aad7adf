"""Transactional outbox event bus for the packfinder marketplace."""

__version__ = "0.1.0"

"""Prometheus metrics for the event bus."""

from packfinder_bus.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY"]

from __future__ import annotations

from packfinder_bus.utils.retry.decorator import retry
from packfinder_bus.utils.retry.exceptions import RetryError
from packfinder_bus.utils.retry.strategies import RetryStrategy

__all__ = ["RetryError", "RetryStrategy", "retry"]

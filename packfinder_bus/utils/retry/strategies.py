from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class RetryStrategy:
    """Doubling backoff for start-up connectivity probes.

    With ``jitter`` the delay is scaled by a random factor in ``[0.5, 1.5]``.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exceptions: tuple[type[Exception], ...] = (Exception,)
    stop_after_delay: float | None = None
    jitter: bool = True

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)."""
        delay = min(self.initial_delay * 2**attempt, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay

    def exhausted(self, attempt: int, elapsed: float) -> bool:
        if attempt + 1 >= self.max_attempts:
            return True
        return self.stop_after_delay is not None and elapsed >= self.stop_after_delay

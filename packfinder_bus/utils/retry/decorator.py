from __future__ import annotations

import asyncio
import logging
import time
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from packfinder_bus.infra.metrics.tracking import (
    track_retry_attempt,
    track_retry_exhausted,
    track_retry_success,
)

from .exceptions import RetryError
from .strategies import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    stop_after_delay: float | None = None,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Retry an async start-up probe (database or Redis connect).

    Raises ``RetryError`` once ``max_attempts`` or ``stop_after_delay`` runs
    out. Exceptions outside ``exceptions`` propagate unchanged.
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exceptions=exceptions,
        stop_after_delay=stop_after_delay,
        jitter=jitter,
    )

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        name = func.__name__

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            started = time.monotonic()
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except strategy.exceptions as e:
                    if strategy.exhausted(attempt, time.monotonic() - started):
                        track_retry_exhausted(name)
                        logger.error(
                            "Giving up after %d attempt(s)",
                            attempt + 1,
                            extra={"function": name, "error": str(e)},
                        )
                        raise RetryError(e, attempt + 1) from e

                    delay = strategy.calculate_delay(attempt)
                    attempt += 1
                    track_retry_attempt(name, attempt + 1)
                    logger.warning(
                        "Retrying %s in %.2fs",
                        name,
                        delay,
                        extra={"attempt": attempt, "max_attempts": strategy.max_attempts, "error": str(e)},
                    )
                    await asyncio.sleep(delay)
                    continue

                if attempt:
                    track_retry_success(name, attempt + 1)
                return result

        return wrapper

    return decorator

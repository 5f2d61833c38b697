import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryAborted(Exception):
    pass


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    initial_delay: float,
    backoff: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_continue: Callable[[], bool] = lambda: True,
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last retryable exception is re-raised once
    attempts are exhausted. ``should_continue`` is checked before every
    attempt, and ``RetryAborted`` is raised as soon as it returns False.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        if not should_continue():
            raise RetryAborted(description)
        try:
            return await operation()
        except retry_on as exc:
            if attempt == max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempt, exc
                )
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.2fs",
                description, attempt, max_attempts, exc, delay,
            )
            await asyncio.sleep(delay)
            delay *= backoff
    raise AssertionError("unreachable")

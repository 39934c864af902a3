"""Retry combinator for flaky async operations."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Callable[[int], float]


def exponential_backoff(base: float = 2.0, factor: float = 2.0, max_delay: Optional[float] = None) -> Backoff:
    """Delay after failed ``attempt`` (1-based): base, base*factor, base*factor**2, ..."""
    def delay(attempt: int) -> float:
        value = base * factor ** (attempt - 1)
        return min(value, max_delay) if max_delay is not None else value
    return delay


class RetryError(Exception):
    """Raised when every attempt failed; wraps the last exception."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def with_retry(operation: Callable[[], Awaitable[T]],
                     max_attempts: int = 3,
                     backoff: Optional[Backoff] = None,
                     retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                     description: str = "operation") -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        backoff: Maps the failed attempt number to a delay; 2 s, 4 s, 8 s by default
        retry_on: Exception types that trigger a retry; anything else propagates
        sleep: Coroutine used to wait between attempts
        description: Label for log messages

    Returns:
        The operation's result

    Raises:
        RetryError: every attempt failed
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    backoff = backoff or exponential_backoff()

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt == max_attempts:
                break
            delay = backoff(attempt)
            logger.warning(f"{description} failed (attempt {attempt}/{max_attempts}): {e}; retrying in {delay:.1f}s")
            await sleep(delay)

    logger.error(f"{description} failed after {max_attempts} attempts: {last_error}")
    raise RetryError(max_attempts, last_error)

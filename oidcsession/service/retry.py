from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from oidcsession.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def retry_delay(attempt: int, multiplier_secs: float) -> float:
    """Seconds to wait before ``attempt`` (1-based); linear in the attempt number."""
    if attempt < 2:
        return 0.0
    return multiplier_secs * attempt


async def retryable(
    operation: Callable[[], Awaitable[T]],
    *,
    multiplier_secs: float,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    name: str = "operation",
) -> T:
    """Await ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    The wait before attempt n (n >= 2) is ``multiplier_secs * n`` seconds, so a
    multiplier of 1.5 waits 3.0s, then 4.5s. The exception from the last
    attempt is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=name,
                    attempts=attempt,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise
            attempt += 1
            delay = retry_delay(attempt, multiplier_secs)
            logger.info(
                "retry_attempt_failed",
                operation=name,
                next_attempt=attempt,
                delay_secs=delay,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await sleep(delay)

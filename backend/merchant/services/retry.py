"""Retry Combinators — bounded fixed-backoff retry and ordered fallback candidates.

Invariants:
    - retry_async makes len(delays) + 1 attempts, sleeping delays[i] after failed attempt i
    - Only exceptions in retry_on are retried; anything else propagates immediately
    - first_success tries candidates strictly in order and stops at the first success
    - Neither combinator swallows exceptions outside retry_on
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    delays: Sequence[float],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run operation, retrying with the given fixed delays."""
    for attempt, delay in enumerate(delays):
        try:
            return await operation()
        except retry_on as e:
            logger.warning(
                f"{label} failed, retry after {delay}s: {e}",
                extra={"attempt": attempt + 1},
            )
            await sleep(delay)
    return await operation()


async def first_success(
    candidates: Iterable[C],
    operation: Callable[[C], Awaitable[T]],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> tuple[C, T] | None:
    """(candidate, result) for the first candidate whose operation succeeds."""
    for index, candidate in enumerate(candidates):
        try:
            return candidate, await operation(candidate)
        except retry_on as e:
            logger.warning(
                f"{label} failed for candidate #{index + 1}: {e}",
                extra={"attempt": index + 1},
            )
    return None

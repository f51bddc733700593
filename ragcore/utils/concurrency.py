"""Shared concurrency primitives for ingestion and retrieval.

Three helpers are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped
   in a semaphore acquire/release.  The orchestrator's bounded worker pool
   is built on it.

2. **TokenBucket** -- an async token bucket.  One instance is shared by
   every ingestion worker (through the single embedding generator) so the
   embedding provider's rate limit is enforced globally, not per worker.

3. **with_timeout** -- ``asyncio.wait_for`` that converts a timeout into a
   caller-chosen exception type, so every external call has a deadline.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

import structlog

from ragcore.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables run simultaneously.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def with_timeout(
    awaitable: Awaitable[_T],
    timeout: float | None,
    on_timeout: Callable[[], BaseException],
) -> _T:
    """Await *awaitable* with a deadline.

    ``on_timeout`` builds the exception raised when the deadline passes;
    the original :class:`asyncio.TimeoutError` is chained as its cause.
    A ``timeout`` of ``None`` or ``<= 0`` disables the deadline.
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise on_timeout() from exc


class TokenBucket:
    """Async token bucket limiting request throughput.

    Tokens refill continuously at ``rate`` per second up to ``capacity``.
    :meth:`acquire` waits until enough tokens are available.  A ``rate`` of
    ``0`` disables limiting entirely.

    Parameters
    ----------
    rate:
        Tokens added per second.
    capacity:
        Maximum burst size.  Defaults to ``max(1, rate)``.
    """

    def __init__(
        self,
        rate: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rate = max(0.0, float(rate))
        self._capacity = float(capacity) if capacity else max(1.0, self._rate)
        self._tokens = self._capacity
        self._clock = clock
        self._updated = clock()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    def available(self) -> float:
        """Return the number of tokens currently available (after refill)."""
        self._refill()
        return self._tokens

    async def acquire(self, tokens: float = 1.0) -> float:
        """Take *tokens* from the bucket, sleeping until they are available.

        Returns the total time spent waiting, in seconds.
        """
        if self._rate == 0:
            return 0.0
        tokens = min(tokens, self._capacity)
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    break
                delay = (tokens - self._tokens) / self._rate
                waited += delay
                await asyncio.sleep(delay)
        if waited:
            _logger.debug("rate_limit_wait", waited_seconds=round(waited, 3))
        return waited

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._updated = now

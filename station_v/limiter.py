"""Admission control for generation calls.

Two independent gates guard the generation backend:

  * at most ``max_concurrent`` calls in flight (callers poll for a free slot)
  * at least ``min_interval`` seconds between the *starts* of two calls

A slot and a start time are reserved in the same synchronous step, so two
callers woken on the same poll can never both pass the spacing gate.
Failures are not retried; the task's exception propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CONCURRENT = 2
MIN_INTERVAL = 1.5
POLL_INTERVAL = 0.2


class ConcurrencyLimiter:
    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT,
        min_interval: float = MIN_INTERVAL,
        poll_interval: float = POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._in_flight = 0
        self._last_start: float | None = None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def run(self, task: Callable[[], Awaitable[T]], label: str = "") -> T:
        """Wait for admission, then await ``task()`` and return its result."""
        while self._in_flight >= self.max_concurrent:
            await self._sleep(self.poll_interval)

        now = self._clock()
        start = now
        if self._last_start is not None:
            start = max(now, self._last_start + self.min_interval)
        self._in_flight += 1
        self._last_start = start

        try:
            wait = start - now
            if wait > 0:
                logger.debug("limiter delaying %s by %.2fs", label or "call", wait)
                await self._sleep(wait)
            logger.debug("limiter start %s in_flight=%d", label or "call", self._in_flight)
            return await task()
        finally:
            self._in_flight -= 1

"""FIFO concurrency limiter for the batch driver.

asyncio.Semaphore lets a newly arriving task take a slot that was freed for
a task already waiting. ConcurrencyLimiter instead hands a released slot
directly to the oldest waiter, so admission order always equals the order in
which acquire() was called.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from batchscrape.common.exceptions import (
    BatchValidationError,
    LimiterInvariantError,
)

logger = logging.getLogger(__name__)


class SlotRelease:
    """Capability returned by ConcurrencyLimiter.acquire().

    Calling release() returns the slot. A capability can be released once;
    a second release raises LimiterInvariantError.
    """

    def __init__(self, limiter: ConcurrencyLimiter) -> None:
        self._limiter = limiter
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            raise LimiterInvariantError("Slot released twice")
        self._released = True
        self._limiter._release()


class ConcurrencyLimiter:
    """Admit at most ``concurrency`` units of work at once, FIFO.

    Example::

        limiter = ConcurrencyLimiter(3)
        async with limiter.slot():
            await do_work()
    """

    def __init__(self, concurrency: int) -> None:
        """Initialize the limiter.

        Args:
            concurrency: Number of slots. Must be at least 1.

        Raises:
            BatchValidationError: If concurrency is less than 1.
        """
        if isinstance(concurrency, bool) or not isinstance(concurrency, int):
            raise BatchValidationError(
                "must be an integer", field="concurrency"
            )
        if concurrency < 1:
            raise BatchValidationError(
                f"must be at least 1, got {concurrency}", field="concurrency"
            )
        self.concurrency = concurrency
        self._active = 0
        self._max_observed = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        """Number of slots currently held."""
        return self._active

    @property
    def waiting(self) -> int:
        """Number of callers queued for a slot."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def max_observed(self) -> int:
        """Highest number of slots ever held at the same time."""
        return self._max_observed

    async def acquire(self) -> SlotRelease:
        """Wait for a free slot.

        Returns:
            A SlotRelease whose release() returns the slot.
        """
        if self._active < self.concurrency and not self._waiters:
            self._take()
            return SlotRelease(self)

        waiter: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over before cancellation landed.
                self._release()
            else:
                self._remove_waiter(waiter)
            raise
        return SlotRelease(self)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[SlotRelease]:
        """Hold a slot for the duration of the block.

        Yields the SlotRelease so the holder can give the slot back early.
        Otherwise the slot is returned when the block exits, whether it
        completes, raises or is cancelled.
        """
        capability = await self.acquire()
        try:
            yield capability
        finally:
            if not capability.released:
                capability.release()

    def _take(self) -> None:
        self._active += 1
        if self._active > self.concurrency:
            raise LimiterInvariantError(
                f"{self._active} slots held with concurrency "
                f"{self.concurrency}"
            )
        self._max_observed = max(self._max_observed, self._active)

    def _release(self) -> None:
        if self._active <= 0:
            raise LimiterInvariantError("Released a slot that was not held")
        self._active -= 1

        # Hand the slot straight to the oldest live waiter.
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._take()
            waiter.set_result(None)
            logger.debug(
                f"Slot handed to next waiter "
                f"({self._active}/{self.concurrency} active)"
            )
            return

    def _remove_waiter(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

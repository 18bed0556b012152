"""Concurrency cap plus inter-request stagger for fan-out stages."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class PacedLimiter:
    """Run calls at most `concurrency` at a time, waiting `stagger_sec` before each one after the first.

    With the default concurrency of one, calls run strictly in submission
    order. Pass a no-op `sleep` (or stagger_sec=0) to disable pacing in tests.
    """

    def __init__(
        self,
        stagger_sec: float = 0.0,
        concurrency: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._stagger_sec = stagger_sec
        self._semaphore = asyncio.Semaphore(concurrency)
        self._sleep = sleep

    async def run(self, index: int, func: Callable[[T], Awaitable[R]], item: T) -> R:
        async with self._semaphore:
            if index > 0 and self._stagger_sec > 0:
                logger.debug("Pacing: waiting %.1fs before call %d", self._stagger_sec, index + 1)
                await self._sleep(self._stagger_sec)
            return await func(item)

    async def map(self, func: Callable[[T], Awaitable[R]], items: Sequence[T]) -> list[R]:
        """Apply func to every item under the limiter; results keep input order."""
        return list(await asyncio.gather(*(self.run(i, func, item) for i, item in enumerate(items))))

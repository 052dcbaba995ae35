from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable


Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class IntervalPacer:
    """Spaces successive ``acquire`` calls at least ``interval`` seconds apart.

    The first acquire returns immediately. Used to stagger perspective passes
    so upstream rate limits are not hit by a burst of simultaneous requests.
    """

    def __init__(
        self,
        interval: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> float:
        """Wait for the next slot and return how long the caller was held."""
        async with self._lock:
            waited = 0.0
            if self._last is not None:
                waited = max(0.0, self._last + self._interval - self._clock())
                if waited > 0:
                    await self._sleep(waited)
            self._last = self._clock()
            return waited

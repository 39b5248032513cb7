"""
Per-source sliding-window rate limiter.

A full window suspends the caller until the oldest request ages out, then
re-checks. Waits are bounded by max_backoff_seconds and never fail.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most `limit` acquisitions per source within `window_seconds`."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        max_backoff_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._windows: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def in_window(self, source: str) -> int:
        """Number of requests currently counted against a source."""
        window = self._windows.get(source)
        if not window:
            return 0
        self._evict(window, self._clock())
        return len(window)

    async def acquire(self, source: str) -> float:
        """
        Reserve a request slot for `source`, waiting as needed.
        Returns the total time spent waiting.
        """
        lock = self._locks.setdefault(source, asyncio.Lock())
        window = self._windows.setdefault(source, deque())
        waited = 0.0

        async with lock:
            while True:
                now = self._clock()
                self._evict(window, now)
                if len(window) < self.limit:
                    window.append(now)
                    return waited

                wait = self.window_seconds - (now - window[0])
                wait = min(max(wait, 0.0), self.max_backoff_seconds)
                logger.debug(
                    "Rate limit reached for %s (%d/%d), waiting %.2fs",
                    source, len(window), self.limit, wait,
                )
                await self._sleep(wait)
                waited += wait

    def _evict(self, window: Deque[float], now: float) -> None:
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    def reset(self) -> None:
        self._windows.clear()

# ============================================================================
# src/care_ingestion/jobs/rate_limiter.py
# ============================================================================
"""
Sliding-window rate limiter for job starts.

Allows at most `max_calls` starts within any `duration_ms` window. Shared
by every slot of a worker so concurrent jobs cannot exceed the AI
provider's budget together.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from ..config import queue_settings


class RateLimiter:
    def __init__(
        self,
        max_calls: Optional[int] = None,
        duration_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_calls = max_calls or queue_settings.RATE_LIMIT_MAX
        self.duration = (duration_ms or queue_settings.RATE_LIMIT_DURATION_MS) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._starts = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.duration:
            self._starts.popleft()

    def try_acquire(self) -> bool:
        """Take a slot if one is free right now."""
        now = self._clock()
        self._evict(now)
        if len(self._starts) < self.max_calls:
            self._starts.append(now)
            return True
        return False

    def seconds_until_available(self) -> float:
        now = self._clock()
        self._evict(now)
        if len(self._starts) < self.max_calls:
            return 0.0
        return max(self.duration - (now - self._starts[0]), 0.0)

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it."""
        async with self._lock:
            while not self.try_acquire():
                await self._sleep(self.seconds_until_available())

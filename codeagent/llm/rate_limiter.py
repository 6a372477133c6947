# FILE: codeagent/llm/rate_limiter.py
"""
Sliding-window rate limiter shared by every outbound model call.

At most `max_requests` admissions in any `window_s` interval. The request
log is only touched while holding the lock; the wait time is computed
inside the lock and the sleep happens after releasing it, so one waiting
caller never blocks others from checking the log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int = 10,
        window_s: float = 1.0,
        *,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._log: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.total_waits = 0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._log and self._log[0] <= cutoff:
            self._log.popleft()

    async def _try_admit(self) -> float:
        """Admit and return 0, or return the seconds to wait."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._log) < self.max_requests:
                self._log.append(now)
                return 0.0
            return max(self._log[0] + self.window_s - now, 0.0)

    async def acquire(self) -> None:
        while True:
            wait = await self._try_admit()
            if wait <= 0:
                return
            self.total_waits += 1
            logger.debug("[rate_limit] window full, waiting %.3fs", wait)
            await self._sleep(wait)

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._log)


__all__ = ["SlidingWindowRateLimiter"]

"""In-process sliding-window rate limiter.

The limiter is an ordinary object owned by the ``ServiceManager``: it is
constructed from configuration, started with the application and closed on
shutdown, so every test can build an independent instance with its own clock.

Flow Diagram — allow(key)
=========================
::
    ┌─────────────┐
    │ allow(key)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Acquire lock │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Drop stamps  │
    │ older than   │
    │ the window   │
    └──────┬──────┘
    FULL?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Record  │  │ Reject  │
│ & admit │  │ (False) │
└─────────┘  └─────────┘

Key Behaviours
===============
- One window per client identity: ``api:<key>`` when an API key is sent,
  otherwise ``ip:<address>``.
- ``sweep()`` forgets clients idle for twice the window; ``start()`` runs it
  periodically on the event loop.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from fastapi import Request

__all__ = ["SlidingWindowRateLimiter", "client_identity"]

logger = logging.getLogger(__name__)


def client_identity(request: Request) -> str:
    api_key = request.headers.get("x-api-key")
    if api_key:
        return f"api:{api_key}"

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    return f"ip:{request.client.host if request.client else 'unknown'}"


class SlidingWindowRateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.limit = limit
        self.window_seconds = window_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, deque[float]] = {}
        self._sweeper: asyncio.Task | None = None

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._windows)

    def allow(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds

        with self._lock:
            window = self._windows.setdefault(key, deque())
            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) >= self.limit:
                return False

            window.append(now)
            return True

    def sweep(self) -> int:
        """Forget clients with no request inside twice the window; returns how many."""
        cutoff = self._clock() - 2 * self.window_seconds

        with self._lock:
            idle = [key for key, window in self._windows.items() if not window or window[-1] <= cutoff]
            for key in idle:
                del self._windows[key]
        return len(idle)

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweep")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            evicted = self.sweep()
            if evicted:
                logger.debug(f"Rate limiter evicted {evicted} idle clients")

    async def close(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            # Only swallow the cancellation we asked for.
            if asyncio.current_task().cancelling():
                raise
        self._sweeper = None

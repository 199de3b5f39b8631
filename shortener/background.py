"""Tracked fire-and-forget effects.

Redirects hand their click accounting to a ``BackgroundDispatcher`` instead of
spawning detached tasks. The dispatcher keeps a handle on every pending task,
logs (and counts) failures instead of propagating them, and can be drained on
shutdown or in tests.

Example::

    dispatcher = BackgroundDispatcher(logger)
    dispatcher.submit("click:abc123", record_click("abc123"))
    ...
    await dispatcher.drain()      # tests: wait for effects to settle
    await dispatcher.close(5.0)   # shutdown: drain, then cancel stragglers
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from prometheus_client import Counter

__all__ = ["BackgroundDispatcher", "CompletionHook"]

CompletionHook = Callable[[str, BaseException | None], None]

BACKGROUND_EFFECTS_TOTAL = Counter(
    "url_shortener_background_effects_total",
    "Background effects finished, by outcome",
    ["outcome"],
)


class BackgroundDispatcher:
    def __init__(
        self,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        on_complete: CompletionHook | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._on_complete = on_complete
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> bool:
        """Schedule ``coro`` without waiting for it; False if the dispatcher is closed."""
        if self._closed:
            coro.close()
            self._logger.warning(f"Dropped background effect {name}: dispatcher is closed")
            return False

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finalize)
        return True

    def _finalize(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        error: BaseException | None = None

        if task.cancelled():
            BACKGROUND_EFFECTS_TOTAL.labels(outcome="cancelled").inc()
            self._logger.debug(f"Background effect {task.get_name()} cancelled")
        else:
            error = task.exception()
            if error is not None:
                BACKGROUND_EFFECTS_TOTAL.labels(outcome="failed").inc()
                self._logger.error(f"Background effect {task.get_name()} failed: {error!r}")
            else:
                BACKGROUND_EFFECTS_TOTAL.labels(outcome="succeeded").inc()

        if self._on_complete is not None:
            try:
                self._on_complete(task.get_name(), error)
            except Exception as exc:
                self._logger.error(f"Completion hook failed for {task.get_name()}: {exc!r}")

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until no effects are pending; False if ``timeout`` ran out first."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    async def close(self, timeout: float | None = None) -> None:
        self._closed = True
        if await self.drain(timeout):
            return

        stragglers = set(self._tasks)
        self._logger.warning(f"Cancelling {len(stragglers)} background effects still running at shutdown")
        for task in stragglers:
            task.cancel()
        await asyncio.gather(*stragglers, return_exceptions=True)

"""Cancellable single-shot timers used for debouncing."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], "Awaitable[None] | None"]


class DebounceTimer:
    """Single-shot timer where every ``schedule`` call replaces the pending one.

    Only the last timer of a burst ever fires. Coroutine callbacks are run
    as tasks that the timer tracks so they can be awaited on shutdown.
    """

    def __init__(self, delay: float, callback: TimerCallback, *, name: str = "debounce") -> None:
        self._delay = max(0.0, float(delay))
        self._callback = callback
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._fire_count = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def fire_count(self) -> int:
        return self._fire_count

    def schedule(self, delay: float | None = None) -> None:
        """(Re)arm the timer. Must be called from inside a running event loop."""

        self.cancel()
        loop = asyncio.get_running_loop()
        wait = self._delay if delay is None else max(0.0, float(delay))
        self._handle = loop.call_later(wait, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Fire a pending timer immediately and wait for its callback."""

        if self._handle is not None:
            self.cancel()
            self._fire()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        self._fire_count += 1
        try:
            result = self._callback()
        except Exception:
            LOGGER.exception("Timer %s callback failed", self._name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Timer %s task failed", self._name, exc_info=exc)


__all__ = ["DebounceTimer"]

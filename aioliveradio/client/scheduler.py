"""Named periodic loops and one-shot timers on the asyncio event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

logger = logging.getLogger(__name__)

# Callback run by a loop or timer. May be a plain function or a coroutine function.
TimerCallback = Callable[[], Awaitable[None] | None]


class TaskScheduler:
    """
    Owns every timer of a sync engine.

    Timers are identified by name. Scheduling a name that is already scheduled
    replaces the previous timer, so at most one timer per name ever exists.
    Periodic loops re-read their interval on every tick, which lets a network
    change take effect without restarting the loop.
    """

    def __init__(self) -> None:
        """Initialize without any timers."""
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def names(self) -> frozenset[str]:
        """Return the names of all pending timers."""
        return frozenset(self._tasks)

    def is_scheduled(self, name: str) -> bool:
        """Return True if a timer named `name` is pending."""
        return name in self._tasks

    def every(
        self,
        name: str,
        interval: Callable[[], float] | float,
        callback: TimerCallback,
        *,
        run_immediately: bool = False,
    ) -> asyncio.Task[None]:
        """
        Run `callback` periodically until cancelled.

        Args:
            name: Timer name, replaces any timer with the same name.
            interval: Seconds between runs, or a function returning them that
                is called before every sleep.
            callback: Function or coroutine function to run. Exceptions are
                logged and do not stop the loop.
            run_immediately: Run once before the first sleep.
        """
        get_interval = interval if callable(interval) else (lambda: interval)
        return self._start(name, self._periodic(name, get_interval, callback, run_immediately))

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> asyncio.Task[None]:
        """Run `callback` once after `delay` seconds."""
        return self._start(name, self._one_shot(name, delay, callback))

    def cancel(self, name: str) -> bool:
        """
        Cancel the timer named `name`.

        A timer cancelling itself from within its callback is only forgotten,
        so the callback can finish.

        Returns:
            True if a timer was pending.
        """
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def cancel_all(self) -> None:
        """Cancel every timer and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                with suppress(asyncio.CancelledError):
                    await task

    def _start(self, name: str, coro: Awaitable[None]) -> asyncio.Task[None]:
        self.cancel(name)
        task = asyncio.get_running_loop().create_task(coro, name=name)  # type: ignore[arg-type]
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._forget(name, t))
        return task

    def _forget(self, name: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]

    async def _periodic(
        self,
        name: str,
        get_interval: Callable[[], float],
        callback: TimerCallback,
        run_immediately: bool,
    ) -> None:
        task = asyncio.current_task()
        if run_immediately:
            await self._invoke(name, callback)
        # A loop cancelled from within its own callback stops here.
        while self._tasks.get(name) is task:
            await asyncio.sleep(get_interval())
            await self._invoke(name, callback)

    async def _one_shot(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # Forget the timer before running so the callback may re-arm the name.
        self._forget(name, asyncio.current_task())  # type: ignore[arg-type]
        await self._invoke(name, callback)

    @staticmethod
    async def _invoke(name: str, callback: TimerCallback) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error in timer %s", name)

"""
Cancellable timers on top of asyncio tasks.

Every armed duration and the streaming cadence get their own handle, so
whoever owns the handle can stop it deterministically.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


def _current_task() -> "asyncio.Task[None] | None":
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class OneShotTimer:
    """Вызывает callback один раз через delay_s секунд, если таймер не отменён."""

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "OneShotTimer":
        self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_s)
        # Callback may arm a new timer, so this one is finished before it runs
        self._task = None
        try:
            self._callback()
        except Exception:
            logger.exception("Timer callback failed")


class PeriodicTimer:
    """
    Awaits callback every interval_s seconds until cancelled.

    The first tick runs right after start(). cancel() is safe to call from
    inside the callback: the loop stops after the current tick.
    """

    def __init__(self, interval_s: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.interval_s = interval_s
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> "PeriodicTimer":
        self._stopped = False
        self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            await self._callback()
            if self._stopped:
                break
            await asyncio.sleep(self.interval_s)

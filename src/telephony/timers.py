from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
TimerCallback = Callable[[], Any]


class SessionTimers:
    """Named, cancellable scheduled tasks owned by one call session.

    Scheduling a name that is already pending replaces the previous timer.
    A timer stops being pending the moment its delay elapses, so a callback
    may cancel every other timer (or reschedule its own name) safely.
    """

    def __init__(self, *, sleep: Sleep = asyncio.sleep, label: str = "") -> None:
        self._sleep = sleep
        self._label = label
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    def schedule(self, name: str, delay_s: float, callback: TimerCallback) -> asyncio.Task | None:
        if self._closed:
            LOGGER.debug("[%s] timer %s not armed: session closed", self._label, name)
            return None

        self.cancel(name)
        task = asyncio.create_task(self._run(name, max(0.0, delay_s), callback))
        self._tasks[name] = task
        return task

    async def _run(self, name: str, delay_s: float, callback: TimerCallback) -> None:
        await self._sleep(delay_s)
        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]

        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("[%s] timer %s callback failed", self._label, name)

    def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_many(self, names: tuple[str, ...] | list[str]) -> None:
        for name in names:
            self.cancel(name)

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    def close(self) -> None:
        """Disarm everything and refuse new timers."""

        self._closed = True
        self.cancel_all()

    def pending(self, name: str) -> bool:
        return name in self._tasks

    @property
    def names(self) -> list[str]:
        return sorted(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

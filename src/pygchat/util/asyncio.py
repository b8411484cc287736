from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if not task:
        return
    # Never cancel/await the current task: awaiting itself raises.
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    return asyncio.create_task(coro, name=name)


def log_task_failure(task: asyncio.Task[Any]) -> None:
    """`add_done_callback` hook for fire-and-forget tasks."""

    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background task %s failed: %s", task.get_name(), exc, exc_info=exc)


class PeriodicTask:
    """
    Run `fn` every `interval_s` seconds on the current loop.

    Runs never overlap: the next sleep only starts once the previous run has
    returned. Exceptions from a run are logged and the schedule continues.
    """

    def __init__(self, fn: Callable[[], Awaitable[object]], *, interval_s: float, name: str) -> None:
        self._fn = fn
        self._interval_s = interval_s
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = ensure_task(self._loop(), name=self._name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        await cancel_suppress(task)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self._fn()
            except Exception:
                logger.exception("%s run failed", self._name)

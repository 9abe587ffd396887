"""Cancelable background loops.

Every periodic job in the package runs inside a :class:`PollHandle`. Callers
own the handle and must stop it explicitly with :func:`stop`; nothing is torn
down implicitly when the owner goes away.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .logging_utils import get_logger

logger = get_logger("polling")

T = TypeVar("T")


class PollHandle:
    """Owns one background ``asyncio.Task`` and its cancel flag."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task[Any]] = None

    def attach(self, task: "asyncio.Task[Any]") -> None:
        self._task = task

    @property
    def task(self) -> Optional["asyncio.Task[Any]"]:
        return self._task

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def stop(self) -> None:
        self.cancel_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> Any:
        """Wait for the loop to finish and return its result (re-raising its error)."""
        if self._task is None:
            return None
        return await self._task

    def __repr__(self) -> str:
        state = "active" if self.active else "idle"
        return f"PollHandle({self.name!r}, {state})"


def start(name: str, factory: Callable[[PollHandle], Awaitable[T]]) -> PollHandle:
    """Run ``factory(handle)`` as a task on the running loop and return the handle."""
    handle = PollHandle(name)
    task = asyncio.ensure_future(factory(handle))
    task.add_done_callback(lambda t: _log_outcome(name, t))
    handle.attach(task)
    return handle


def stop(handle: Optional[PollHandle]) -> None:
    """Stop ``handle`` if given. Safe to call on finished or already-stopped handles."""
    if handle is not None:
        handle.stop()


async def sleep_or_cancel(handle: Optional[PollHandle], seconds: float) -> bool:
    """Sleep ``seconds`` unless ``handle`` is stopped first. Returns ``True`` when stopped."""
    if handle is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(handle.cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


def _log_outcome(name: str, task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        logger.debug("Poller %s cancelled.", name)
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Poller %s finished with %s: %s", name, type(exc).__name__, exc)

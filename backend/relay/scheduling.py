"""Cancellable timers on the asyncio event loop.

Grace timers and credential refresh timers are both expressed as
``Scheduler.call_later(delay, callback)`` where ``callback`` is an async
function taking no arguments. The returned :class:`TimerHandle` can be
cancelled at any point before it fires; once it has fired the callback runs
as its own task and is left to finish.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """Handle for one scheduled callback."""

    def __init__(self, delay: float, label: str = "") -> None:
        self.delay = delay
        self.label = label
        self._cancelled = False
        self._fired = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        """Prevent the callback from running. No-op once fired."""
        if not self.pending:
            return
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None

    def _mark_fired(self) -> bool:
        if not self.pending:
            return False
        self._fired = True
        self._loop_handle = None
        return True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "fired" if self._fired else "pending"
        return f"<TimerHandle {self.label or '?'} delay={self.delay:.3f}s {state}>"


class Scheduler:
    """Schedules async callbacks with ``loop.call_later``.

    Running callbacks are tracked so :meth:`shutdown` can cancel them, and so
    an exception inside a callback is logged instead of vanishing with an
    unreferenced task.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._handles: Set[TimerHandle] = set()

    def now(self) -> float:
        """Wall-clock seconds since the epoch (credential expiry is absolute)."""
        return time.time()

    def call_later(self, delay: float, callback: AsyncCallback, label: str = "") -> TimerHandle:
        handle = TimerHandle(max(0.0, delay), label)
        loop = asyncio.get_running_loop()
        handle._loop_handle = loop.call_later(handle.delay, self._fire, handle, callback)
        self._handles = {h for h in self._handles if h.pending}
        self._handles.add(handle)
        return handle

    def _fire(self, handle: TimerHandle, callback: AsyncCallback) -> None:
        self._handles.discard(handle)
        if not handle._mark_fired():
            return
        task = asyncio.ensure_future(self._run(handle, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, handle: TimerHandle, callback: AsyncCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            logger.debug("Timer callback cancelled: %r", handle)
            raise
        except Exception:
            logger.exception("Timer callback failed: %r", handle)

    async def shutdown(self) -> None:
        """Cancel pending timers and running callbacks."""
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped (%d running callbacks cancelled)", len(tasks))

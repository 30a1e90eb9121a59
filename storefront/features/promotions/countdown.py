"""
storefront/features/promotions/countdown.py

Self-rescheduling one-second countdown for an active promotion window.

When it reaches zero the owner must re-resolve entitlements, since displayed
prices are stale. A page holds at most one countdown: CountdownSlot cancels
the previous timer before starting its replacement.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


class PromotionCountdown:
    """
    Ticks once per interval until zero, then fires on_expire once.

    on_tick receives the remaining seconds. on_expire may be a coroutine
    function; it is scheduled as a task on the running loop.
    """

    def __init__(
        self,
        remaining_seconds: int,
        on_expire: Callable[[], Any],
        on_tick: Optional[Callable[[int], Any]] = None,
        interval: float = TICK_SECONDS,
    ):
        self.remaining_seconds = max(0, int(remaining_seconds))
        self.on_expire = on_expire
        self.on_tick = on_tick
        self.interval = interval
        self._handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self.cancelled = False
        self.expired = False

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self.cancelled or self.expired or self._handle is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._schedule()

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self.cancelled:
            return

        self.remaining_seconds = max(0, self.remaining_seconds - 1)
        if self.on_tick is not None:
            self._invoke(self.on_tick, self.remaining_seconds)

        if self.remaining_seconds <= 0:
            self.expired = True
            logger.info("promotion.countdown.expired")
            self._invoke(self.on_expire)
            return

        self._schedule()

    def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        result = callback(*args)
        if inspect.isawaitable(result):
            task = self._loop.create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "promotion.countdown.callback_failed",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"error_code": "countdown_callback_failed"},
            )

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class CountdownSlot:
    """Holds the single live countdown for a page."""

    def __init__(self):
        self.current: Optional[PromotionCountdown] = None

    def replace(self, countdown: Optional[PromotionCountdown]) -> None:
        """Cancel the current countdown (if any) and start the new one."""
        if self.current is not None:
            self.current.cancel()
        self.current = countdown
        if countdown is not None:
            countdown.start()

    def clear(self) -> None:
        self.replace(None)

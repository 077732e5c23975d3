"""
Polling Scheduler

Drives the dashboard's auto-refresh. A single asyncio task owns both the
visible countdown and the refetch trigger, so they are armed, suspended and
cancelled together and can never drift apart.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from streampulse.utils.logging import get_logger

logger = get_logger(__name__, category="poll")

RefreshCallback = Callable[[], Awaitable[object]]
TickCallback = Callable[[float], None]
SleepFunc = Callable[[float], Awaitable[None]]


class PollingScheduler:
    """Counts down from ``interval`` in ``tick`` steps and refreshes at zero."""

    def __init__(
        self,
        on_refresh: RefreshCallback,
        interval: float = 15,
        tick: float = 1,
        on_tick: Optional[TickCallback] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the scheduler.

        Args:
            on_refresh: Coroutine function awaited each time the countdown hits zero
            interval: Seconds between refreshes
            tick: Countdown resolution in seconds
            on_tick: Called with the remaining seconds after every tick
            sleep: Awaitable sleep (swap in a controllable one for tests)
        """
        if interval <= 0 or tick <= 0:
            raise ValueError("interval and tick must be positive")

        self.on_refresh = on_refresh
        self.interval = interval
        self.tick = tick
        self.on_tick = on_tick
        self._sleep = sleep

        self.countdown: float = 0
        self.refresh_count = 0
        self._visible = True
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self._task is not None

    @property
    def visible(self) -> bool:
        return self._visible

    def enable(self) -> None:
        """Arm the countdown at the full interval and start ticking."""
        if self._task is not None:
            logger.debug("Polling already enabled")
            return

        self.countdown = self.interval
        self._task = asyncio.create_task(self._run())
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"Polling enabled (every {self.interval}s)")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Polling loop stopped: {exc}", exc_info=exc)
        # The loop only ends on its own by failing; report polling as off
        if self._task is task:
            self._task = None
            self.countdown = 0

    async def disable(self) -> None:
        """Stop ticking and refreshing; nothing fires after this returns."""
        task = self._task
        self._task = None
        self.countdown = 0

        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Expected when stopping the loop
            pass
        logger.info("Polling disabled")

    def set_visible(self, visible: bool) -> None:
        """Suspend (hidden) or resume (visible) the countdown and refetches."""
        if visible != self._visible:
            logger.debug("View %s", "visible" if visible else "hidden, polling suspended")
        self._visible = visible

    async def _run(self) -> None:
        """Main loop: one shared deadline for the countdown and the refetch."""
        try:
            while True:
                await self._sleep(self.tick)

                # Background suspension: the deadline does not advance while hidden
                if not self._visible:
                    continue

                self.countdown = max(self.countdown - self.tick, 0)
                if self.countdown < 1e-9:
                    self.countdown = self.interval
                    await self._refresh()

                self._tick()

        except asyncio.CancelledError:
            logger.debug("Polling loop cancelled")
            raise

    def _tick(self) -> None:
        if self.on_tick is None:
            return
        try:
            self.on_tick(self.countdown)
        except Exception as e:
            # A failed redraw must not stop the refetch schedule
            logger.error(f"Error in countdown callback: {e}", exc_info=True)

    async def _refresh(self) -> None:
        self.refresh_count += 1
        try:
            await self.on_refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in polling refresh: {e}", exc_info=True)

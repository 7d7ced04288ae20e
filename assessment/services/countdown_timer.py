"""
Countdown Timer

Single asyncio task per exam phase. Decrements once per tick against a
monotonic deadline schedule and raises exactly one expiry notification.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("assessment.countdown_timer")


class CountdownTimer:
    """
    Cancelable per-session countdown.

    `on_expire` is a plain callable invoked once, from the timer task, when the
    remaining time reaches zero. Callers that need async work should schedule
    their own task from it so that cancelling the timer never cancels that work.
    """

    def __init__(
        self,
        on_expire: Callable[[], None],
        on_tick: Optional[Callable[[int], None]] = None,
        tick_seconds: float = 1.0,
    ):
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._on_expire = on_expire
        self._on_tick = on_tick
        self.tick_seconds = tick_seconds
        self._remaining = 0
        self._task: Optional[asyncio.Task] = None
        self._expired = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self, duration_seconds: int) -> None:
        """Start counting down from `duration_seconds`. Must be called inside a running loop."""
        if self.running:
            raise RuntimeError("Countdown timer is already running")
        self._remaining = max(0, int(duration_seconds))
        self._expired = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        """Stop the countdown without firing expiry. Safe to call repeatedly."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def reset(self) -> None:
        self.cancel()
        self._remaining = 0
        self._expired = False

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        ticks = 0
        try:
            while self._remaining > 0:
                ticks += 1
                deadline = started + ticks * self.tick_seconds
                await asyncio.sleep(max(0.0, deadline - loop.time()))
                self._remaining -= 1
                if self._on_tick is not None:
                    try:
                        self._on_tick(self._remaining)
                    except Exception as e:
                        logger.warning(f"Timer tick listener failed: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Countdown cancelled with {self._remaining}s remaining")
            raise

        if not self._expired:
            self._expired = True
            logger.info("Countdown reached zero")
            self._on_expire()

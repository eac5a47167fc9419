"""Cooperative frame clock driving the harness timeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from headless_bench.config import DEFAULT_TICK_RATE

logger = logging.getLogger(__name__)


class FrameClock:
    """Advances a frame counter once per scheduler tick.

    Ticks are scheduled against the event loop clock at *tick_rate*
    per second.  When the loop is saturated ticks arrive late and the
    observed frame rate drops, which is what the metrics report as FPS.
    """

    def __init__(self, tick_rate: float = DEFAULT_TICK_RATE) -> None:
        if tick_rate <= 0:
            msg = f"tick_rate must be positive, got {tick_rate}"
            raise ValueError(msg)
        self._interval = 1.0 / tick_rate
        self._frame_count = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def frame_count(self) -> int:
        """Frames elapsed since the clock started."""
        return self._frame_count

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="frame-clock")
        logger.debug("Frame clock started at %.1f ticks/s", 1.0 / self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self._frame_count += 1
            next_tick += self._interval
            now = loop.time()
            if next_tick < now:
                # Fell behind; resume from now instead of bursting.
                next_tick = now
            await asyncio.sleep(next_tick - now)

"""Once-per-second throughput sampler.

Rates are computed by differencing monotonically increasing totals
against the previous sample.  Missed ticks are folded into the next
sample; there is no drift correction.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class MessageCounters(Protocol):
    """Source of cumulative message totals."""

    @property
    def inbound_total(self) -> int: ...

    @property
    def outbound_total(self) -> int: ...


class FrameCounter(Protocol):
    """Source of the cumulative frame count."""

    @property
    def frame_count(self) -> int: ...


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Activity during one sampling interval."""

    frames: int
    inbound: int
    outbound: int
    players: int

    def format(self) -> str:
        return (
            f"{self.frames} FPS {self.inbound} inbound messages "
            f"{self.outbound} outbound messages {self.players} clients"
        )


def _log_snapshot(snapshot: MetricsSnapshot) -> None:
    logger.info("%s", snapshot.format())


class MetricsSampler:
    """Reports frame and message deltas once per *interval*.

    The sampler only reads the counters; it never resets them.
    """

    def __init__(
        self,
        counters: MessageCounters,
        frames: FrameCounter,
        player_count: Callable[[], int],
        *,
        interval: float = 1.0,
        emit: Callable[[MetricsSnapshot], None] | None = None,
    ) -> None:
        self._counters = counters
        self._frames = frames
        self._player_count = player_count
        self._interval = interval
        self._emit = emit or _log_snapshot
        self._previous_frames = frames.frame_count
        self._previous_inbound = counters.inbound_total
        self._previous_outbound = counters.outbound_total
        self._task: asyncio.Task[None] | None = None
        self.last_snapshot: MetricsSnapshot | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset_baseline(self) -> None:
        """Take the current totals as the baseline for the next sample."""
        self._previous_frames = self._frames.frame_count
        self._previous_inbound = self._counters.inbound_total
        self._previous_outbound = self._counters.outbound_total

    def sample(self) -> MetricsSnapshot:
        """Compute the deltas since the previous sample and advance the baseline."""
        frame_count = self._frames.frame_count
        inbound_total = self._counters.inbound_total
        outbound_total = self._counters.outbound_total

        snapshot = MetricsSnapshot(
            frames=frame_count - self._previous_frames,
            inbound=inbound_total - self._previous_inbound,
            outbound=outbound_total - self._previous_outbound,
            players=self._player_count(),
        )

        self._previous_frames = frame_count
        self._previous_inbound = inbound_total
        self._previous_outbound = outbound_total
        self.last_snapshot = snapshot
        return snapshot

    def start(self) -> None:
        if self.running:
            return
        # Traffic from before activation is excluded from the first sample.
        self.reset_baseline()
        self._task = asyncio.create_task(self._run(), name="metrics-sampler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._emit(self.sample())

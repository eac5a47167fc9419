"""Tests for the frame clock."""

import asyncio

import pytest

from headless_bench.scheduler import FrameClock
from tests.helpers import wait_until


class TestFrameClock:
    def test_rejects_non_positive_tick_rate(self):
        with pytest.raises(ValueError, match="tick_rate must be positive"):
            FrameClock(0)

    def test_initial_state(self):
        clock = FrameClock()
        assert clock.frame_count == 0
        assert not clock.running

    async def test_advances_while_running(self):
        clock = FrameClock(200)
        clock.start()
        try:
            await wait_until(lambda: clock.frame_count >= 5)
            assert clock.running
        finally:
            await clock.stop()
        assert not clock.running

    async def test_stops_advancing_after_stop(self):
        clock = FrameClock(200)
        clock.start()
        await wait_until(lambda: clock.frame_count >= 2)
        await clock.stop()
        frozen = clock.frame_count
        await asyncio.sleep(0.05)
        assert clock.frame_count == frozen

    async def test_rate_is_bounded_by_tick_rate(self):
        clock = FrameClock(50)
        clock.start()
        await asyncio.sleep(0.2)
        await clock.stop()
        # 0.2 s at 50 ticks/s is about 10 frames; allow generous slack.
        assert 1 <= clock.frame_count <= 20

    async def test_start_is_idempotent(self):
        clock = FrameClock(100)
        clock.start()
        task = clock._task
        clock.start()
        assert clock._task is task
        await clock.stop()

    async def test_stop_when_not_started(self):
        await FrameClock().stop()

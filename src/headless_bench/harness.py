"""Benchmark orchestrator wiring configuration, transport, server and swarm."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from headless_bench.diagnostics import NetworkDiagnostics
from headless_bench.metrics import MetricsSampler
from headless_bench.scheduler import FrameClock
from headless_bench.server import ServerSessionController
from headless_bench.swarm import ClientSwarmLauncher
from headless_bench.transport.selector import create_transport
from headless_bench.world.server import WorldServer

if TYPE_CHECKING:
    from headless_bench.config import BenchmarkConfig
    from headless_bench.transport.port import Transport

logger = logging.getLogger(__name__)


class HeadlessBenchmark:
    """Runs the server role, the client swarm, or both, from one configuration.

    Exactly one transport instance is built and shared by both roles.
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        *,
        transport: Transport | None = None,
        diagnostics: NetworkDiagnostics | None = None,
    ) -> None:
        self._config = config
        self._diagnostics = diagnostics or NetworkDiagnostics()
        self._transport = transport or create_transport(config)
        self._frame_clock = FrameClock(config.tick_rate)
        self._controller: ServerSessionController | None = None
        self._launcher: ClientSwarmLauncher | None = None
        self._stop_event: asyncio.Event | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> BenchmarkConfig:
        return self._config

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def diagnostics(self) -> NetworkDiagnostics:
        return self._diagnostics

    @property
    def frame_clock(self) -> FrameClock:
        return self._frame_clock

    @property
    def controller(self) -> ServerSessionController | None:
        return self._controller

    @property
    def launcher(self) -> ClientSwarmLauncher | None:
        return self._launcher

    async def start(self) -> None:
        """Start the frame clock, then the server (if enabled), then the swarm."""
        self._frame_clock.start()

        if self._config.server:
            world = WorldServer(self._transport, self._diagnostics)
            sampler = MetricsSampler(
                self._diagnostics,
                self._frame_clock,
                lambda: world.num_players,
            )
            self._controller = ServerSessionController(
                world,
                monster_count=self._config.monster_count,
                sampler=sampler,
            )
            await self._controller.start()

        if self._config.client_count > 0:
            self._launcher = ClientSwarmLauncher(
                self._transport,
                self._diagnostics,
                count=self._config.client_count,
                address=self._config.address,
                ramp_concurrency=self._config.ramp_concurrency,
            )
            self._spawn_task(self._launcher.run())

    async def stop(self) -> None:
        """Stop all roles and release the shared transport."""
        if self._stop_event is not None:
            self._stop_event.set()
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        if self._launcher is not None:
            await self._launcher.stop()
        if self._controller is not None:
            await self._controller.stop()
        await self._transport.stop()
        await self._frame_clock.stop()

    async def run(self) -> None:
        """Start the benchmark and block until stopped."""
        self._stop_event = asyncio.Event()
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def __aenter__(self) -> HeadlessBenchmark:
        """Start the benchmark as an async context manager."""
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Stop the benchmark when exiting the context."""
        await self.stop()

    def _spawn_task(self, coro: Any) -> None:
        """Create a background task and track it to prevent GC."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

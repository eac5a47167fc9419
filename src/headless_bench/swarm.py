"""Ramp a swarm of simulated clients up against a server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from headless_bench.config import DEFAULT_ADDRESS
from headless_bench.load import SyntheticLoadGenerator
from headless_bench.world.client import WorldClient
from headless_bench.world.entity import MONSTER_PREFAB, PLAYER_PREFAB

if TYPE_CHECKING:
    from headless_bench.diagnostics import NetworkDiagnostics
    from headless_bench.transport.port import Transport
    from headless_bench.world.entity import NetworkEntity

logger = logging.getLogger(__name__)


class SessionOutcome(Enum):
    """Result of one client's connection attempt."""

    PENDING = "pending"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class ClientSession:
    """One simulated client.  The transport is shared, not owned."""

    index: int
    transport: Transport
    client: WorldClient
    outcome: SessionOutcome = SessionOutcome.PENDING
    error: BaseException | None = None
    load_generators: list[SyntheticLoadGenerator] = field(default_factory=list)


class ClientSwarmLauncher:
    """Connects *count* clients to *address*, in index order.

    With the default ``ramp_concurrency`` of 1 each connection attempt
    resolves before the next one starts, so the server under test never
    sees a connection storm and ramp-up time grows linearly with the
    swarm.  Larger values keep up to that many attempts in flight.
    A failed attempt is logged and does not stop the rest of the swarm.
    """

    def __init__(
        self,
        transport: Transport,
        diagnostics: NetworkDiagnostics,
        *,
        count: int,
        address: str = DEFAULT_ADDRESS,
        ramp_concurrency: int = 1,
    ) -> None:
        if count < 0:
            msg = f"count must be >= 0, got {count}"
            raise ValueError(msg)
        if ramp_concurrency < 1:
            msg = f"ramp_concurrency must be >= 1, got {ramp_concurrency}"
            raise ValueError(msg)
        self._transport = transport
        self._diagnostics = diagnostics
        self._count = count
        self._address = address
        self._ramp_concurrency = ramp_concurrency
        self._sessions: list[ClientSession] = []
        self._resolved = 0

    @property
    def sessions(self) -> list[ClientSession]:
        return list(self._sessions)

    @property
    def connected_count(self) -> int:
        return sum(1 for s in self._sessions if s.outcome is SessionOutcome.CONNECTED)

    async def run(self) -> list[ClientSession]:
        """Launch the whole swarm and return its sessions once all attempts resolved."""
        if self._count == 0:
            return []
        logger.info("Starting %d clients", self._count)

        if self._ramp_concurrency == 1:
            for index in range(self._count):
                await self._launch(self._new_session(index))
            return self.sessions

        slots = asyncio.Semaphore(self._ramp_concurrency)
        async with asyncio.TaskGroup() as group:
            for index in range(self._count):
                await slots.acquire()
                group.create_task(self._launch_in_slot(self._new_session(index), slots))
        return self.sessions

    async def stop(self) -> None:
        """Stop every load generator and disconnect every client."""
        for session in self._sessions:
            for generator in session.load_generators:
                await generator.stop()
            await session.client.disconnect()

    def _new_session(self, index: int) -> ClientSession:
        client = WorldClient(f"Client {index}", self._transport, self._diagnostics)
        client.register_prefab(MONSTER_PREFAB)
        client.register_prefab(PLAYER_PREFAB)
        session = ClientSession(index=index, transport=self._transport, client=client)
        client.on_spawned(lambda entity: self._attach_load(session, entity))
        self._sessions.append(session)
        return session

    @staticmethod
    def _attach_load(session: ClientSession, entity: NetworkEntity) -> None:
        generator = SyntheticLoadGenerator(entity)
        generator.attach()
        session.load_generators.append(generator)

    async def _launch_in_slot(self, session: ClientSession, slots: asyncio.Semaphore) -> None:
        try:
            await self._launch(session)
        finally:
            slots.release()

    async def _launch(self, session: ClientSession) -> None:
        try:
            await session.client.connect(self._address)
            await session.client.send_join()
        except Exception as exc:
            session.outcome = SessionOutcome.FAILED
            session.error = exc
            logger.exception("Client %d failed to connect to %s", session.index, self._address)
            await session.client.disconnect()
        else:
            session.outcome = SessionOutcome.CONNECTED
        self._resolved += 1
        logger.info("Started %d clients", self._resolved)

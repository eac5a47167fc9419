"""Server-side session: listen, then populate the world with monsters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from headless_bench.world.entity import MONSTER_PREFAB, NetworkEntity

if TYPE_CHECKING:
    from headless_bench.metrics import MetricsSampler
    from headless_bench.world.server import WorldServer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServerSession:
    """Point-in-time view of the server role."""

    player_count: int
    spawned_count: int


class ServerSessionController:
    """Starts the world server and, once it is active, the server-side load.

    On activation it logs readiness, starts the metrics sampler and spawns
    ``monster_count`` monsters one after another, named by index.
    """

    def __init__(
        self,
        world: WorldServer,
        *,
        monster_count: int = 0,
        sampler: MetricsSampler | None = None,
    ) -> None:
        if monster_count < 0:
            msg = f"monster_count must be >= 0, got {monster_count}"
            raise ValueError(msg)
        self._world = world
        self._monster_count = monster_count
        self._sampler = sampler
        self._monsters: list[NetworkEntity] = []

    @property
    def world(self) -> WorldServer:
        return self._world

    @property
    def monsters(self) -> list[NetworkEntity]:
        return list(self._monsters)

    @property
    def session(self) -> ServerSession:
        return ServerSession(
            player_count=self._world.num_players,
            spawned_count=len(self._monsters),
        )

    async def start(self) -> None:
        """Register the activation callback and start listening."""
        self._world.on_started(self._on_server_started)
        logger.info("Starting Server Only Mode")
        await self._world.listen()

    async def stop(self) -> None:
        if self._sampler is not None:
            await self._sampler.stop()
        await self._world.stop()

    def _on_server_started(self) -> None:
        logger.info("Server started")
        if self._sampler is not None:
            self._sampler.start()
        for index in range(self._monster_count):
            self.spawn_monster(index)
        if self._monster_count:
            logger.info("Spawned %d monsters", self._monster_count)

    def spawn_monster(self, index: int) -> NetworkEntity:
        monster = NetworkEntity(f"Monster {index}", MONSTER_PREFAB)
        self._world.spawn(monster)
        self._monsters.append(monster)
        return monster

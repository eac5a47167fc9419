"""World client: one simulated player session mirroring the server's world."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from headless_bench.diagnostics import MessageInfo
from headless_bench.errors import TransportClosedError
from headless_bench.world.entity import NetworkEntity
from headless_bench.world.messages import (
    AuthorityMessage,
    DespawnMessage,
    JoinMessage,
    RpcMessage,
    SpawnMessage,
    decode_message,
    encode_message,
    message_type,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from headless_bench.diagnostics import NetworkDiagnostics
    from headless_bench.transport.port import Connection, Transport
    from headless_bench.world.messages import WorldMessage

logger = logging.getLogger(__name__)


class WorldClient:
    """Connects through a (shared) transport and mirrors spawned entities.

    Only entities whose prefab has been registered are instantiated;
    others are dropped with a warning.
    """

    def __init__(self, name: str, transport: Transport, diagnostics: NetworkDiagnostics) -> None:
        self.name = name
        self._transport = transport
        self._diagnostics = diagnostics
        self._prefabs: set[str] = set()
        self._spawn_callbacks: list[Callable[[NetworkEntity], None]] = []
        self._entities: dict[int, NetworkEntity] = {}
        self._connection: Connection | None = None
        self._receive_task: asyncio.Task[None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.is_open

    @property
    def entities(self) -> Mapping[int, NetworkEntity]:
        return dict(self._entities)

    def register_prefab(self, prefab: str) -> None:
        self._prefabs.add(prefab)

    def on_spawned(self, callback: Callable[[NetworkEntity], None]) -> None:
        """Register *callback* for every entity this client instantiates."""
        self._spawn_callbacks.append(callback)

    async def connect(self, address: str) -> None:
        """Connect to the world server at *address* and start receiving.

        :raises OSError: If the transport cannot connect.
        """
        if self._connection is not None:
            msg = f"{self.name} is already connected"
            raise RuntimeError(msg)
        self._connection = await self._transport.connect(address)
        self._receive_task = asyncio.create_task(
            self._receive_loop(self._connection), name=f"{self.name}-receive"
        )
        logger.debug("%s connected to %s", self.name, self._connection.remote)

    async def send_join(self) -> None:
        """Introduce this client so the server creates its player."""
        await self._send(JoinMessage())

    async def disconnect(self) -> None:
        if self._receive_task is not None:
            self._receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receive_task
            self._receive_task = None
        if self._connection is not None:
            await self._connection.close()
        self._destroy_all()

    async def _send(self, message: WorldMessage) -> None:
        if self._connection is None:
            msg = f"{self.name} is not connected"
            raise TransportClosedError(msg)
        data = encode_message(message)
        await self._connection.send(data)
        self._diagnostics.record_outbound(MessageInfo(message_type(message).name, len(data)))

    async def _send_rpc(self, entity: NetworkEntity, method: str) -> None:
        await self._send(RpcMessage(entity_id=entity.entity_id, method=method))

    async def _receive_loop(self, connection: Connection) -> None:
        try:
            while True:
                data = await connection.recv()
                try:
                    message = decode_message(data)
                except ValueError:
                    logger.warning("%s dropped malformed message", self.name)
                    continue
                self._diagnostics.record_inbound(
                    MessageInfo(message_type(message).name, len(data))
                )
                self._apply(message)
        except TransportClosedError:
            logger.info("%s disconnected", self.name)
        finally:
            self._destroy_all()

    def _apply(self, message: WorldMessage) -> None:
        match message:
            case SpawnMessage(entity_id=entity_id, prefab=prefab, name=name):
                if prefab not in self._prefabs:
                    logger.warning("%s cannot spawn unregistered prefab %r", self.name, prefab)
                    return
                entity = NetworkEntity(name, prefab, entity_id)
                entity.bind_rpc(self._send_rpc)
                self._entities[entity_id] = entity
                for callback in self._spawn_callbacks:
                    callback(entity)
            case AuthorityMessage(entity_id=entity_id, granted=granted):
                entity = self._entities.get(entity_id)
                if entity is None:
                    logger.debug("%s got authority for unknown entity %d", self.name, entity_id)
                elif granted:
                    entity.grant_authority()
                else:
                    entity.revoke_authority()
            case DespawnMessage(entity_id=entity_id):
                despawned = self._entities.pop(entity_id, None)
                if despawned is not None:
                    despawned.destroy()
            case _:
                logger.warning("%s got unexpected %s", self.name, type(message).__name__)

    def _destroy_all(self) -> None:
        for entity in self._entities.values():
            entity.destroy()
        self._entities.clear()

"""Authoritative world server: accepts clients, spawns and replicates entities."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, Any

from headless_bench.diagnostics import MessageInfo
from headless_bench.errors import TransportClosedError
from headless_bench.world.entity import PLAYER_PREFAB, NetworkEntity
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

CLICK_METHOD = "click_something"


class _Peer:
    """Server-side view of one client connection."""

    __slots__ = ("connection", "joined")

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.joined = False


class WorldServer:
    """Listens on a transport and keeps the live world.

    Clients become players by sending a join message; each player gets
    an entity it has authority over.  Server RPCs are only accepted from
    the owner of the target entity.
    """

    def __init__(
        self,
        transport: Transport,
        diagnostics: NetworkDiagnostics,
        *,
        player_prefab: str = PLAYER_PREFAB,
    ) -> None:
        self._transport = transport
        self._diagnostics = diagnostics
        self._player_prefab = player_prefab
        self._started_callbacks: list[Callable[[], None]] = []
        self._active = False
        self._peers: dict[Connection, _Peer] = {}
        self._entities: dict[int, NetworkEntity] = {}
        self._entity_ids = itertools.count(1)
        self._player_numbers = itertools.count()
        self._rpc_handlers: dict[str, Callable[[NetworkEntity], Any]] = {
            CLICK_METHOD: lambda entity: None,
        }
        self._rpc_count = 0
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def num_players(self) -> int:
        """Number of connected clients that have joined."""
        return sum(1 for peer in self._peers.values() if peer.joined)

    @property
    def entities(self) -> Mapping[int, NetworkEntity]:
        return dict(self._entities)

    @property
    def rpc_count(self) -> int:
        """Server RPCs dispatched since startup."""
        return self._rpc_count

    def on_started(self, callback: Callable[[], None]) -> None:
        """Register *callback* to run once the server is listening."""
        self._started_callbacks.append(callback)

    def register_rpc(self, method: str, handler: Callable[[NetworkEntity], Any]) -> None:
        """Register *handler* for server RPC *method*."""
        self._rpc_handlers[method] = handler

    async def listen(self) -> None:
        """Start listening and fire the activation callbacks."""
        if self._active:
            return
        self._transport.on_accept(self._on_accept)
        await self._transport.listen()
        self._active = True
        for callback in self._started_callbacks:
            callback()

    async def stop(self) -> None:
        """Disconnect all clients and clear the world.

        The transport itself is shared and stopped by its owner.
        """
        self._active = False
        peers = list(self._peers.values())
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        for peer in peers:
            await peer.connection.close()
        self._peers.clear()
        for entity in self._entities.values():
            entity.destroy()
        self._entities.clear()

    # --- World API ---

    def spawn(self, entity: NetworkEntity, owner: Connection | None = None) -> NetworkEntity:
        """Place *entity* into the live world and replicate it to joined clients.

        :param entity: The entity to spawn.  Its ``entity_id`` is assigned here.
        :param owner: Connection granted authority over the entity, if any.
        :raises RuntimeError: If the server is not listening.
        """
        if not self._active:
            msg = "World server not active"
            raise RuntimeError(msg)
        entity.entity_id = next(self._entity_ids)
        entity.owner = owner
        self._entities[entity.entity_id] = entity
        for peer in self._peers.values():
            if peer.joined:
                self._spawn_task(self._announce(peer, entity))
        logger.debug("Spawned %s", entity.name)
        return entity

    def despawn(self, entity: NetworkEntity) -> None:
        """Remove *entity* from the world and tell joined clients."""
        if self._entities.pop(entity.entity_id, None) is None:
            return
        entity.destroy()
        if not self._active:
            return
        message = DespawnMessage(entity_id=entity.entity_id)
        for peer in self._peers.values():
            if peer.joined:
                self._spawn_task(self._send_quietly(peer, message))

    # --- Connection handling ---

    def _spawn_task(self, coro: Any) -> None:
        """Create a background task and track it to prevent GC."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _on_accept(self, connection: Connection) -> None:
        peer = _Peer(connection)
        self._peers[connection] = peer
        logger.debug("Client connected from %s", connection.remote)
        self._spawn_task(self._serve(peer))

    async def _serve(self, peer: _Peer) -> None:
        connection = peer.connection
        try:
            while True:
                data = await connection.recv()
                try:
                    message = decode_message(data)
                except ValueError:
                    logger.warning("Dropped malformed message from %s", connection.remote)
                    continue
                self._diagnostics.record_inbound(
                    MessageInfo(message_type(message).name, len(data))
                )
                await self._dispatch(peer, message)
        except TransportClosedError:
            logger.debug("Connection from %s closed", connection.remote)
        finally:
            self._drop_peer(peer)

    async def _dispatch(self, peer: _Peer, message: WorldMessage) -> None:
        match message:
            case JoinMessage():
                await self._handle_join(peer)
            case RpcMessage():
                self._handle_rpc(peer, message)
            case _:
                logger.warning(
                    "Unexpected %s from %s", type(message).__name__, peer.connection.remote
                )

    async def _handle_join(self, peer: _Peer) -> None:
        if peer.joined:
            logger.warning("Duplicate join from %s ignored", peer.connection.remote)
            return
        peer.joined = True
        for entity in list(self._entities.values()):
            await self._send(peer, _spawn_message(entity))
        player = NetworkEntity(f"Player {next(self._player_numbers)}", self._player_prefab)
        self.spawn(player, owner=peer.connection)
        logger.info("Player joined from %s (%d players)", peer.connection.remote, self.num_players)

    def _handle_rpc(self, peer: _Peer, message: RpcMessage) -> None:
        entity = self._entities.get(message.entity_id)
        if entity is None:
            logger.debug("Dropped RPC %s for unknown entity %d", message.method, message.entity_id)
            return
        if entity.owner is not peer.connection:
            logger.warning(
                "Dropped RPC %s on %s from non-owner %s",
                message.method,
                entity.name,
                peer.connection.remote,
            )
            return
        handler = self._rpc_handlers.get(message.method)
        if handler is None:
            logger.warning("Dropped unknown RPC %s on %s", message.method, entity.name)
            return
        self._rpc_count += 1
        handler(entity)

    def _drop_peer(self, peer: _Peer) -> None:
        if self._peers.pop(peer.connection, None) is None:
            return
        for entity in list(self._entities.values()):
            if entity.owner is peer.connection:
                self.despawn(entity)
        if peer.joined:
            logger.info(
                "Player from %s disconnected (%d players)", peer.connection.remote, self.num_players
            )

    # --- Sending ---

    async def _send(self, peer: _Peer, message: WorldMessage) -> None:
        data = encode_message(message)
        await peer.connection.send(data)
        self._diagnostics.record_outbound(MessageInfo(message_type(message).name, len(data)))

    async def _send_quietly(self, peer: _Peer, message: WorldMessage) -> None:
        try:
            await self._send(peer, message)
        except TransportClosedError:
            logger.debug(
                "Skipped %s to closed peer %s", type(message).__name__, peer.connection.remote
            )

    async def _announce(self, peer: _Peer, entity: NetworkEntity) -> None:
        try:
            await self._send(peer, _spawn_message(entity))
            if entity.owner is peer.connection:
                await self._send(peer, AuthorityMessage(entity_id=entity.entity_id, granted=True))
        except TransportClosedError:
            logger.debug(
                "Skipped spawn of %s to closed peer %s", entity.name, peer.connection.remote
            )


def _spawn_message(entity: NetworkEntity) -> SpawnMessage:
    return SpawnMessage(entity_id=entity.entity_id, prefab=entity.prefab, name=entity.name)

"""Networked entities and their authority lifecycle."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

MONSTER_PREFAB = "monster"
PLAYER_PREFAB = "player"


class AuthorityState(Enum):
    """Whether the local session may issue privileged actions for an entity."""

    NO_AUTHORITY = "no-authority"
    HAS_AUTHORITY = "has-authority"


class NetworkEntity:
    """An object replicated between the world server and its clients.

    Authority moves ``NO_AUTHORITY -> HAS_AUTHORITY`` at most once per
    grant.  :meth:`wait_for_authority` resolves on the first grant and stays
    resolved; :meth:`wait_for_release` resolves when authority is revoked
    or the entity is destroyed.
    """

    def __init__(self, name: str, prefab: str, entity_id: int = 0) -> None:
        self.name = name
        self.prefab = prefab
        self.entity_id = entity_id
        self.owner: Any = None
        self._state = AuthorityState.NO_AUTHORITY
        self._destroyed = False
        self._acquired = asyncio.Event()
        self._released = asyncio.Event()
        self._ended = asyncio.Event()
        self._rpc_sender: Callable[[NetworkEntity, str], Awaitable[None]] | None = None

    @property
    def state(self) -> AuthorityState:
        return self._state

    @property
    def has_authority(self) -> bool:
        return self._state is AuthorityState.HAS_AUTHORITY

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def grant_authority(self) -> None:
        """Transition to ``HAS_AUTHORITY``; a no-op if already there or destroyed."""
        if self._destroyed or self.has_authority:
            return
        self._state = AuthorityState.HAS_AUTHORITY
        self._released.clear()
        self._acquired.set()
        logger.debug("%s acquired authority", self.name)

    def revoke_authority(self) -> None:
        """Transition back to ``NO_AUTHORITY``."""
        if not self.has_authority:
            return
        self._state = AuthorityState.NO_AUTHORITY
        self._released.set()
        logger.debug("%s lost authority", self.name)

    def destroy(self) -> None:
        """End the entity's lifetime; authority is released."""
        if self._destroyed:
            return
        self._destroyed = True
        self._state = AuthorityState.NO_AUTHORITY
        self._released.set()
        self._ended.set()

    async def wait_for_authority(self) -> None:
        await self._acquired.wait()

    async def wait_for_release(self) -> None:
        await self._released.wait()

    async def wait_for_destroy(self) -> None:
        await self._ended.wait()

    def bind_rpc(self, sender: Callable[[NetworkEntity, str], Awaitable[None]]) -> None:
        """Route :meth:`call_server_rpc` through *sender*."""
        self._rpc_sender = sender

    async def call_server_rpc(self, method: str) -> None:
        """Invoke the zero-argument server method *method* on this entity.

        :raises RuntimeError: If the entity has no authority or no RPC route.
        """
        if not self.has_authority:
            msg = f"{self.name} has no authority to call {method}"
            raise RuntimeError(msg)
        if self._rpc_sender is None:
            msg = f"{self.name} is not bound to a connection"
            raise RuntimeError(msg)
        await self._rpc_sender(self, method)

    def __repr__(self) -> str:
        return (
            f"NetworkEntity(id={self.entity_id}, name={self.name!r}, "
            f"prefab={self.prefab!r}, state={self._state.value})"
        )

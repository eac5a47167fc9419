"""Randomised background chatter from entities a client has authority over."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from typing import TYPE_CHECKING, Any

from headless_bench.errors import TransportClosedError
from headless_bench.world.server import CLICK_METHOD

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from headless_bench.world.entity import NetworkEntity

logger = logging.getLogger(__name__)

DEFAULT_MAX_INTERVAL = 5.0


class SyntheticLoadGenerator:
    """Issues a no-op server RPC at uniformly random intervals.

    Nothing is sent until the entity acquires authority.  From then on
    the generator calls *method*, sleeps for ``[0, max_interval)``
    seconds and repeats until authority is lost, the entity is
    destroyed, or :meth:`stop` is called.
    """

    def __init__(
        self,
        entity: NetworkEntity,
        *,
        method: str = CLICK_METHOD,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        rng: random.Random | None = None,
    ) -> None:
        self._entity = entity
        self._method = method
        self._max_interval = max_interval
        self._rng = rng or random.Random()
        self._task: asyncio.Task[None] | None = None
        self.invocations = 0

    @property
    def entity(self) -> NetworkEntity:
        return self._entity

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self) -> asyncio.Task[None]:
        """Start watching the entity for authority; returns the generator task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"load-{self._entity.name}")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    def next_interval(self) -> float:
        """Draw the next pause, uniform over ``[0, max_interval)``."""
        return self._rng.random() * self._max_interval

    async def _run(self) -> None:
        await _first_of(self._entity.wait_for_authority(), self._entity.wait_for_destroy())
        if not self._entity.has_authority:
            return
        logger.debug("%s started generating load", self._entity.name)
        try:
            await _first_of(self._chatter(), self._entity.wait_for_release())
        except TransportClosedError:
            logger.debug("%s connection closed", self._entity.name)
        logger.debug("%s stopped generating load", self._entity.name)

    async def _chatter(self) -> None:
        while self._entity.has_authority:
            await self._entity.call_server_rpc(self._method)
            self.invocations += 1
            await asyncio.sleep(self.next_interval())


async def _first_of(*aws: Coroutine[Any, Any, None]) -> None:
    """Run *aws* until the first one finishes, then cancel the rest.

    Re-raises the exception of a task that finished by raising.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        task.result()

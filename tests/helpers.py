"""Shared test utilities for headless-bench tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from headless_bench.errors import TransportClosedError
from headless_bench.world.messages import decode_message

if TYPE_CHECKING:
    from collections.abc import Callable

    from headless_bench.world.messages import WorldMessage


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it is true, failing the test after *timeout* seconds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeConnection:
    """In-memory connection recording sent messages."""

    def __init__(self, remote: str = "127.0.0.1:7777") -> None:
        self.remote = remote
        self.is_open = True
        self.sent: list[bytes] = []
        self._inbound: asyncio.Queue[bytes | None] = asyncio.Queue()

    async def send(self, data: bytes) -> None:
        if not self.is_open:
            msg = f"Connection to {self.remote} is closed"
            raise TransportClosedError(msg)
        self.sent.append(data)

    async def recv(self) -> bytes:
        data = await self._inbound.get()
        if data is None:
            msg = f"Connection to {self.remote} closed"
            raise TransportClosedError(msg)
        return data

    async def close(self) -> None:
        if not self.is_open:
            return
        self.is_open = False
        self._inbound.put_nowait(None)

    def feed(self, data: bytes) -> None:
        """Queue *data* as if the peer had sent it."""
        self._inbound.put_nowait(data)

    def sent_messages(self) -> list[WorldMessage]:
        return [decode_message(data) for data in self.sent]


class FakeTransport:
    """Transport double tracking connect attempts and their overlap."""

    def __init__(
        self,
        port: int = 7777,
        *,
        connect_delay: float = 0.0,
        fail_indices: frozenset[int] = frozenset(),
    ) -> None:
        self.port = port
        self.listening = False
        self.stopped = False
        self.connect_calls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.active_connects = 0
        self.max_active_connects = 0
        self._connect_delay = connect_delay
        self._fail_indices = fail_indices
        self._accept_callback: Callable[[FakeConnection], None] | None = None

    def on_accept(self, callback: Callable[[FakeConnection], None]) -> None:
        self._accept_callback = callback

    async def listen(self) -> None:
        self.listening = True

    async def connect(self, address: str) -> FakeConnection:
        index = len(self.connect_calls)
        self.connect_calls.append(address)
        self.active_connects += 1
        self.max_active_connects = max(self.max_active_connects, self.active_connects)
        try:
            await asyncio.sleep(self._connect_delay)
            if index in self._fail_indices:
                msg = f"Connection {index} refused"
                raise ConnectionRefusedError(msg)
        finally:
            self.active_connects -= 1
        connection = FakeConnection(f"{address}:{self.port}")
        self.connections.append(connection)
        return connection

    def accept(self, connection: FakeConnection) -> None:
        """Simulate an inbound connection in the server role."""
        assert self._accept_callback is not None, "listen() was not called"
        self._accept_callback(connection)

    async def stop(self) -> None:
        self.stopped = True
        self.listening = False

"""Transport abstraction shared by the server and client roles.

Defines the ``Transport`` and ``Connection`` protocols every wire
technology (datagram, WebSocket) must satisfy so the world runtime can
operate without coupling to a specific technology.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable


@runtime_checkable
class Connection(Protocol):
    """One established, bidirectional, message-oriented link."""

    @property
    def remote(self) -> str:
        """Printable address of the peer (``host:port``)."""
        ...

    @property
    def is_open(self) -> bool:
        """Whether the connection can still send and receive."""
        ...

    async def send(self, data: bytes) -> None:
        """Send one message.

        :raises TransportClosedError: If the connection is closed.
        """
        ...

    async def recv(self) -> bytes:
        """Wait for the next message.

        :raises TransportClosedError: When the connection closes.
        """
        ...

    async def close(self) -> None:
        """Close the connection, notifying the peer where possible."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Abstract interface for a transport usable in both roles.

    A single instance listens for inbound connections (server role) and
    dials outbound ones (client role).  Both roles share the configured
    ``port``.
    """

    port: int

    def on_accept(self, callback: Callable[[Connection], None]) -> None:
        """Register a callback for newly accepted server-side connections."""
        ...

    async def listen(self) -> None:
        """Bind ``port`` and start accepting connections.

        When ``port`` is 0 the bound ephemeral port is written back to
        ``port``.
        """
        ...

    async def connect(self, address: str) -> Connection:
        """Open a connection to *address* on ``port``.

        :raises OSError: If the connection cannot be established.
        """
        ...

    async def stop(self) -> None:
        """Stop listening and close every connection this transport owns."""
        ...

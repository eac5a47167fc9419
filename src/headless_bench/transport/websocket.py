"""WebSocket transport using the ``websockets`` sans-I/O protocol.

Each :class:`WebSocketConnection` owns one WebSocket backed by an asyncio
``(StreamReader, StreamWriter)`` pair; all framing is handled by the
``websockets`` ``ClientProtocol`` or ``ServerProtocol``.  World messages
travel as single binary frames.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from websockets.client import ClientProtocol
from websockets.exceptions import ProtocolError, WebSocketException
from websockets.frames import Frame, Opcode
from websockets.http11 import Request
from websockets.protocol import State as _WSState
from websockets.server import ServerProtocol
from websockets.typing import Subprotocol
from websockets.uri import parse_uri

from headless_bench.errors import TransportClosedError

if TYPE_CHECKING:
    from asyncio import StreamReader, StreamWriter
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_PORT = 7778
SUBPROTOCOL = "headless-bench"
DEFAULT_MAX_SIZE = 65536

# Read buffer size for asyncio streams
_READ_SIZE = 65536


def _set_nodelay(writer: StreamWriter) -> None:
    """Disable Nagle's algorithm so small frames leave immediately."""
    sock = writer.get_extra_info("socket")
    if sock is not None:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)


def _drain_to_send(protocol: ClientProtocol | ServerProtocol) -> bytes:
    """Collect all pending outgoing data from the protocol."""
    return b"".join(protocol.data_to_send())


def _write_pending(protocol: ClientProtocol | ServerProtocol, writer: StreamWriter) -> bool:
    """Write all pending protocol data to *writer*; return True if any was written."""
    wrote = False
    for chunk in protocol.data_to_send():
        if chunk:
            writer.write(chunk)
            wrote = True
    return wrote


class WebSocketConnection:
    """Async WebSocket connection implementing the ``Connection`` protocol."""

    def __init__(
        self,
        reader: StreamReader,
        writer: StreamWriter,
        protocol: ClientProtocol | ServerProtocol,
        *,
        pending_events: list[Frame] | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._protocol = protocol
        # Frames parsed but not yet returned by recv().  Several frames
        # can arrive in one TCP segment.
        self._pending_events: list[Frame] = pending_events or []
        self._closed = False
        self.on_closed: Callable[[WebSocketConnection], None] | None = None
        peer = writer.get_extra_info("peername")
        self._remote = f"{peer[0]}:{peer[1]}" if peer else "unknown"

    # -- Client factory --

    @classmethod
    async def connect(
        cls,
        uri: str,
        subprotocol: str = SUBPROTOCOL,
        *,
        handshake_timeout: float = 10.0,
        max_size: int | None = DEFAULT_MAX_SIZE,
    ) -> WebSocketConnection:
        """Initiate a client connection to *uri* (``ws://host:port/path``).

        :param uri: WebSocket URI.
        :param subprotocol: WebSocket subprotocol to negotiate.
        :param handshake_timeout: Maximum seconds for the opening handshake.
        :param max_size: Maximum WebSocket message size.
        """
        parsed = urlparse(uri)
        host = parsed.hostname or "localhost"
        port = parsed.port or 80

        reader, writer = await asyncio.open_connection(host, port, family=socket.AF_INET)
        _set_nodelay(writer)

        protocol = ClientProtocol(
            parse_uri(uri),
            subprotocols=[Subprotocol(subprotocol)],
            max_size=max_size,
        )
        protocol.send_request(protocol.connect())
        outgoing = _drain_to_send(protocol)
        if outgoing:
            writer.write(outgoing)
            await writer.drain()

        pending: list[Frame] = []
        try:
            async with asyncio.timeout(handshake_timeout):
                while True:
                    data = await reader.read(_READ_SIZE)
                    if not data:
                        msg = "Connection closed during WebSocket handshake"
                        raise ConnectionError(msg)
                    protocol.receive_data(data)

                    if protocol.handshake_exc is not None:
                        raise protocol.handshake_exc

                    events = protocol.events_received()
                    if events:
                        pending = [event for event in events[1:] if isinstance(event, Frame)]
                        break
        except BaseException:
            writer.close()
            raise

        logger.debug("WebSocket client connected to %s:%d", host, port)
        return cls(reader, writer, protocol, pending_events=pending)

    # -- Server factory --

    @classmethod
    async def accept(
        cls,
        reader: StreamReader,
        writer: StreamWriter,
        subprotocol: str = SUBPROTOCOL,
        *,
        handshake_timeout: float = 10.0,
        max_size: int | None = DEFAULT_MAX_SIZE,
    ) -> WebSocketConnection:
        """Complete the server side of the opening handshake on accepted streams."""
        protocol = ServerProtocol(
            subprotocols=[Subprotocol(subprotocol)],
            max_size=max_size,
        )
        _set_nodelay(writer)

        async with asyncio.timeout(handshake_timeout):
            while True:
                data = await reader.read(_READ_SIZE)
                if not data:
                    msg = "Connection closed before WebSocket handshake"
                    raise ConnectionError(msg)
                protocol.receive_data(data)

                events = protocol.events_received()
                if events:
                    request = events[0]
                    if not isinstance(request, Request):
                        msg = f"Expected HTTP request, got {type(request)}"
                        raise ProtocolError(msg)
                    break

        response = protocol.accept(request)
        protocol.send_response(response)
        outgoing = _drain_to_send(protocol)
        if outgoing:
            writer.write(outgoing)
            await writer.drain()

        if protocol.handshake_exc is not None:
            raise protocol.handshake_exc

        logger.debug("WebSocket server accepted connection")
        return cls(reader, writer, protocol)

    # -- Connection protocol --

    @property
    def remote(self) -> str:
        return self._remote

    @property
    def is_open(self) -> bool:
        return not self._closed and self._protocol.state is _WSState.OPEN

    @property
    def subprotocol(self) -> str | None:
        """The negotiated WebSocket subprotocol."""
        return self._protocol.subprotocol

    async def send(self, data: bytes) -> None:
        """Send one binary frame."""
        if not self.is_open:
            msg = f"WebSocket to {self._remote} is closed"
            raise TransportClosedError(msg)
        self._protocol.send_binary(data)
        try:
            if _write_pending(self._protocol, self._writer):
                await self._writer.drain()
        except OSError as exc:
            self._mark_closed()
            msg = f"WebSocket to {self._remote} failed: {exc}"
            raise TransportClosedError(msg) from exc

    async def recv(self) -> bytes:
        """Receive the next binary message.

        :raises TransportClosedError: On close frame, EOF or socket error.
        """
        while True:
            while self._pending_events:
                result = await self._process_frame(self._pending_events.pop(0))
                if result is not None:
                    return result

            if self._closed:
                msg = f"WebSocket to {self._remote} is closed"
                raise TransportClosedError(msg)

            events = self._protocol.events_received()
            self._pending_events.extend(event for event in events if isinstance(event, Frame))
            if self._pending_events:
                continue

            try:
                data = await self._reader.read(_READ_SIZE)
            except OSError as exc:
                self._mark_closed()
                msg = f"WebSocket to {self._remote} failed: {exc}"
                raise TransportClosedError(msg) from exc
            if not data:
                logger.debug("WebSocket to %s reached EOF", self._remote)
                self._mark_closed()
                msg = f"WebSocket to {self._remote} closed by peer"
                raise TransportClosedError(msg)
            self._protocol.receive_data(data)
            await self._flush_outgoing()

    async def _process_frame(self, event: Frame) -> bytes | None:
        """Return the payload of a BINARY frame; None for control frames.

        A CLOSE frame closes the connection and raises.
        """
        if event.opcode == Opcode.BINARY:
            return bytes(event.data)
        if event.opcode == Opcode.CLOSE:
            await self._flush_outgoing()
            self._mark_closed()
            msg = f"WebSocket to {self._remote} closed by peer"
            raise TransportClosedError(msg)
        if event.opcode in (Opcode.PING, Opcode.PONG):
            await self._flush_outgoing()
        elif event.opcode == Opcode.TEXT:
            logger.debug("Ignoring text frame from %s", self._remote)
        return None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Send a close frame and tear down the TCP connection."""
        if self._closed:
            return
        try:
            if self._protocol.state is _WSState.OPEN:
                self._protocol.send_close(code, reason)
                outgoing = _drain_to_send(self._protocol)
                if outgoing:
                    self._writer.write(outgoing)
                    await self._writer.drain()
        except (OSError, ConnectionError):
            logger.debug("Error sending close to %s", self._remote, exc_info=True)
        finally:
            self._mark_closed()

    async def _flush_outgoing(self) -> None:
        """Write any pending protocol output (pongs, close replies)."""
        if _write_pending(self._protocol, self._writer):
            with contextlib.suppress(OSError, ConnectionError):
                await self._writer.drain()

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if not self._writer.is_closing():
                self._writer.close()
        except (OSError, RuntimeError):
            pass
        if self.on_closed is not None:
            self.on_closed(self)


class WebSocketTransport:
    """WebSocket transport serving both roles from one instance."""

    def __init__(
        self,
        interface: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        path: str = "/",
        subprotocol: str = SUBPROTOCOL,
        handshake_timeout: float = 10.0,
        max_size: int | None = DEFAULT_MAX_SIZE,
    ) -> None:
        """Initialize the WebSocket transport.

        :param interface: Local IPv4 address to bind in the server role.
        :param port: TCP port to listen on and to dial. Defaults to 7778.
        :param path: Request path used by clients.
        :param subprotocol: WebSocket subprotocol both ends must agree on.
        :param handshake_timeout: Maximum seconds for the opening handshake.
        :param max_size: Maximum accepted message size.
        """
        self.port = port
        self._interface = interface
        self._path = path
        self._subprotocol = subprotocol
        self._handshake_timeout = handshake_timeout
        self._max_size = max_size
        self._server: asyncio.Server | None = None
        self._accept_callback: Callable[[WebSocketConnection], None] | None = None
        self._connections: set[WebSocketConnection] = set()

    @property
    def listening(self) -> bool:
        return self._server is not None

    def on_accept(self, callback: Callable[[WebSocketConnection], None]) -> None:
        self._accept_callback = callback

    async def listen(self) -> None:
        """Bind the TCP listener and start accepting WebSocket upgrades."""
        if self._server is not None:
            return  # Already listening
        self._server = await asyncio.start_server(
            self._handle_client,
            self._interface,
            self.port,
            family=socket.AF_INET,
        )
        host, port = self._server.sockets[0].getsockname()[:2]
        self.port = port
        logger.info("WebSocketTransport listening on ws://%s:%d%s", host, port, self._path)

    async def _handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        try:
            connection = await WebSocketConnection.accept(
                reader,
                writer,
                self._subprotocol,
                handshake_timeout=self._handshake_timeout,
                max_size=self._max_size,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning(
                "WebSocket handshake from %s failed: %s", writer.get_extra_info("peername"), exc
            )
            writer.close()
            return
        self._track(connection)
        if self._accept_callback is not None:
            self._accept_callback(connection)

    async def connect(self, address: str) -> WebSocketConnection:
        """Open a WebSocket to ``ws://<address>:<port><path>``."""
        connection = await WebSocketConnection.connect(
            f"ws://{address}:{self.port}{self._path}",
            self._subprotocol,
            handshake_timeout=self._handshake_timeout,
            max_size=self._max_size,
        )
        self._track(connection)
        return connection

    def _track(self, connection: WebSocketConnection) -> None:
        self._connections.add(connection)
        connection.on_closed = self._connections.discard

    async def stop(self) -> None:
        """Close every connection and the listener."""
        for connection in list(self._connections):
            await connection.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("WebSocketTransport stopped")

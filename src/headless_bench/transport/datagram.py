"""Connection-oriented datagram transport over asyncio UDP.

Each peer is identified by its ``(host, port)`` source address.  A
client opens a dedicated UDP endpoint per connection, proves work with a
hashcash stamp and retransmits its CONNECT frame until the server
answers.  DATA frames are sequenced, acknowledged and retransmitted, so
each connection delivers in order without loss.  Both ends send PING
frames while otherwise silent and close a connection whose peer has
gone quiet for longer than the idle timeout.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import os
import socket
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from headless_bench.errors import HandshakeRejectedError, TransportClosedError
from headless_bench.transport import hashcash
from headless_bench.transport.frames import (
    CLIENT_TOKEN_LENGTH,
    FrameKind,
    decode_ack,
    decode_connect,
    decode_data,
    decode_frame,
    encode_ack,
    encode_connect,
    encode_data,
    encode_frame,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from headless_bench.transport.frames import Frame

logger = logging.getLogger(__name__)

DEFAULT_PORT = 7777
DEFAULT_HASHCASH_BITS = 8

_Address = tuple[str, int]


def _format_addr(addr: _Address) -> str:
    return f"{addr[0]}:{addr[1]}"


class _UDPProtocol(asyncio.DatagramProtocol):
    """Low-level :class:`~asyncio.DatagramProtocol` forwarding to callbacks."""

    def __init__(
        self,
        callback: Callable[[bytes, _Address], None],
        connection_lost_callback: Callable[[Exception | None], None] | None = None,
        error_callback: Callable[[Exception], None] | None = None,
    ) -> None:
        self._callback = callback
        self._connection_lost_callback = connection_lost_callback
        self._error_callback = error_callback

    def datagram_received(self, data: bytes, addr: _Address) -> None:
        """Forward an incoming UDP datagram to the registered callback."""
        self._callback(data, addr)

    def error_received(self, exc: Exception) -> None:
        """Handle transport errors (e.g. ICMP port unreachable)."""
        logger.warning("UDP transport error: %s", exc)
        if self._error_callback is not None:
            self._error_callback(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        """Handle transport connection loss (interface down, socket closed)."""
        if exc is not None:
            logger.warning("UDP connection lost: %s", exc)
        else:
            logger.debug("UDP connection closed")
        if self._connection_lost_callback is not None:
            self._connection_lost_callback(exc)


@dataclass(frozen=True, slots=True)
class LinkSettings:
    """Reliability and liveness settings shared by a transport's connections.

    :param window: Maximum unacknowledged DATA frames in flight per
        connection.  :meth:`DatagramConnection.send` waits while the
        window is full.
    :param retransmit_interval: Seconds before an unacknowledged DATA
        frame is sent again.
    :param keepalive_interval: Seconds of send silence after which a
        PING frame is sent.
    :param idle_timeout: Seconds without any frame from the peer before
        the connection is closed as lost.
    """

    window: int = 128
    retransmit_interval: float = 0.2
    keepalive_interval: float = 1.0
    idle_timeout: float = 10.0


class DatagramConnection:
    """One reliable, ordered peer link multiplexed over a UDP socket.

    Every DATA frame carries a sequence number.  The receiver hands
    payloads over in sequence order, holds early arrivals until the gap
    fills, and answers with cumulative ACKs.  The sender keeps at most
    ``window`` frames unacknowledged and resends each one every
    ``retransmit_interval`` until it is acknowledged.
    """

    def __init__(
        self,
        remote: _Address,
        sendto: Callable[[bytes], None],
        on_closed: Callable[[DatagramConnection], None] | None = None,
        *,
        settings: LinkSettings | None = None,
    ) -> None:
        self._remote = remote
        self._sendto = sendto
        self._on_closed = on_closed
        self._settings = settings or LinkSettings()
        self._inbound: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._open = True

        # Sending side: sequence -> (frame, last transmission time).
        self._next_sequence = 0
        self._unacked: dict[int, tuple[bytes, float]] = {}
        self._window_open = asyncio.Event()
        self._window_open.set()

        # Receiving side.
        self._expected = 0
        self._early: dict[int, bytes] = {}
        self._ack_scheduled = False

        now = time.monotonic()
        self._last_sent = now
        self._last_received = now
        self._maintenance: asyncio.Task[None] | None = None

    @property
    def remote(self) -> str:
        return _format_addr(self._remote)

    @property
    def remote_address(self) -> _Address:
        return self._remote

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def in_flight(self) -> int:
        """DATA frames sent but not yet acknowledged."""
        return len(self._unacked)

    def start(self) -> None:
        """Begin retransmission, keepalives and idle detection."""
        if self._maintenance is not None or not self._open:
            return
        self._last_received = time.monotonic()
        self._maintenance = asyncio.create_task(
            self._maintain(), name=f"datagram-link-{self.remote}"
        )

    async def send(self, data: bytes) -> None:
        """Send *data* reliably, waiting while the send window is full.

        :raises TransportClosedError: If the connection is closed before
            the frame can be sent.
        """
        while self._open and len(self._unacked) >= self._settings.window:
            self._window_open.clear()
            await self._window_open.wait()
        if not self._open:
            msg = f"Connection to {self.remote} is closed"
            raise TransportClosedError(msg)
        frame = encode_data(self._next_sequence, data)
        self._unacked[self._next_sequence] = (frame, time.monotonic())
        self._next_sequence += 1
        self._transmit(frame)

    async def recv(self) -> bytes:
        if not self._open and self._inbound.empty():
            msg = f"Connection to {self.remote} is closed"
            raise TransportClosedError(msg)
        data = await self._inbound.get()
        if data is None:
            msg = f"Connection to {self.remote} closed"
            raise TransportClosedError(msg)
        return data

    async def close(self) -> None:
        if not self._open:
            return
        with contextlib.suppress(OSError, TransportClosedError):
            self._transmit(encode_frame(FrameKind.DISCONNECT))
        self._mark_closed()
        task = self._maintenance
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _transmit(self, frame: bytes) -> None:
        self._sendto(frame)
        self._last_sent = time.monotonic()

    def _handle_frame(self, frame: Frame) -> None:
        """Process a frame received from the peer."""
        if not self._open:
            return
        self._last_received = time.monotonic()
        match frame.kind:
            case FrameKind.DATA:
                self._on_data(frame.payload)
            case FrameKind.ACK:
                self._on_ack(frame.payload)
            case FrameKind.PING:
                pass  # liveness only
            case FrameKind.DISCONNECT:
                logger.debug("Peer %s disconnected", self.remote)
                self._mark_closed()
            case _:
                logger.debug("Ignoring %s frame from %s", frame.kind.name, self.remote)

    def _on_data(self, payload: bytes) -> None:
        try:
            sequence, data = decode_data(payload)
        except ValueError:
            logger.warning("Dropped malformed DATA from %s", self.remote)
            return
        if sequence == self._expected:
            self._inbound.put_nowait(data)
            self._expected += 1
            while self._expected in self._early:
                self._inbound.put_nowait(self._early.pop(self._expected))
                self._expected += 1
        elif self._expected < sequence < self._expected + self._settings.window:
            self._early.setdefault(sequence, data)
        # Every DATA frame, duplicates included, is answered with the cumulative ACK.
        self._schedule_ack()

    def _schedule_ack(self) -> None:
        if self._ack_scheduled:
            return
        self._ack_scheduled = True
        asyncio.get_running_loop().call_soon(self._send_ack)

    def _send_ack(self) -> None:
        self._ack_scheduled = False
        if not self._open:
            return
        try:
            self._transmit(encode_ack(self._expected))
        except TransportClosedError:
            self._mark_closed()

    def _on_ack(self, payload: bytes) -> None:
        try:
            next_sequence = decode_ack(payload)
        except ValueError:
            logger.warning("Dropped malformed ACK from %s", self.remote)
            return
        for sequence in list(self._unacked):
            if sequence >= next_sequence:
                break
            del self._unacked[sequence]
        if len(self._unacked) < self._settings.window:
            self._window_open.set()

    async def _maintain(self) -> None:
        settings = self._settings
        tick = min(settings.retransmit_interval, settings.keepalive_interval)
        try:
            while self._open:
                await asyncio.sleep(tick)
                now = time.monotonic()
                if now - self._last_received >= settings.idle_timeout:
                    logger.info(
                        "Connection to %s timed out after %.1fs without traffic",
                        self.remote,
                        settings.idle_timeout,
                    )
                    self._mark_closed()
                    return
                self._retransmit(now)
                if now - self._last_sent >= settings.keepalive_interval:
                    self._transmit(encode_frame(FrameKind.PING))
        except TransportClosedError:
            self._mark_closed()

    def _retransmit(self, now: float) -> None:
        deadline = now - self._settings.retransmit_interval
        for sequence, (frame, sent_at) in list(self._unacked.items()):
            if sent_at <= deadline:
                self._unacked[sequence] = (frame, now)
                self._transmit(frame)

    def _mark_closed(self) -> None:
        if not self._open:
            return
        self._open = False
        self._inbound.put_nowait(None)
        self._unacked.clear()
        self._early.clear()
        self._window_open.set()
        task = self._maintenance
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if self._on_closed is not None:
            self._on_closed(self)

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"DatagramConnection({self.remote}, {state})"


class DatagramTransport:
    """UDP transport serving both roles from one instance.

    The server role binds a single socket on ``interface:port``; every
    outbound connection gets its own ephemeral socket.
    """

    def __init__(
        self,
        interface: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        hashcash_bits: int = DEFAULT_HASHCASH_BITS,
        connect_timeout: float = 10.0,
        connect_retry_interval: float = 0.5,
        link: LinkSettings | None = None,
    ) -> None:
        """Initialize the datagram transport.

        :param interface: Local IPv4 address to bind in the server role.
        :param port: UDP port to listen on and to dial. Defaults to 7777.
        :param hashcash_bits: Leading zero bits required of connection
            stamps.  Clients solve at this difficulty; the server rejects
            anything weaker.
        :param connect_timeout: Seconds before an unanswered connection
            attempt fails with :class:`TimeoutError`.
        :param connect_retry_interval: Seconds between CONNECT
            retransmissions.
        :param link: Reliability and liveness settings applied to every
            connection in both roles.
        """
        self.port = port
        self.hashcash_bits = hashcash_bits
        self.link = link or LinkSettings()
        self._interface = interface
        self._connect_timeout = connect_timeout
        self._connect_retry_interval = connect_retry_interval
        self._server_transport: asyncio.DatagramTransport | None = None
        self._accept_callback: Callable[[DatagramConnection], None] | None = None
        self._peers: dict[_Address, DatagramConnection] = {}
        self._client_connections: set[DatagramConnection] = set()

    @property
    def listening(self) -> bool:
        return self._server_transport is not None

    @property
    def peer_count(self) -> int:
        """Number of open server-side connections."""
        return len(self._peers)

    def on_accept(self, callback: Callable[[DatagramConnection], None]) -> None:
        self._accept_callback = callback

    # --- Server role ---

    async def listen(self) -> None:
        """Bind the server socket and start accepting connections."""
        if self._server_transport is not None:
            return  # Already listening
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _UDPProtocol(self._on_server_datagram, self._on_server_connection_lost),
            local_addr=(self._interface, self.port),
            family=socket.AF_INET,
        )
        self._server_transport = transport
        sock = transport.get_extra_info("socket")
        host, port = sock.getsockname()[:2]
        self.port = port
        logger.info("DatagramTransport listening on %s:%d", host, port)

    def _send_to(self, addr: _Address, data: bytes) -> None:
        if self._server_transport is None:
            msg = "Transport not listening"
            raise TransportClosedError(msg)
        self._server_transport.sendto(data, addr)

    def _on_server_datagram(self, data: bytes, addr: _Address) -> None:
        try:
            frame = decode_frame(data)
        except ValueError:
            logger.warning("Dropped malformed datagram from %s", _format_addr(addr))
            return

        match frame.kind:
            case FrameKind.CONNECT:
                self._handle_connect(frame.payload, addr)
            case _:
                peer = self._peers.get(addr)
                if peer is None:
                    logger.debug(
                        "Dropped %s from unknown peer %s", frame.kind.name, _format_addr(addr)
                    )
                    return
                peer._handle_frame(frame)

    def _handle_connect(self, payload: bytes, addr: _Address) -> None:
        try:
            token, nonce = decode_connect(payload)
        except ValueError:
            logger.warning("Dropped malformed CONNECT from %s", _format_addr(addr))
            return

        if addr in self._peers:
            # Retransmitted request; our ACCEPT was lost.
            self._send_to(addr, encode_frame(FrameKind.ACCEPT))
            return

        if not hashcash.verify(token, nonce, self.hashcash_bits):
            logger.warning(
                "Rejected connection from %s: invalid hashcash stamp", _format_addr(addr)
            )
            self._send_to(addr, encode_frame(FrameKind.REJECT, b"invalid hashcash stamp"))
            return

        connection = DatagramConnection(
            addr,
            functools.partial(self._send_to, addr),
            on_closed=self._forget_peer,
            settings=self.link,
        )
        self._peers[addr] = connection
        self._send_to(addr, encode_frame(FrameKind.ACCEPT))
        connection.start()
        logger.debug("Accepted connection from %s", connection.remote)
        if self._accept_callback is not None:
            self._accept_callback(connection)

    def _forget_peer(self, connection: DatagramConnection) -> None:
        self._peers.pop(connection.remote_address, None)

    def _on_server_connection_lost(self, exc: Exception | None) -> None:
        self._server_transport = None
        for peer in list(self._peers.values()):
            peer._mark_closed()

    # --- Client role ---

    async def connect(self, address: str) -> DatagramConnection:
        """Open a connection to *address* on ``port``.

        :raises HandshakeRejectedError: If the server rejects the request.
        :raises TimeoutError: If no answer arrives within the connect timeout.
        :raises OSError: If the socket reports an error (e.g. port unreachable).
        """
        loop = asyncio.get_running_loop()
        remote = (address, self.port)
        handshake: asyncio.Future[None] = loop.create_future()
        connection: DatagramConnection | None = None

        def on_datagram(data: bytes, addr: _Address) -> None:
            try:
                frame = decode_frame(data)
            except ValueError:
                logger.warning("Dropped malformed datagram from %s", _format_addr(addr))
                return
            match frame.kind:
                case FrameKind.ACCEPT:
                    if not handshake.done():
                        handshake.set_result(None)
                case FrameKind.REJECT:
                    if not handshake.done():
                        reason = frame.payload.decode("utf-8", errors="replace")
                        handshake.set_exception(
                            HandshakeRejectedError(_format_addr(remote), reason)
                        )
                case _ if connection is not None:
                    if not handshake.done():
                        # Server traffic means the ACCEPT was lost.
                        handshake.set_result(None)
                    connection._handle_frame(frame)

        def on_error(exc: Exception) -> None:
            if not handshake.done():
                handshake.set_exception(exc)

        def on_lost(exc: Exception | None) -> None:
            if not handshake.done():
                msg = f"Socket closed while connecting to {_format_addr(remote)}"
                handshake.set_exception(TransportClosedError(msg))
            if connection is not None:
                connection._mark_closed()

        endpoint, _ = await loop.create_datagram_endpoint(
            lambda: _UDPProtocol(on_datagram, on_lost, on_error),
            remote_addr=remote,
            family=socket.AF_INET,
        )

        def on_closed(conn: DatagramConnection) -> None:
            self._client_connections.discard(conn)
            endpoint.close()

        connection = DatagramConnection(
            remote, endpoint.sendto, on_closed=on_closed, settings=self.link
        )

        token = os.urandom(CLIENT_TOKEN_LENGTH)
        request = encode_connect(token, hashcash.solve(token, self.hashcash_bits))
        try:
            async with asyncio.timeout(self._connect_timeout):
                while not handshake.done():
                    endpoint.sendto(request)
                    await asyncio.wait({handshake}, timeout=self._connect_retry_interval)
            handshake.result()
        except TimeoutError:
            handshake.cancel()
            endpoint.close()
            msg = f"Connection to {_format_addr(remote)} timed out after {self._connect_timeout}s"
            raise TimeoutError(msg) from None
        except BaseException:
            handshake.cancel()
            endpoint.close()
            raise

        self._client_connections.add(connection)
        connection.start()
        logger.debug("Connected to %s", connection.remote)
        return connection

    # --- Lifecycle ---

    async def stop(self) -> None:
        """Close every connection and the server socket."""
        for connection in [*self._peers.values(), *self._client_connections]:
            await connection.close()
        if self._server_transport is not None:
            self._server_transport.close()
            self._server_transport = None
            logger.info("DatagramTransport stopped")

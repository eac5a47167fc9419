"""Shared fixtures for transport tests."""

from __future__ import annotations

import pytest

from headless_bench.transport.datagram import DatagramTransport
from headless_bench.transport.websocket import WebSocketTransport

LOOPBACK = "127.0.0.1"


class AcceptCollector:
    """Collects connections accepted by a listening transport."""

    def __init__(self) -> None:
        self.accepted: list = []

    def __call__(self, connection) -> None:
        self.accepted.append(connection)


@pytest.fixture
def collector() -> AcceptCollector:
    return AcceptCollector()


@pytest.fixture
async def datagram_server(collector: AcceptCollector):
    """Datagram transport listening on an ephemeral loopback port."""
    transport = DatagramTransport(interface=LOOPBACK, port=0, hashcash_bits=1)
    transport.on_accept(collector)
    await transport.listen()
    yield transport
    await transport.stop()


@pytest.fixture
async def datagram_client(datagram_server: DatagramTransport):
    """Datagram transport dialing ``datagram_server``."""
    transport = DatagramTransport(port=datagram_server.port, hashcash_bits=1)
    yield transport
    await transport.stop()


@pytest.fixture
async def websocket_server(collector: AcceptCollector):
    """WebSocket transport listening on an ephemeral loopback port."""
    transport = WebSocketTransport(interface=LOOPBACK, port=0)
    transport.on_accept(collector)
    await transport.listen()
    yield transport
    await transport.stop()


@pytest.fixture
async def websocket_client(websocket_server: WebSocketTransport):
    """WebSocket transport dialing ``websocket_server``."""
    transport = WebSocketTransport(port=websocket_server.port)
    yield transport
    await transport.stop()

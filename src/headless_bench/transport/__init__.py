"""Wire transports: connection-oriented UDP datagrams and WebSockets."""

from headless_bench.transport.datagram import DatagramConnection, DatagramTransport
from headless_bench.transport.port import Connection, Transport
from headless_bench.transport.selector import create_transport
from headless_bench.transport.websocket import WebSocketConnection, WebSocketTransport

__all__ = [
    "Connection",
    "DatagramConnection",
    "DatagramTransport",
    "Transport",
    "WebSocketConnection",
    "WebSocketTransport",
    "create_transport",
]

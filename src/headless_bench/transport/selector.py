"""Build the single transport shared by the server and client roles."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from headless_bench.config import TransportKind
from headless_bench.transport.datagram import DatagramTransport
from headless_bench.transport.websocket import WebSocketTransport

if TYPE_CHECKING:
    from headless_bench.config import BenchmarkConfig
    from headless_bench.transport.port import Transport

logger = logging.getLogger(__name__)

# Connection stamps stay cheap so hundreds of clients can dial quickly.
CLIENT_HASHCASH_BITS = 1


def create_transport(config: BenchmarkConfig) -> Transport:
    """Construct the transport named by *config* and apply its port override."""
    logger.info("Adding transport %s", config.transport)
    transport: Transport
    match config.transport:
        case TransportKind.KCP:
            transport = DatagramTransport(hashcash_bits=CLIENT_HASHCASH_BITS)
        case TransportKind.WEBSOCKET:
            transport = WebSocketTransport()
    if config.port is not None:
        transport.port = config.port
    return transport

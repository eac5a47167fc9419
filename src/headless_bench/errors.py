"""Exception types raised by the benchmark harness."""

from __future__ import annotations


class BenchmarkError(Exception):
    """Base exception for harness errors."""


class ConfigurationError(BenchmarkError, ValueError):
    """Command-line arguments could not be resolved into a configuration.

    Always fatal: the harness logs the message and halts startup.
    """


class UnknownTransportError(ConfigurationError):
    """The ``-transport`` value names no known transport kind."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unknown transport {kind}")


class TransportClosedError(BenchmarkError, ConnectionError):
    """A connection was closed locally, by the peer, or by socket loss."""


class HandshakeRejectedError(BenchmarkError, ConnectionRefusedError):
    """The server refused a connection request."""

    def __init__(self, remote: str, reason: str = "") -> None:
        self.remote = remote
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Connection to {remote} rejected{detail}")

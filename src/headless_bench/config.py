"""Benchmark configuration resolved from the argument store."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from headless_bench.errors import ConfigurationError, UnknownTransportError

if TYPE_CHECKING:
    from headless_bench.args import ArgumentStore

DEFAULT_ADDRESS = "localhost"
DEFAULT_TICK_RATE = 60.0
MAX_PORT = 0xFFFF

# Optional minus sign followed by ASCII digits.
_INTEGER = re.compile(r"-?[0-9]+")

USAGE = """\
--==Headless Benchmark==--
Provide these arguments to control the autostart process:
-server (will run in server only mode)
-client 1234 (will run the specified number of clients)
-transport {kcp|websocket}
-address example.com (address the clients connect to)
-port 1234 (port used by transport)
-monster 100 (number of monsters to spawn on the server)
-ramp 1 (number of clients allowed to connect at the same time)
-tickrate 60 (target frames per second of the frame clock)
-help (print this message and exit)"""


class TransportKind(StrEnum):
    """Transport technologies the harness can drive."""

    KCP = "kcp"
    WEBSOCKET = "websocket"

    @classmethod
    def parse(cls, value: str) -> TransportKind:
        try:
            return cls(value)
        except ValueError:
            raise UnknownTransportError(value) from None


@dataclass(frozen=True, slots=True)
class BenchmarkConfig:
    """Immutable run configuration, built once at startup."""

    transport: TransportKind = TransportKind.KCP
    port: int | None = None
    server: bool = False
    client_count: int = 0
    address: str = DEFAULT_ADDRESS
    monster_count: int = 0
    help: bool = False
    ramp_concurrency: int = 1
    tick_rate: float = DEFAULT_TICK_RATE

    @classmethod
    def from_args(cls, args: ArgumentStore) -> BenchmarkConfig:
        """Resolve *args* into a configuration.

        Pure function of the argument tokens: resolving the same store
        twice yields equal configurations.

        :raises UnknownTransportError: If ``-transport`` names no known kind.
        :raises ConfigurationError: If a numeric argument is malformed or
            out of range.
        """
        transport = TransportKind.parse(args.value_of("-transport") or TransportKind.KCP)

        port: int | None = None
        port_value = args.value_of("-port")
        if port_value is not None:
            port = _parse_int("-port", port_value, minimum=0)
            if port > MAX_PORT:
                msg = f"-port must be at most {MAX_PORT}, got {port}"
                raise ConfigurationError(msg)

        client_count = 0
        if args.has_flag("-client"):
            client_value = args.value_of("-client")
            client_count = 1 if client_value is None else _parse_int("-client", client_value)

        monster_count = 0
        monster_value = args.value_of("-monster")
        if monster_value is not None:
            monster_count = _parse_int("-monster", monster_value)

        ramp_concurrency = 1
        ramp_value = args.value_of("-ramp")
        if ramp_value is not None:
            ramp_concurrency = _parse_int("-ramp", ramp_value, minimum=1)

        tick_rate = DEFAULT_TICK_RATE
        tick_value = args.value_of("-tickrate")
        if tick_value is not None:
            try:
                tick_rate = float(tick_value)
            except ValueError:
                msg = f"-tickrate expects a number, got {tick_value!r}"
                raise ConfigurationError(msg) from None
            if not tick_rate > 0:
                msg = f"-tickrate must be positive, got {tick_value}"
                raise ConfigurationError(msg)

        return cls(
            transport=transport,
            port=port,
            server=args.has_flag("-server"),
            client_count=client_count,
            address=args.value_of("-address") or DEFAULT_ADDRESS,
            monster_count=monster_count,
            help=args.has_flag("-help"),
            ramp_concurrency=ramp_concurrency,
            tick_rate=tick_rate,
        )


def _parse_int(flag: str, value: str, *, minimum: int = 0) -> int:
    if _INTEGER.fullmatch(value) is None:
        msg = f"{flag} expects an integer, got {value!r}"
        raise ConfigurationError(msg)
    number = int(value)
    if number < minimum:
        msg = f"{flag} must be at least {minimum}, got {number}"
        raise ConfigurationError(msg)
    return number

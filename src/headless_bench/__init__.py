"""headless-bench: headless load-generation harness for networked simulations.

Typical usage::

    from headless_bench import ArgumentStore, BenchmarkConfig, HeadlessBenchmark

    config = BenchmarkConfig.from_args(ArgumentStore(["-server", "-client", "10"]))
    async with HeadlessBenchmark(config) as benchmark:
        await asyncio.sleep(60)
"""

__version__ = "0.1.0"

from headless_bench.args import ArgumentStore
from headless_bench.config import BenchmarkConfig, TransportKind
from headless_bench.diagnostics import MessageInfo, NetworkDiagnostics
from headless_bench.errors import (
    BenchmarkError,
    ConfigurationError,
    HandshakeRejectedError,
    TransportClosedError,
    UnknownTransportError,
)
from headless_bench.harness import HeadlessBenchmark
from headless_bench.load import SyntheticLoadGenerator
from headless_bench.metrics import MetricsSampler, MetricsSnapshot
from headless_bench.scheduler import FrameClock
from headless_bench.server import ServerSession, ServerSessionController
from headless_bench.swarm import ClientSession, ClientSwarmLauncher, SessionOutcome

__all__ = [
    "ArgumentStore",
    "BenchmarkConfig",
    "BenchmarkError",
    "ClientSession",
    "ClientSwarmLauncher",
    "ConfigurationError",
    "FrameClock",
    "HandshakeRejectedError",
    "HeadlessBenchmark",
    "MessageInfo",
    "MetricsSampler",
    "MetricsSnapshot",
    "NetworkDiagnostics",
    "ServerSession",
    "ServerSessionController",
    "SessionOutcome",
    "SyntheticLoadGenerator",
    "TransportClosedError",
    "TransportKind",
    "UnknownTransportError",
    "__version__",
]

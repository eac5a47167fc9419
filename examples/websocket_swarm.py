"""Ramp a WebSocket client swarm with several connections in flight.

Starts the server role on an ephemeral port and lets up to four clients
handshake at the same time.

Usage::

    python examples/websocket_swarm.py
"""

import asyncio
import logging

from headless_bench import ArgumentStore, BenchmarkConfig, HeadlessBenchmark

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")


async def main() -> None:
    """Benchmark the WebSocket transport with a bounded ramp."""
    args = ArgumentStore.from_string(
        "-server -client 12 -ramp 4 -transport websocket -port 0 -address 127.0.0.1"
    )
    config = BenchmarkConfig.from_args(args)
    async with HeadlessBenchmark(config) as benchmark:
        await asyncio.sleep(5)
        launcher = benchmark.launcher
        if launcher is not None:
            print(f"Connected {launcher.connected_count} of {config.client_count} clients")


if __name__ == "__main__":
    asyncio.run(main())

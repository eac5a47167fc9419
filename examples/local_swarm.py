"""Run a server and a small client swarm in one process over the datagram transport.

Spawns a handful of monsters, connects five clients one after another and
prints the per-second metrics for ten seconds.

Usage::

    python examples/local_swarm.py
"""

import asyncio
import logging

from headless_bench import BenchmarkConfig, HeadlessBenchmark, TransportKind

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")


async def main() -> None:
    """Benchmark a local server against five clients."""
    config = BenchmarkConfig(
        transport=TransportKind.KCP,
        server=True,
        client_count=5,
        monster_count=20,
        address="127.0.0.1",
    )
    async with HeadlessBenchmark(config) as benchmark:
        await asyncio.sleep(10)
        controller = benchmark.controller
        if controller is not None:
            session = controller.session
            print(f"Players: {session.player_count}, monsters: {session.spawned_count}")
            print(f"Server RPCs handled: {controller.world.rpc_count}")


if __name__ == "__main__":
    asyncio.run(main())

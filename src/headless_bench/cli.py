"""Console entry point for the headless benchmark."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from headless_bench.args import ArgumentStore
from headless_bench.config import USAGE, BenchmarkConfig
from headless_bench.errors import ConfigurationError
from headless_bench.harness import HeadlessBenchmark

logger = logging.getLogger("headless_bench")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


@click.command(
    context_settings={
        "ignore_unknown_options": True,
        "allow_interspersed_args": True,
    },
)
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    envvar="HEADLESS_BENCH_LOG_LEVEL",
    help="Logging level.",
)
@click.option(
    "--args",
    "override",
    default=None,
    envvar="HEADLESS_BENCH_ARGS",
    help="Space-delimited argument string used instead of the command line.",
)
@click.argument("tokens", nargs=-1, type=click.UNPROCESSED)
def main(log_level: str, override: str | None, tokens: tuple[str, ...]) -> None:
    """Headless load-generation harness for a networked simulation.

    TOKENS are single-dash benchmark flags such as ``-server -monster 100``
    or ``-client 50 -address example.com``; run with ``-help`` for the list.
    """
    _setup_logging(log_level)
    args = ArgumentStore.from_string(override) if override else ArgumentStore(tokens)

    if args.has_flag("-help"):
        click.echo(USAGE)
        return

    try:
        config = BenchmarkConfig.from_args(args)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info(
        "Benchmark configured: transport=%s server=%s clients=%d monsters=%d",
        config.transport,
        config.server,
        config.client_count,
        config.monster_count,
    )
    benchmark = HeadlessBenchmark(config)
    try:
        asyncio.run(benchmark.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except OSError as e:
        logger.error("Benchmark failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Tests for the console entry point."""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from headless_bench.cli import main
from headless_bench.config import USAGE, TransportKind


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def benchmark_cls():
    with patch("headless_bench.cli.HeadlessBenchmark") as cls:
        cls.return_value.run = AsyncMock()
        yield cls


class TestHelp:
    def test_prints_usage_and_exits_zero(self, runner, benchmark_cls):
        result = runner.invoke(main, ["-help"])
        assert result.exit_code == 0
        assert USAGE in result.output
        benchmark_cls.assert_not_called()

    def test_help_wins_over_other_flags(self, runner, benchmark_cls):
        result = runner.invoke(main, ["-server", "-client", "5", "-help"])
        assert result.exit_code == 0
        assert "--==Headless Benchmark==--" in result.output
        benchmark_cls.assert_not_called()

    def test_help_with_bad_transport(self, runner, benchmark_cls):
        result = runner.invoke(main, ["-transport", "carrier-pigeon", "-help"])
        assert result.exit_code == 0

    def test_click_help_still_available(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "--log-level" in result.output


class TestConfiguration:
    def test_tokens_passed_through(self, runner, benchmark_cls):
        result = runner.invoke(
            main, ["-server", "-client", "3", "-transport", "websocket", "-monster", "7"]
        )
        assert result.exit_code == 0, result.output
        config = benchmark_cls.call_args[0][0]
        assert config.server
        assert config.client_count == 3
        assert config.transport is TransportKind.WEBSOCKET
        assert config.monster_count == 7
        benchmark_cls.return_value.run.assert_awaited_once()

    def test_override_string(self, runner, benchmark_cls):
        result = runner.invoke(main, ["--args", "-client 4 -address 10.0.0.5", "-server"])
        assert result.exit_code == 0, result.output
        config = benchmark_cls.call_args[0][0]
        assert config.client_count == 4
        assert config.address == "10.0.0.5"
        # The override replaces the command-line tokens entirely.
        assert not config.server

    def test_override_from_environment(self, runner, benchmark_cls):
        result = runner.invoke(main, [], env={"HEADLESS_BENCH_ARGS": "-server -monster 2"})
        assert result.exit_code == 0, result.output
        config = benchmark_cls.call_args[0][0]
        assert config.server
        assert config.monster_count == 2

    def test_unknown_transport_exits_before_startup(self, runner, benchmark_cls, caplog):
        with caplog.at_level(logging.ERROR, logger="headless_bench"):
            result = runner.invoke(main, ["-transport", "udp", "-server"])
        assert result.exit_code == 1
        assert "Unknown transport udp" in caplog.text
        benchmark_cls.assert_not_called()

    def test_malformed_number_exits(self, runner, benchmark_cls, caplog):
        with caplog.at_level(logging.ERROR, logger="headless_bench"):
            result = runner.invoke(main, ["-client", "lots"])
        assert result.exit_code == 1
        assert "-client expects an integer" in caplog.text
        benchmark_cls.assert_not_called()


class TestRuntimeErrors:
    def test_os_error_exits_nonzero(self, runner, benchmark_cls, caplog):
        benchmark_cls.return_value.run = AsyncMock(side_effect=OSError("Address already in use"))
        with caplog.at_level(logging.ERROR, logger="headless_bench"):
            result = runner.invoke(main, ["-server"])
        assert result.exit_code == 1
        assert "Address already in use" in caplog.text

    def test_keyboard_interrupt_is_clean(self, runner, benchmark_cls):
        benchmark_cls.return_value.run = AsyncMock(side_effect=KeyboardInterrupt)
        result = runner.invoke(main, ["-server"])
        assert result.exit_code == 0

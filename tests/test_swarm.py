"""Tests for the client swarm launcher."""

import logging

import pytest

from headless_bench.diagnostics import NetworkDiagnostics
from headless_bench.swarm import ClientSwarmLauncher, SessionOutcome
from headless_bench.world.entity import PLAYER_PREFAB
from headless_bench.world.messages import (
    AuthorityMessage,
    JoinMessage,
    RpcMessage,
    SpawnMessage,
    encode_message,
)
from headless_bench.world.server import CLICK_METHOD
from tests.helpers import FakeTransport, wait_until


def _launcher(transport: FakeTransport, count: int, **kwargs) -> ClientSwarmLauncher:
    return ClientSwarmLauncher(transport, NetworkDiagnostics(), count=count, **kwargs)


class TestValidation:
    def test_negative_count(self):
        with pytest.raises(ValueError, match="count must be >= 0"):
            _launcher(FakeTransport(), -1)

    def test_zero_ramp(self):
        with pytest.raises(ValueError, match="ramp_concurrency"):
            _launcher(FakeTransport(), 1, ramp_concurrency=0)


class TestSequentialRamp:
    """By default each connection attempt resolves before the next starts."""

    async def test_connects_every_client(self):
        transport = FakeTransport(connect_delay=0.01)
        launcher = _launcher(transport, 5)

        sessions = await launcher.run()

        assert [s.index for s in sessions] == [0, 1, 2, 3, 4]
        assert all(s.outcome is SessionOutcome.CONNECTED for s in sessions)
        assert launcher.connected_count == 5
        assert transport.connect_calls == ["localhost"] * 5
        await launcher.stop()

    async def test_attempts_never_overlap(self):
        transport = FakeTransport(connect_delay=0.01)
        launcher = _launcher(transport, 4)

        await launcher.run()

        assert transport.max_active_connects == 1
        await launcher.stop()

    async def test_uses_configured_address(self):
        transport = FakeTransport()
        launcher = _launcher(transport, 2, address="bench.example.com")
        await launcher.run()
        assert transport.connect_calls == ["bench.example.com", "bench.example.com"]
        await launcher.stop()

    async def test_every_client_joins(self):
        transport = FakeTransport()
        launcher = _launcher(transport, 3)
        await launcher.run()
        for connection in transport.connections:
            assert connection.sent_messages() == [JoinMessage()]
        await launcher.stop()

    async def test_shares_one_transport(self):
        transport = FakeTransport()
        launcher = _launcher(transport, 3)
        sessions = await launcher.run()
        assert all(s.transport is transport for s in sessions)
        await launcher.stop()

    async def test_zero_clients(self):
        transport = FakeTransport()
        launcher = _launcher(transport, 0)

        assert await launcher.run() == []
        assert transport.connect_calls == []

    async def test_logs_progress(self, caplog):
        launcher = _launcher(FakeTransport(), 2)
        with caplog.at_level(logging.INFO, logger="headless_bench.swarm"):
            await launcher.run()
        assert "Starting 2 clients" in caplog.text
        assert "Started 1 clients" in caplog.text
        assert "Started 2 clients" in caplog.text
        await launcher.stop()


class TestFailureIsolation:
    async def test_failed_client_does_not_stop_swarm(self, caplog):
        transport = FakeTransport(fail_indices=frozenset({1}))
        launcher = _launcher(transport, 3)

        with caplog.at_level(logging.ERROR, logger="headless_bench.swarm"):
            sessions = await launcher.run()

        assert [s.outcome for s in sessions] == [
            SessionOutcome.CONNECTED,
            SessionOutcome.FAILED,
            SessionOutcome.CONNECTED,
        ]
        assert isinstance(sessions[1].error, ConnectionRefusedError)
        assert launcher.connected_count == 2
        assert "Client 1 failed to connect" in caplog.text
        await launcher.stop()


class TestBoundedRamp:
    async def test_limits_in_flight_attempts(self):
        transport = FakeTransport(connect_delay=0.02)
        launcher = _launcher(transport, 9, ramp_concurrency=3)

        sessions = await launcher.run()

        assert 1 < transport.max_active_connects <= 3
        assert len(sessions) == 9
        assert launcher.connected_count == 9
        await launcher.stop()

    async def test_failure_isolated_under_concurrency(self):
        transport = FakeTransport(fail_indices=frozenset({0, 4}))
        launcher = _launcher(transport, 6, ramp_concurrency=2)

        await launcher.run()

        assert launcher.connected_count == 4
        await launcher.stop()


class TestLoadAttachment:
    async def test_owned_player_generates_load(self):
        transport = FakeTransport()
        launcher = _launcher(transport, 1)
        sessions = await launcher.run()
        connection = transport.connections[0]

        connection.feed(encode_message(SpawnMessage(7, PLAYER_PREFAB, "Player 0")))
        connection.feed(encode_message(AuthorityMessage(7, True)))

        await wait_until(lambda: RpcMessage(7, CLICK_METHOD) in connection.sent_messages())
        assert len(sessions[0].load_generators) == 1

        await launcher.stop()
        assert not sessions[0].load_generators[0].running
        assert not connection.is_open

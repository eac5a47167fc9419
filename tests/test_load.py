"""Tests for the synthetic load generator."""

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

from headless_bench.errors import TransportClosedError
from headless_bench.load import DEFAULT_MAX_INTERVAL, SyntheticLoadGenerator
from headless_bench.world.entity import PLAYER_PREFAB, NetworkEntity
from headless_bench.world.server import CLICK_METHOD
from tests.helpers import wait_until


def _bound_entity(sender: AsyncMock | None = None) -> tuple[NetworkEntity, AsyncMock]:
    entity = NetworkEntity("Player 0", PLAYER_PREFAB, entity_id=1)
    sender = sender or AsyncMock()
    entity.bind_rpc(sender)
    return entity, sender


class TestIntervals:
    """Pauses are drawn uniformly from [0, max_interval)."""

    def test_default_max_interval(self):
        assert DEFAULT_MAX_INTERVAL == 5.0

    def test_range(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity, rng=random.Random(1234))
        draws = [generator.next_interval() for _ in range(2000)]
        assert all(0.0 <= d < 5.0 for d in draws)
        # A uniform draw should cover most of the range.
        assert min(draws) < 0.5
        assert max(draws) > 4.5

    def test_scales_random(self):
        entity, _ = _bound_entity()
        rng = MagicMock()
        rng.random.return_value = 0.5
        generator = SyntheticLoadGenerator(entity, max_interval=2.0, rng=rng)
        assert generator.next_interval() == 1.0


class TestAuthorityGate:
    async def test_no_rpc_before_authority(self):
        entity, sender = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        generator.attach()

        await asyncio.sleep(0.05)

        sender.assert_not_awaited()
        assert generator.invocations == 0
        assert generator.running
        await generator.stop()

    async def test_first_rpc_follows_authority(self):
        entity, sender = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        generator.attach()

        entity.grant_authority()

        await wait_until(lambda: generator.invocations == 1)
        sender.assert_awaited_with(entity, CLICK_METHOD)
        await generator.stop()

    async def test_repeats_while_authoritative(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity, max_interval=0.01)
        entity.grant_authority()
        generator.attach()

        await wait_until(lambda: generator.invocations >= 5)
        await generator.stop()

    async def test_destroyed_before_authority(self):
        entity, sender = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        task = generator.attach()

        entity.destroy()

        await asyncio.wait_for(task, timeout=1)
        sender.assert_not_awaited()

    async def test_attach_is_idempotent(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        assert generator.attach() is generator.attach()
        await generator.stop()


class TestStopping:
    """Generation ends on authority loss, destruction, connection loss or stop()."""

    async def test_stops_on_revoke(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity, max_interval=0.01)
        task = generator.attach()
        entity.grant_authority()
        await wait_until(lambda: generator.invocations >= 1)

        entity.revoke_authority()

        await asyncio.wait_for(task, timeout=1)
        count = generator.invocations
        await asyncio.sleep(0.05)
        assert generator.invocations == count

    async def test_stops_on_destroy(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        task = generator.attach()
        entity.grant_authority()
        await wait_until(lambda: generator.invocations == 1)

        # The generator is mid-sleep; destruction must not wait it out.
        entity.destroy()

        await asyncio.wait_for(task, timeout=1)
        assert not generator.running

    async def test_stop_cancels(self):
        entity, _ = _bound_entity()
        generator = SyntheticLoadGenerator(entity)
        generator.attach()
        entity.grant_authority()
        await wait_until(lambda: generator.invocations == 1)

        await generator.stop()

        assert not generator.running

    async def test_stop_before_attach(self):
        entity, _ = _bound_entity()
        await SyntheticLoadGenerator(entity).stop()

    async def test_connection_loss_ends_quietly(self):
        entity, _ = _bound_entity(AsyncMock(side_effect=TransportClosedError("gone")))
        generator = SyntheticLoadGenerator(entity)
        task = generator.attach()
        entity.grant_authority()

        await asyncio.wait_for(task, timeout=1)
        assert task.exception() is None
        assert generator.invocations == 0

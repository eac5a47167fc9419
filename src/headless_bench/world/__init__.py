"""Minimal replicated-world runtime the harness drives."""

from headless_bench.world.client import WorldClient
from headless_bench.world.entity import (
    MONSTER_PREFAB,
    PLAYER_PREFAB,
    AuthorityState,
    NetworkEntity,
)
from headless_bench.world.server import CLICK_METHOD, WorldServer

__all__ = [
    "CLICK_METHOD",
    "MONSTER_PREFAB",
    "PLAYER_PREFAB",
    "AuthorityState",
    "NetworkEntity",
    "WorldClient",
    "WorldServer",
]

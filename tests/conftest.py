"""
Shared fixtures: a fresh SQLite file database per test and a controllable clock.
"""

import os

# Keep test runs from writing log files or reaching a real Redis
os.environ['LOG_TO_FILE'] = 'false'
os.environ['REDIS_URL'] = ''

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from standings.core import StandingsCore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 6, 12, 0, 0)):  # a Monday
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def core(tmp_path, clock):
    """Initialized core on a throwaway database."""
    standings_core = StandingsCore(
        f"sqlite:///{tmp_path / 'standings.db'}", clock=clock, use_redis=False
    )
    await standings_core.initialize()
    yield standings_core
    await standings_core.close()


@pytest.fixture
async def players(core):
    """Four players: two in FR, one in US, one without a country."""
    alice = await core.db.create_player('alice', country='fr', ranking_points=1200)
    bob = await core.db.create_player('bob', country='US', ranking_points=1000)
    carol = await core.db.create_player('carol', country='FR', ranking_points=1100)
    dave = await core.db.create_player('dave', display_name='Dave D.')
    return SimpleNamespace(alice=alice.id, bob=bob.id, carol=carol.id, dave=dave.id)


@pytest.fixture
def submit(core):
    """Submit a result with defaults for the fields a test does not care about."""
    async def _submit(player_id, score, **overrides):
        fields = dict(level=1, lines_cleared=0, time_played=60)
        fields.update(overrides)
        return await core.submit_result(player_id, score, **fields)
    return _submit

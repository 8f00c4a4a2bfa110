"""
Partition selectors for leaderboard views.

A partition decides which players take part in a ranking. Selectors are
stateless: they add a predicate on the joined ``Player`` row of a ranking
query and answer membership for a single player. Time windows are not a
row filter on the cache; the rank engine switches to the result ledger for
them and uses ``bounds`` to pick the range.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Iterable, Optional, Tuple, Union

from sqlalchemy import func

from standings.database.models import Player
from standings.utils.exceptions import InvalidPartitionError
from standings.utils.time_parser import parse_window


class Partition:
    """Base selector: every player with an entry is included."""

    name = "global"
    is_windowed = False

    def contains(self, player_id: int, country: Optional[str]) -> bool:
        return True

    def apply(self, query):
        return query

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class GlobalPartition(Partition):
    pass


@dataclass(frozen=True)
class CountryPartition(Partition):
    code: str
    name = "country"

    def __post_init__(self):
        if not isinstance(self.code, str) or len(self.code.strip()) != 2 or not self.code.strip().isalpha():
            raise InvalidPartitionError(f"country:{self.code}", "country code must be two letters")
        object.__setattr__(self, 'code', self.code.strip().upper())

    def contains(self, player_id: int, country: Optional[str]) -> bool:
        return country is not None and country.upper() == self.code

    def apply(self, query):
        return query.where(func.upper(Player.country) == self.code)

    @property
    def label(self) -> str:
        return f"country:{self.code}"


@dataclass(frozen=True, init=False)
class FriendsPartition(Partition):
    """
    The caller's accepted friends plus the viewer.

    Friendship state is resolved by the social collaborator; the ids passed
    in are taken as already filtered.
    """
    player_ids: FrozenSet[int]
    viewer_id: Optional[int] = None
    name = "friends"

    def __init__(self, player_ids: Iterable[int], viewer_id: Optional[int] = None):
        ids = set(player_ids)
        if viewer_id is not None:
            ids.add(viewer_id)
        object.__setattr__(self, 'player_ids', frozenset(ids))
        object.__setattr__(self, 'viewer_id', viewer_id)

    def contains(self, player_id: int, country: Optional[str]) -> bool:
        return player_id in self.player_ids

    def apply(self, query):
        return query.where(Player.id.in_(sorted(self.player_ids)))

    @property
    def label(self) -> str:
        return "friends"


@dataclass(frozen=True)
class WindowPartition(Partition):
    """Players with at least one result in the trailing ``duration``."""
    duration: timedelta
    window_label: str = ""
    name = "window"
    is_windowed = True

    def __post_init__(self):
        if not isinstance(self.duration, timedelta) or self.duration <= timedelta(0):
            raise InvalidPartitionError(str(self.duration), "window duration must be positive")

    def bounds(self, now: datetime) -> Tuple[datetime, datetime]:
        return now - self.duration, now

    @property
    def label(self) -> str:
        return f"window:{self.window_label or int(self.duration.total_seconds())}"


PartitionSpec = Union[str, Partition]


def parse_partition(spec: PartitionSpec, viewer_id: Optional[int] = None) -> Partition:
    """
    Parse a partition spec.

    Supported formats:
    - ``global``
    - ``country:FR``
    - ``friends:1,2,3`` (the viewer is added when given)
    - ``window:7d``, ``window:weekly``

    Raises:
        InvalidPartitionError: If the spec cannot be parsed
    """
    if isinstance(spec, Partition):
        return spec
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidPartitionError(str(spec), "partition must be a non-empty string")

    kind, _, argument = spec.strip().partition(':')
    kind = kind.lower()
    argument = argument.strip()

    if kind == 'global' and not argument:
        return GlobalPartition()

    if kind == 'country':
        return CountryPartition(argument)

    if kind == 'friends':
        try:
            ids = [int(part) for part in argument.split(',') if part.strip()]
        except ValueError:
            raise InvalidPartitionError(spec, "friend ids must be integers")
        return FriendsPartition(ids, viewer_id=viewer_id)

    if kind == 'window':
        try:
            duration = parse_window(argument)
        except ValueError as e:
            raise InvalidPartitionError(spec, str(e))
        return WindowPartition(duration, argument.lower())

    raise InvalidPartitionError(spec, "expected global, country:<code>, friends:<ids> or window:<duration>")

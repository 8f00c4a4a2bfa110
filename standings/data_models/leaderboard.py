"""
Leaderboard data models for ranked views.

Provides immutable data transfer objects for leaderboard pages and entries.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from standings.database.models import GameMode


@dataclass(frozen=True)
class PlayerSummary:
    """Display fields of a ranked player."""
    player_id: int
    username: str
    display_name: str
    country: Optional[str]
    avatar: Optional[str]
    profile_level: int
    ranking_points: int


@dataclass(frozen=True)
class RankedEntry:
    """Single leaderboard row.

    For windowed views ``best_score`` is the best score inside the window and
    the level/lines/mode fields are not tracked.
    """
    rank: int
    player: PlayerSummary
    best_score: int
    achieved_at: datetime
    level: Optional[int] = None
    lines_cleared: Optional[int] = None
    game_mode: Optional[GameMode] = None
    games_in_window: Optional[int] = None
    is_viewer: bool = False


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    entries: List[RankedEntry]
    partition: str
    current_page: int
    page_size: int
    total_pages: int
    total_entries: int
    viewer_rank: Optional[int] = None


@dataclass(frozen=True)
class ConsistencyIssue:
    """A player whose aggregate, cache and ledger disagree."""
    player_id: int
    aggregate_best: Optional[int]
    cached_best: Optional[int]
    ledger_best: Optional[int]

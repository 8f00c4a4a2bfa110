"""
Statistics data models for player and global reports.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List

from standings.data_models.leaderboard import RankedEntry
from standings.data_models.results import StoredResult


@dataclass(frozen=True)
class ScorePoint:
    """One point of a score trend."""
    played_at: datetime
    score: int
    level: int
    game_mode: str


@dataclass(frozen=True)
class ActivityBucket:
    """Games grouped by weekday or hour."""
    label: str
    games: int
    average_score: int
    total_score: int


@dataclass(frozen=True)
class PlayerStatsReport:
    """Detailed statistics for one player over a period."""
    player_id: int
    username: str
    period: str

    total_games: int
    total_score: int
    best_score: int
    average_score: int
    total_lines_cleared: int
    total_time_played: int
    average_time_played: int
    games_by_mode: Dict[str, int]

    total_pieces: int
    total_t_spins: int
    total_perfect_clears: int
    max_combo: int
    line_clears: Dict[str, int]
    efficiency: int
    pieces_per_minute: int

    score_history: List[ScorePoint]
    day_of_week: List[ActivityBucket]
    hour_of_day: List[ActivityBucket]
    personal_bests: List[StoredResult]
    recent_results: List[StoredResult]


@dataclass(frozen=True)
class CountryStats:
    """Player population and strength of one country."""
    country: str
    players: int
    average_ranking_points: int
    total_score: int


@dataclass(frozen=True)
class DailyActivity:
    """Games and distinct players on one day."""
    day: date
    games: int
    unique_players: int


@dataclass(frozen=True)
class GlobalStatsReport:
    """Server-wide statistics over a period."""
    period: str
    total_players: int
    total_games: int
    total_score: int
    average_score: int
    best_score: int
    total_lines_cleared: int
    total_time_played: int
    average_time_played: int
    pieces_per_minute: int
    games_by_mode: Dict[str, int]
    top_players: List[RankedEntry]
    top_scores: List[StoredResult]
    countries: List[CountryStats]
    daily_games: List[DailyActivity]

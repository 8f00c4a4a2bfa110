"""
Result and aggregate data models for score ingestion.

Immutable data transfer objects handed across the core's boundary so that
callers never hold live ORM rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from standings.database.models import GameMode, Difficulty


@dataclass(frozen=True)
class GameStatsBlock:
    """Detailed per-game counters (pieces, combos, line clear breakdown)."""
    total_pieces: int = 0
    perfect_clears: int = 0
    t_spins: int = 0
    max_combo: int = 0
    total_combos: int = 0
    single_clears: int = 0
    double_clears: int = 0
    triple_clears: int = 0
    tetris_clears: int = 0

    @classmethod
    def from_model(cls, row) -> "GameStatsBlock":
        return cls(
            total_pieces=row.total_pieces or 0,
            perfect_clears=row.perfect_clears or 0,
            t_spins=row.t_spins or 0,
            max_combo=row.max_combo or 0,
            total_combos=row.total_combos or 0,
            single_clears=row.single_clears or 0,
            double_clears=row.double_clears or 0,
            triple_clears=row.triple_clears or 0,
            tetris_clears=row.tetris_clears or 0,
        )


@dataclass(frozen=True)
class ResultSubmission:
    """A validated game result ready for ingestion."""
    player_id: int
    score: int
    level: int
    lines_cleared: int
    time_played: int
    game_mode: GameMode = GameMode.CLASSIC
    difficulty: Difficulty = Difficulty.NORMAL
    stats: GameStatsBlock = field(default_factory=GameStatsBlock)
    won: bool = False


@dataclass(frozen=True)
class StoredResult:
    """A game result as recorded in the ledger."""
    id: int
    player_id: int
    score: int
    level: int
    lines_cleared: int
    time_played: int
    game_mode: GameMode
    difficulty: Difficulty
    stats: GameStatsBlock
    pieces_per_minute: int
    won: bool
    is_personal_best: bool
    created_at: datetime

    @classmethod
    def from_model(cls, row) -> "StoredResult":
        return cls(
            id=row.id,
            player_id=row.player_id,
            score=row.score,
            level=row.level,
            lines_cleared=row.lines_cleared,
            time_played=row.time_played,
            game_mode=row.game_mode,
            difficulty=row.difficulty,
            stats=GameStatsBlock.from_model(row),
            pieces_per_minute=row.pieces_per_minute or 0,
            won=bool(row.won),
            is_personal_best=bool(row.is_personal_best),
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class AggregateSnapshot:
    """A player's lifetime rollup at one point in time."""
    player_id: int
    total_games: int
    total_wins: int
    total_losses: int
    best_score: int
    total_score: int
    total_lines_cleared: int
    total_time_played: int
    average_score: int
    win_rate: int

    @classmethod
    def from_model(cls, row) -> "AggregateSnapshot":
        return cls(
            player_id=row.player_id,
            total_games=row.total_games,
            total_wins=row.total_wins,
            total_losses=row.total_losses,
            best_score=row.best_score,
            total_score=row.total_score,
            total_lines_cleared=row.total_lines_cleared,
            total_time_played=row.total_time_played,
            average_score=row.average_score,
            win_rate=row.win_rate,
        )


@dataclass(frozen=True)
class SubmissionOutcome:
    """What a caller gets back from a committed submission."""
    result: StoredResult
    aggregate: AggregateSnapshot
    is_new_personal_best: bool


@dataclass(frozen=True)
class ResultPage:
    """Paginated game history."""
    results: List[StoredResult]
    current_page: int
    total_pages: int
    total_results: int
    game_mode: Optional[GameMode] = None

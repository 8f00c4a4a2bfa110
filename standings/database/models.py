from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, Enum as SQLEnum,
    UniqueConstraint, CheckConstraint, Index, event
)
from sqlalchemy.orm import declarative_base, relationship
from enum import Enum

from standings.utils.time_parser import utc_now

Base = declarative_base()

class GameMode(Enum):
    CLASSIC = "classic"
    SPRINT = "sprint"
    ULTRA = "ultra"
    ZEN = "zen"

class Difficulty(Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    EXPERT = "expert"

class Player(Base):
    """
    Player profile as maintained by the profile collaborator.

    The standings core only reads these rows (display fields, country code
    and ranking points) when it joins leaderboard views to player metadata.
    """
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    username = Column(String(20), nullable=False, unique=True, index=True)
    display_name = Column(String(100))

    # Profile fields
    country = Column(String(2), nullable=True, index=True)  # ISO 3166 alpha-2, upper case
    avatar = Column(String(255), nullable=True)
    banner = Column(String(50), default='default')
    profile_level = Column(Integer, default=1)
    title = Column(String(50), nullable=True)

    # ELO-like scalar, owned outside the core
    ranking_points = Column(Integer, default=1000, index=True)

    # Metadata
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utc_now)

    aggregate = relationship("PlayerAggregate", back_populates="player", uselist=False)
    leaderboard_entry = relationship("LeaderboardEntry", back_populates="player", uselist=False)

    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}', country={self.country})>"

class GameResult(Base):
    """
    One completed match, append-only.

    Rows are never updated after the submitting transaction commits; the
    personal best flag is decided inside that transaction.
    """
    __tablename__ = 'game_results'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)

    # Core result fields
    score = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False)
    lines_cleared = Column(Integer, nullable=False)
    time_played = Column(Integer, nullable=False)  # seconds
    game_mode = Column(SQLEnum(GameMode), nullable=False, default=GameMode.CLASSIC)
    difficulty = Column(SQLEnum(Difficulty), nullable=False, default=Difficulty.NORMAL)

    # Detailed stats block
    total_pieces = Column(Integer, default=0)
    pieces_per_minute = Column(Integer, default=0)
    perfect_clears = Column(Integer, default=0)
    t_spins = Column(Integer, default=0)
    max_combo = Column(Integer, default=0)
    total_combos = Column(Integer, default=0)
    single_clears = Column(Integer, default=0)
    double_clears = Column(Integer, default=0)
    triple_clears = Column(Integer, default=0)
    tetris_clears = Column(Integer, default=0)

    # Outcome and write-time flags
    won = Column(Boolean, nullable=False, default=False)
    is_personal_best = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    player = relationship("Player")

    __table_args__ = (
        CheckConstraint('score >= 0', name='ck_game_results_score'),
        CheckConstraint('level >= 1', name='ck_game_results_level'),
        CheckConstraint('lines_cleared >= 0', name='ck_game_results_lines'),
        CheckConstraint('time_played >= 0', name='ck_game_results_time'),
        Index('ix_game_results_player_created', 'player_id', 'created_at'),
        Index('ix_game_results_created', 'created_at'),
        Index('ix_game_results_score', 'score'),
        Index('ix_game_results_mode_score', 'game_mode', 'score'),
    )

    def calculate_pieces_per_minute(self) -> int:
        if not self.time_played:
            return 0
        minutes = self.time_played / 60
        return int((self.total_pieces or 0) / minutes + 0.5)

    def __repr__(self):
        return f"<GameResult(id={self.id}, player_id={self.player_id}, score={self.score}, mode={self.game_mode})>"

class PlayerAggregate(Base):
    """
    Lifetime rollup of a player's results.

    Updated incrementally on every submission. ``version`` is the optimistic
    concurrency counter: a flush against a stale version raises
    ``StaleDataError`` instead of overwriting a concurrent update.
    """
    __tablename__ = 'player_aggregates'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, unique=True)

    total_games = Column(Integer, nullable=False, default=0)
    total_wins = Column(Integer, nullable=False, default=0)
    total_losses = Column(Integer, nullable=False, default=0)
    best_score = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    total_lines_cleared = Column(Integer, nullable=False, default=0)
    total_time_played = Column(Integer, nullable=False, default=0)

    # Stored derived values
    average_score = Column(Integer, nullable=False, default=0)
    win_rate = Column(Integer, nullable=False, default=0)  # percent

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    player = relationship("Player", back_populates="aggregate")

    __mapper_args__ = {'version_id_col': version}

    @classmethod
    def zero(cls, player_id: int) -> "PlayerAggregate":
        """Zero-valued aggregate for a player's first submission."""
        return cls(
            player_id=player_id,
            total_games=0,
            total_wins=0,
            total_losses=0,
            best_score=0,
            total_score=0,
            total_lines_cleared=0,
            total_time_played=0,
            average_score=0,
            win_rate=0,
        )

    def refresh_derived(self) -> None:
        """Recompute the stored average score and win rate (round half up)."""
        if not self.total_games:
            self.average_score = 0
            self.win_rate = 0
            return
        # Integer form of floor(x / n + 0.5)
        self.average_score = (2 * self.total_score + self.total_games) // (2 * self.total_games)
        self.win_rate = (200 * self.total_wins + self.total_games) // (2 * self.total_games)

    def __repr__(self):
        return f"<PlayerAggregate(player_id={self.player_id}, games={self.total_games}, best={self.best_score})>"

class LeaderboardEntry(Base):
    """
    Denormalized best result per player, read by the ranked views.

    Must always agree with ``PlayerAggregate.best_score``.
    """
    __tablename__ = 'leaderboard_entries'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)

    best_score = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False)
    lines_cleared = Column(Integer, nullable=False)
    game_mode = Column(SQLEnum(GameMode), nullable=False)
    game_result_id = Column(Integer, ForeignKey('game_results.id'), nullable=True)

    achieved_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    player = relationship("Player", back_populates="leaderboard_entry")
    game_result = relationship("GameResult")

    __table_args__ = (
        UniqueConstraint('player_id', name='uq_leaderboard_entries_player'),
        CheckConstraint('best_score >= 0', name='ck_leaderboard_entries_score'),
        Index('ix_leaderboard_entries_rank', 'best_score', 'achieved_at'),
    )

    def __repr__(self):
        return f"<LeaderboardEntry(player_id={self.player_id}, best_score={self.best_score}, achieved_at={self.achieved_at})>"

# ============================================================================
# SQLAlchemy Event Listeners
# ============================================================================

@event.listens_for(GameResult, "before_insert")
def _apply_pieces_per_minute(mapper, connection, target):
    """Derive pieces per minute from the stats block before the row is written"""
    target.pieces_per_minute = target.calculate_pieces_per_minute()

"""
Shared ranking utilities for all-time and windowed leaderboards.

Both views order by best score descending, then by the time the best was
reached (earlier first), then by player id, so no two players ever share a
rank.
"""

from datetime import datetime
from typing import Tuple

from sqlalchemy import and_, or_


class RankingUtility:
    """Shared ranking logic for consistent ordering across views."""

    @staticmethod
    def order_by(score_col, achieved_col, player_col) -> tuple:
        """ORDER BY clauses for a leaderboard source."""
        return (score_col.desc(), achieved_col.asc(), player_col.asc())

    @staticmethod
    def outranks(score_col, achieved_col, player_col,
                 best_score: int, achieved_at: datetime, player_id: int):
        """
        Predicate matching rows that sort strictly before the given row.

        A player's rank is the number of rows matching this predicate plus one.
        """
        return or_(
            score_col > best_score,
            and_(score_col == best_score, achieved_col < achieved_at),
            and_(
                score_col == best_score,
                achieved_col == achieved_at,
                player_col < player_id,
            ),
        )

    @staticmethod
    def sort_key(best_score: int, achieved_at: datetime, player_id: int) -> Tuple[int, datetime, int]:
        """In-memory equivalent of ``order_by``."""
        return (-best_score, achieved_at, player_id)

    @staticmethod
    def total_pages(total: int, page_size: int) -> int:
        return (total + page_size - 1) // page_size if total > 0 else 1

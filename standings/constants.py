"""
Core-wide constants for the standings package.

Keeps the magic numbers of the ranking and statistics code in one place.
"""

class PaginationConstants:
    """Constants for paginated views."""

    # Recent results / personal bests shown in a player report
    RECENT_RESULTS_LIMIT = 10
    PERSONAL_BESTS_LIMIT = 10

    # Points in the score history trend
    SCORE_HISTORY_LIMIT = 30

    # Rows in the global overview tables
    TOP_PLAYERS_LIMIT = 10
    TOP_COUNTRIES_LIMIT = 10
    TOP_SCORES_LIMIT = 10

class WindowConstants:
    """Named leaderboard / statistics periods in days."""

    NAMED_PERIODS = {
        'daily': 1,
        'weekly': 7,
        'monthly': 30,
        'yearly': 365,
    }

    # Span of the games-per-day trend in the global report
    DAILY_TREND_DAYS = 30

class LockConstants:
    """Constants for per-player serialization."""

    REDIS_LOCK_PREFIX = 'standings:player_lock:'

class StatsConstants:
    """Weights used in derived statistics."""

    # Lines credited per clear type for the efficiency metric
    LINE_WEIGHTS = {
        'single': 1,
        'double': 2,
        'triple': 3,
        'tetris': 4,
    }

    DAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']

"""
Input validation for submitted results and query arguments.

Everything here runs before any write, so a ValidationError always means
nothing was stored.
"""

from typing import Any, Mapping, Optional

from standings.config import Config
from standings.data_models.results import GameStatsBlock, ResultSubmission
from standings.database.models import GameMode, Difficulty
from standings.utils.exceptions import ValidationError

# Nested key paths of the client payload, mapped to stats block fields
_NESTED_STATS_KEYS = {
    'total_pieces': ('totalPieces',),
    'perfect_clears': ('perfectClears',),
    't_spins': ('tSpins',),
    'max_combo': ('combos', 'maxCombo'),
    'total_combos': ('combos', 'totalCombos'),
    'single_clears': ('lineClears', 'single'),
    'double_clears': ('lineClears', 'double'),
    'triple_clears': ('lineClears', 'triple'),
    'tetris_clears': ('lineClears', 'tetris'),
}


def _require_int(field: str, value: Any, minimum: int = 0) -> int:
    # bool is an int subclass; a flag is never a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise ValidationError(field, f"must be >= {minimum}, got {value}")
    return value


def _parse_enum(field: str, enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    allowed = ', '.join(member.value for member in enum_cls)
    raise ValidationError(field, f"must be one of {allowed}, got {value!r}")


def _lookup(stats: Mapping, path):
    node = stats
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def parse_detailed_stats(stats: Optional[Mapping]) -> GameStatsBlock:
    """
    Build a stats block from the client payload.

    Accepts either the nested client shape (``totalPieces``,
    ``combos.maxCombo``, ``lineClears.single`` ...) or flat snake_case keys.
    Missing counters default to zero.
    """
    if stats is None:
        return GameStatsBlock()
    if not isinstance(stats, Mapping):
        raise ValidationError('detailed_stats', "must be a mapping")

    values = {}
    for name, path in _NESTED_STATS_KEYS.items():
        value = stats.get(name)
        if value is None:
            value = _lookup(stats, path)
        if value is None:
            continue
        values[name] = _require_int(f"detailed_stats.{name}", value)

    return GameStatsBlock(**values)


def validate_submission(
    player_id: Any,
    score: Any,
    level: Any,
    lines_cleared: Any,
    time_played: Any,
    game_mode: Any = GameMode.CLASSIC,
    difficulty: Any = Difficulty.NORMAL,
    detailed_stats: Optional[Mapping] = None,
    won: Any = False,
) -> ResultSubmission:
    """Validate raw submission fields and return an immutable submission."""
    if not isinstance(won, bool):
        raise ValidationError('won', "must be a boolean")

    return ResultSubmission(
        player_id=_require_int('player_id', player_id, minimum=1),
        score=_require_int('score', score),
        level=_require_int('level', level, minimum=1),
        lines_cleared=_require_int('lines_cleared', lines_cleared),
        time_played=_require_int('time_played', time_played),
        game_mode=_parse_enum('game_mode', GameMode, game_mode),
        difficulty=_parse_enum('difficulty', Difficulty, difficulty),
        stats=parse_detailed_stats(detailed_stats),
        won=won,
    )


def validate_pagination(page: Any, page_size: Any) -> None:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError('page', "must be a positive integer")
    if (isinstance(page_size, bool) or not isinstance(page_size, int)
            or page_size < 1 or page_size > Config.MAX_PAGE_SIZE):
        raise ValidationError('page_size', f"must be between 1 and {Config.MAX_PAGE_SIZE}")


def validate_timeout(timeout: Any) -> None:
    if timeout is None:
        return
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValidationError('timeout', "must be a positive number of seconds")


def parse_game_mode(value: Any) -> GameMode:
    return _parse_enum('game_mode', GameMode, value)

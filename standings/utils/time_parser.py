"""
Time utilities for windowed leaderboards and period statistics.

Handles conversion between window strings and durations, and the naive-UTC
timestamps stored in the database.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from standings.constants import WindowConstants

_DURATION_PATTERN = re.compile(r'^(\d+)\s*([mhdw])$')

_UNIT_SECONDS = {
    'm': 60,
    'h': 3600,
    'd': 86400,
    'w': 604800,
}


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_window(window_str: str) -> timedelta:
    """
    Parse a window string into a duration.

    Supported formats:
    - Named periods: daily, weekly, monthly, yearly
    - <n>m minutes (e.g., 90m)
    - <n>h hours (e.g., 12h)
    - <n>d days (e.g., 7d)
    - <n>w weeks (e.g., 2w)

    Args:
        window_str: Window string to parse

    Returns:
        Positive timedelta

    Raises:
        ValueError: If the format is invalid or the duration is zero
    """
    if not isinstance(window_str, str):
        raise ValueError(f"Invalid window: {window_str!r}")

    text = window_str.strip().lower()

    if text in WindowConstants.NAMED_PERIODS:
        return timedelta(days=WindowConstants.NAMED_PERIODS[text])

    match = _DURATION_PATTERN.match(text)
    if not match:
        raise ValueError(
            f"Invalid window format: {window_str}. Use daily, weekly, monthly, yearly or <n>m/h/d/w"
        )

    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("Window duration must be positive")

    return timedelta(seconds=amount * _UNIT_SECONDS[match.group(2)])


def period_start(period: str, now: datetime) -> Optional[datetime]:
    """Start of a statistics period ending at ``now``; None for 'all'."""
    if period is None or period.strip().lower() == 'all':
        return None
    return now - parse_window(period)

"""
Tests for window parsing and statistics periods.
"""

from datetime import datetime, timedelta

import pytest

from standings.utils.time_parser import parse_window, period_start, utc_now


@pytest.mark.parametrize('text, expected', [
    ('daily', timedelta(days=1)),
    ('Weekly', timedelta(days=7)),
    ('monthly', timedelta(days=30)),
    ('yearly', timedelta(days=365)),
    ('90m', timedelta(minutes=90)),
    ('12h', timedelta(hours=12)),
    ('7d', timedelta(days=7)),
    ('2w', timedelta(weeks=2)),
    (' 3 d ', timedelta(days=3)),
])
def test_parse_window(text, expected):
    assert parse_window(text) == expected


@pytest.mark.parametrize('text', ['', 'forever', '0h', '-1d', '1.5h', '5s', '10'])
def test_parse_window_rejects(text):
    with pytest.raises(ValueError):
        parse_window(text)


def test_parse_window_rejects_non_string():
    with pytest.raises(ValueError):
        parse_window(7)


def test_period_start():
    now = datetime(2025, 1, 10, 0, 0)
    assert period_start('all', now) is None
    assert period_start(None, now) is None
    assert period_start('weekly', now) == datetime(2025, 1, 3, 0, 0)
    assert period_start('6h', now) == datetime(2025, 1, 9, 18, 0)


def test_utc_now_is_naive():
    assert utc_now().tzinfo is None

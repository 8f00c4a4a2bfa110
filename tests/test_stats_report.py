"""
Tests for player, global and comparison statistics reports.
"""

from datetime import date

import pytest

from standings.services.stats_report import rounded_ratio
from standings.utils.exceptions import NotFoundError, ValidationError

STATS = {
    'totalPieces': 90,
    'tSpins': 2,
    'perfectClears': 1,
    'combos': {'maxCombo': 5},
    'lineClears': {'single': 4, 'double': 2, 'triple': 0, 'tetris': 1},
}


def test_rounded_ratio():
    assert rounded_ratio(5, 2) == 3
    assert rounded_ratio(4, 3) == 1
    assert rounded_ratio(10, 0) == 0


@pytest.mark.asyncio
async def test_player_stats_all_time(core, players, clock, submit):
    # Clock starts Monday 12:00
    await submit(players.alice, 100, lines_cleared=12, time_played=60, detailed_stats=STATS, won=True)
    clock.advance(days=1, hours=2)
    await submit(players.alice, 300, lines_cleared=8, time_played=120, game_mode='sprint',
                 detailed_stats={'totalPieces': 30, 'combos': {'maxCombo': 9}})
    clock.advance(hours=1)
    await submit(players.alice, 200, lines_cleared=0, time_played=0)

    report = await core.player_stats(players.alice)

    assert report.username == 'alice'
    assert report.period == 'all'
    assert (report.total_games, report.total_score, report.best_score) == (3, 600, 300)
    assert report.average_score == 200
    assert report.total_lines_cleared == 20
    assert (report.total_time_played, report.average_time_played) == (180, 60)
    assert report.games_by_mode == {'classic': 2, 'sprint': 1, 'ultra': 0, 'zen': 0}
    assert (report.total_pieces, report.total_t_spins, report.total_perfect_clears) == (120, 2, 1)
    assert report.max_combo == 9
    assert report.line_clears == {'single': 4, 'double': 2, 'triple': 0, 'tetris': 1}
    # (4*1 + 2*2 + 4*1) / 20 lines
    assert report.efficiency == 60
    assert report.pieces_per_minute == 40

    assert [p.score for p in report.score_history] == [100, 300, 200]
    assert [r.score for r in report.recent_results] == [200, 300, 100]
    assert [r.score for r in report.personal_bests] == [300, 100]

    assert [(b.label, b.games, b.total_score) for b in report.day_of_week] == [
        ('Monday', 1, 100), ('Tuesday', 2, 500)
    ]
    assert [(b.label, b.games, b.average_score) for b in report.hour_of_day] == [
        ('12:00', 1, 100), ('14:00', 1, 300), ('15:00', 1, 200)
    ]


@pytest.mark.asyncio
async def test_player_stats_period(core, players, clock, submit):
    await submit(players.bob, 500)
    clock.advance(days=3)
    await submit(players.bob, 20)

    daily = await core.player_stats(players.bob, 'daily')
    assert (daily.total_games, daily.best_score) == (1, 20)
    # Personal bests are all-time
    assert [r.score for r in daily.personal_bests] == [500]

    empty = await core.player_stats(players.dave, 'weekly')
    assert (empty.total_games, empty.average_score, empty.efficiency) == (0, 0, 0)
    assert empty.score_history == []


@pytest.mark.asyncio
async def test_player_stats_errors(core, players):
    with pytest.raises(NotFoundError):
        await core.player_stats(12345)
    with pytest.raises(ValidationError):
        await core.player_stats(players.alice, 'fortnightly')


@pytest.mark.asyncio
async def test_compare_players(core, players, submit):
    await submit(players.alice, 10)
    await submit(players.bob, 20)

    first, second = await core.compare_players(players.bob, players.alice)
    assert (first.username, first.best_score) == ('bob', 20)
    assert (second.username, second.best_score) == ('alice', 10)

    with pytest.raises(ValidationError):
        await core.compare_players(players.bob, players.bob)


@pytest.mark.asyncio
async def test_global_stats(core, players, clock, submit):
    await submit(players.alice, 900, time_played=120, detailed_stats={'totalPieces': 100})
    await submit(players.carol, 300, game_mode='zen')
    clock.advance(days=2)
    await submit(players.bob, 500, time_played=60, detailed_stats={'totalPieces': 50})
    await submit(players.bob, 100)

    report = await core.global_stats()
    assert report.total_players == 4
    assert (report.total_games, report.total_score, report.best_score) == (4, 1800, 900)
    assert report.average_score == 450
    assert report.games_by_mode['zen'] == 1
    assert report.pieces_per_minute == 30  # 150 pieces over five minutes
    assert [e.player.username for e in report.top_players] == ['alice', 'bob', 'carol']
    assert [r.score for r in report.top_scores] == [900, 500, 300, 100]

    countries = {c.country: c for c in report.countries}
    assert countries['FR'].players == 2
    assert countries['FR'].average_ranking_points == 1150
    assert countries['FR'].total_score == 1200
    assert countries['US'].total_score == 600
    assert report.countries[0].country == 'FR'

    assert [(d.day, d.games, d.unique_players) for d in report.daily_games] == [
        (date(2025, 1, 6), 2, 2), (date(2025, 1, 8), 2, 1)
    ]


@pytest.mark.asyncio
async def test_global_stats_period_uses_window(core, players, clock, submit):
    await submit(players.alice, 900)
    clock.advance(days=2)
    await submit(players.bob, 500)

    report = await core.global_stats('daily')
    assert report.total_games == 1
    assert [e.player.username for e in report.top_players] == ['bob']
    assert [r.score for r in report.top_scores] == [500]

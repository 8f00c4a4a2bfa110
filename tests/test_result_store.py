"""
Tests for the append-only result ledger.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from standings.database.models import GameMode


@pytest.mark.asyncio
async def test_append_derives_pieces_per_minute(core, players, submit):
    outcome = await submit(
        players.alice, 1000, time_played=90, detailed_stats={'totalPieces': 100}
    )
    stored = await core.results.get_result(outcome.result.id)
    assert stored.stats.total_pieces == 100
    assert stored.pieces_per_minute == 67  # 66.67


@pytest.mark.asyncio
async def test_pieces_per_minute_is_zero_without_playtime(core, players, submit):
    outcome = await submit(players.alice, 10, time_played=0, detailed_stats={'total_pieces': 12})
    assert outcome.result.pieces_per_minute == 0


@pytest.mark.asyncio
async def test_get_result_unknown_id(core):
    assert await core.results.get_result(424242) is None


@pytest.mark.asyncio
async def test_list_player_results_newest_first_and_paginated(core, players, clock, submit):
    for score in [10, 20, 30, 40, 50]:
        await submit(players.alice, score)
        clock.advance(minutes=5)
    await submit(players.bob, 999)

    page_one = await core.player_history(players.alice, page=1, page_size=2)
    assert [r.score for r in page_one.results] == [50, 40]
    assert page_one.total_results == 5
    assert page_one.total_pages == 3

    page_three = await core.player_history(players.alice, page=3, page_size=2)
    assert [r.score for r in page_three.results] == [10]


@pytest.mark.asyncio
async def test_list_player_results_by_mode(core, players, submit):
    await submit(players.alice, 10, game_mode='sprint')
    await submit(players.alice, 20, game_mode='classic')
    await submit(players.alice, 30, game_mode='Sprint')

    sprint = await core.player_history(players.alice, game_mode='sprint')
    assert sprint.total_results == 2
    assert {r.game_mode for r in sprint.results} == {GameMode.SPRINT}


@pytest.mark.asyncio
async def test_list_results_between(core, players, clock, submit):
    start = clock()
    await submit(players.alice, 1)
    clock.advance(hours=1)
    await submit(players.bob, 2)
    clock.advance(hours=1)
    await submit(players.carol, 3)

    results = await core.results.list_results_between(start + timedelta(minutes=30), clock())
    assert [r.score for r in results] == [2, 3]

    limited = await core.results.list_results_between(None, None, limit=1, offset=1)
    assert [r.score for r in limited] == [2]


@pytest.mark.asyncio
async def test_top_scores_prefers_earlier_on_ties(core, players, clock, submit):
    await submit(players.alice, 500)
    clock.advance(minutes=1)
    await submit(players.bob, 500)
    await submit(players.carol, 100)

    top = await core.results.top_scores(limit=2)
    assert [(r.player_id, r.score) for r in top] == [(players.alice, 500), (players.bob, 500)]


@pytest.mark.asyncio
async def test_windowed_bests_uses_earliest_time_max_was_reached(core, players, clock, submit):
    window_start = clock()
    await submit(players.alice, 100)
    clock.advance(hours=1)
    reached = clock()
    await submit(players.alice, 300)
    clock.advance(hours=1)
    await submit(players.alice, 300)
    await submit(players.bob, 50)

    bests = core.results.windowed_bests(window_start, clock())
    async with core.results.get_session() as session:
        rows = {row.player_id: row for row in await session.execute(select(bests))}

    assert rows[players.alice].best_score == 300
    assert rows[players.alice].games == 3
    assert rows[players.alice].achieved_at == reached
    assert rows[players.bob].games == 1
    assert players.carol not in rows


@pytest.mark.asyncio
async def test_ledger_bests(core, players, submit):
    await submit(players.alice, 100)
    await submit(players.alice, 70)
    await submit(players.bob, 5)

    assert await core.results.ledger_bests() == {players.alice: 100, players.bob: 5}
    assert await core.results.ledger_bests([players.bob]) == {players.bob: 5}

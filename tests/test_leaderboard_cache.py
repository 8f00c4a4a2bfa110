"""
Tests for leaderboard cache maintenance: consistency checks and rebuilds.
"""

import pytest
from sqlalchemy import delete, event, update

from standings.database.models import GameMode, LeaderboardEntry, PlayerAggregate
from standings.utils.exceptions import CacheConsistencyError


async def _corrupt_entry(core, player_id, best_score):
    async with core.db.transaction() as session:
        await session.execute(
            update(LeaderboardEntry)
            .where(LeaderboardEntry.player_id == player_id)
            .values(best_score=best_score)
        )


@pytest.mark.asyncio
async def test_cache_matches_aggregate_and_ledger(core, players, submit):
    for player_id, scores in [(players.alice, [10, 90, 40]), (players.bob, [5]), (players.carol, [0, 0])]:
        for score in scores:
            await submit(player_id, score)

    assert await core.verify_consistency() == []

    for player_id, expected in [(players.alice, 90), (players.bob, 5), (players.carol, 0)]:
        entry = await core.leaderboard.get_entry(player_id)
        aggregate = await core.get_aggregate(player_id)
        assert entry.best_score == aggregate.best_score == expected

    # No results, no entry
    assert await core.leaderboard.get_entry(players.dave) is None


@pytest.mark.asyncio
async def test_diverged_cache_aborts_submission(core, players, submit):
    await submit(players.alice, 100)
    await _corrupt_entry(core, players.alice, 1000)

    with pytest.raises(CacheConsistencyError) as exc_info:
        await submit(players.alice, 200)
    assert exc_info.value.cached == 1000

    # Whole attempt rolled back
    history = await core.player_history(players.alice)
    assert history.total_results == 1
    assert (await core.get_aggregate(players.alice)).total_games == 1


@pytest.mark.asyncio
async def test_verify_consistency_reports_divergence(core, players, submit):
    await submit(players.alice, 100)
    await submit(players.bob, 60)
    await _corrupt_entry(core, players.alice, 1000)

    issues = await core.verify_consistency()
    assert len(issues) == 1
    issue = issues[0]
    assert issue.player_id == players.alice
    assert (issue.aggregate_best, issue.cached_best, issue.ledger_best) == (100, 1000, 100)

    assert await core.verify_consistency([players.bob]) == []


@pytest.mark.asyncio
async def test_rebuild_repairs_entries_and_aggregates(core, players, clock, submit):
    first = await submit(players.alice, 300)
    clock.advance(minutes=10)
    await submit(players.alice, 300)
    await submit(players.bob, 50, won=True)

    await _corrupt_entry(core, players.alice, 1)
    async with core.db.transaction() as session:
        await session.execute(delete(PlayerAggregate).where(PlayerAggregate.player_id == players.bob))
        await session.execute(delete(LeaderboardEntry).where(LeaderboardEntry.player_id == players.bob))

    assert len(await core.verify_consistency()) == 2

    rebuilt = await core.rebuild_leaderboard()
    assert rebuilt == 2
    assert await core.verify_consistency() == []

    alice_entry = await core.leaderboard.get_entry(players.alice)
    assert alice_entry.best_score == 300
    assert alice_entry.achieved_at == first.result.created_at
    assert alice_entry.game_result_id == first.result.id

    bob = await core.get_aggregate(players.bob)
    assert (bob.total_games, bob.total_wins, bob.win_rate, bob.best_score) == (1, 1, 100, 50)


@pytest.mark.asyncio
async def test_rebuild_removes_rows_without_results(core, players, submit):
    await submit(players.alice, 10)
    async with core.db.transaction() as session:
        session.add(LeaderboardEntry(
            player_id=players.dave, best_score=5, level=1, lines_cleared=0,
            game_mode=GameMode.CLASSIC,
            achieved_at=core.clock(),
        ))

    assert [i.player_id for i in await core.verify_consistency()] == [players.dave]

    await core.rebuild_leaderboard()
    assert await core.leaderboard.get_entry(players.dave) is None
    assert await core.verify_consistency() == []


@pytest.mark.asyncio
async def test_rebuild_entries_only_keeps_aggregates(core, players, submit):
    await submit(players.alice, 10)
    await _corrupt_entry(core, players.alice, 99)
    before = await core.get_aggregate(players.alice)

    await core.rebuild_leaderboard(rebuild_aggregates=False)

    assert (await core.leaderboard.get_entry(players.alice)).best_score == 10
    assert await core.get_aggregate(players.alice) == before


@pytest.mark.asyncio
async def test_verify_reads_all_three_in_one_statement(core, players, submit):
    await submit(players.alice, 70)
    await submit(players.bob, 30)
    async with core.db.transaction() as session:
        await session.execute(delete(PlayerAggregate).where(PlayerAggregate.player_id == players.bob))

    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    engine = core.db.engine.sync_engine
    event.listen(engine, 'before_cursor_execute', record)
    try:
        issues = await core.verify_consistency()
    finally:
        event.remove(engine, 'before_cursor_execute', record)

    assert len([s for s in statements if s.lstrip().upper().startswith('SELECT')]) == 1
    assert [(i.player_id, i.aggregate_best, i.cached_best, i.ledger_best) for i in issues] == [
        (players.bob, None, 30, 30)
    ]

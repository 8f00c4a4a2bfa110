"""
Tests for the aggregate update rule and the transactional submission path.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from standings.data_models.results import ResultSubmission
from standings.database.models import PlayerAggregate
from standings.services.aggregate_stats import apply_result
from standings.utils.exceptions import NotFoundError, StorageError, TransactionError


def _submission(score, won=False, lines=0, time_played=60):
    return ResultSubmission(
        player_id=1, score=score, level=1, lines_cleared=lines, time_played=time_played, won=won
    )


class TestApplyResult:
    def test_first_result_is_always_a_personal_best(self):
        aggregate = PlayerAggregate.zero(1)
        assert apply_result(aggregate, _submission(0), is_first=True) is True
        assert aggregate.best_score == 0
        assert aggregate.total_games == 1

    def test_tie_is_not_a_new_best(self):
        aggregate = PlayerAggregate.zero(1)
        apply_result(aggregate, _submission(300), is_first=True)
        assert apply_result(aggregate, _submission(300), is_first=False) is False
        assert aggregate.best_score == 300

    def test_counters_and_derived_values(self):
        aggregate = PlayerAggregate.zero(1)
        apply_result(aggregate, _submission(100, won=True, lines=4, time_played=30), is_first=True)
        apply_result(aggregate, _submission(250, lines=10, time_played=90), is_first=False)
        apply_result(aggregate, _submission(180, won=True, lines=6, time_played=45), is_first=False)

        assert aggregate.total_games == 3
        assert aggregate.total_score == 530
        assert aggregate.best_score == 250
        assert aggregate.total_lines_cleared == 20
        assert aggregate.total_time_played == 165
        assert aggregate.total_wins == 2
        assert aggregate.total_losses == 1
        assert aggregate.average_score == 177  # 176.67
        assert aggregate.win_rate == 67  # 66.67

    def test_average_rounds_half_up(self):
        aggregate = PlayerAggregate.zero(1)
        apply_result(aggregate, _submission(1), is_first=True)
        apply_result(aggregate, _submission(2), is_first=False)
        assert aggregate.average_score == 2  # 1.5
        assert aggregate.win_rate == 0


@pytest.mark.asyncio
async def test_three_result_scenario(core, players, clock, submit):
    first = await submit(players.alice, 100)
    clock.advance(minutes=1)
    second = await submit(players.alice, 250)
    clock.advance(minutes=1)
    third = await submit(players.alice, 180)

    assert [o.is_new_personal_best for o in (first, second, third)] == [True, True, False]
    assert third.aggregate.best_score == 250
    assert third.aggregate.total_games == 3
    assert third.aggregate.average_score == 177

    entry = await core.leaderboard.get_entry(players.alice)
    assert entry.best_score == 250
    assert entry.game_result_id == second.result.id
    assert entry.achieved_at == second.result.created_at


@pytest.mark.asyncio
async def test_personal_best_flag_is_stored(core, players, submit):
    first = await submit(players.alice, 100)
    second = await submit(players.alice, 50)

    assert (await core.results.get_result(first.result.id)).is_personal_best is True
    assert (await core.results.get_result(second.result.id)).is_personal_best is False


@pytest.mark.asyncio
async def test_tie_keeps_original_achievement_time(core, players, clock, submit):
    first = await submit(players.alice, 300)
    clock.advance(hours=1)
    tie = await submit(players.alice, 300)

    assert tie.is_new_personal_best is False
    entry = await core.leaderboard.get_entry(players.alice)
    assert entry.achieved_at == first.result.created_at
    assert entry.game_result_id == first.result.id


@pytest.mark.asyncio
async def test_first_score_of_zero_creates_entry(core, players, submit):
    outcome = await submit(players.bob, 0)
    assert outcome.is_new_personal_best is True
    entry = await core.leaderboard.get_entry(players.bob)
    assert entry is not None and entry.best_score == 0


@pytest.mark.asyncio
async def test_counters_never_decrease(core, players, submit):
    previous = None
    for score in [500, 10, 900, 0, 300]:
        outcome = await submit(players.carol, score, lines_cleared=3, time_played=20)
        snapshot = outcome.aggregate
        if previous is not None:
            assert snapshot.total_games == previous.total_games + 1
            assert snapshot.total_score >= previous.total_score
            assert snapshot.total_lines_cleared >= previous.total_lines_cleared
            assert snapshot.total_time_played >= previous.total_time_played
        previous = snapshot
    assert previous.best_score == 900


@pytest.mark.asyncio
async def test_unknown_player_writes_nothing(core, players, submit):
    with pytest.raises(NotFoundError):
        await submit(9999, 100)

    history = await core.player_history(9999)
    assert history.total_results == 0
    assert await core.get_aggregate(9999) is None


@pytest.mark.asyncio
async def test_write_conflict_is_retried(core, players, submit, monkeypatch):
    engine = core.aggregates
    real_attempt = engine._submit_attempt
    calls = {'count': 0}

    async def flaky_attempt(submission, commit_started=None):
        calls['count'] += 1
        if calls['count'] == 1:
            raise StaleDataError("aggregate version changed")
        return await real_attempt(submission, commit_started)

    monkeypatch.setattr(engine, '_submit_attempt', flaky_attempt)

    outcome = await submit(players.alice, 120)
    assert calls['count'] == 2
    assert outcome.aggregate.total_games == 1


@pytest.mark.asyncio
async def test_persistent_conflict_raises_transaction_error(core, players, submit, monkeypatch):
    engine = core.aggregates
    engine.max_retries = 2

    async def always_conflicts(submission, commit_started=None):
        raise IntegrityError("INSERT INTO player_aggregates", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(engine, '_submit_attempt', always_conflicts)

    with pytest.raises(TransactionError) as exc_info:
        await submit(players.alice, 120)
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_storage_failure_mid_submission_leaves_nothing(core, players, submit, monkeypatch):
    await submit(players.alice, 100)

    async def disk_failure(session, result, achieved_at):
        raise OperationalError("UPDATE leaderboard_entries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(core.leaderboard, 'record_personal_best', disk_failure)

    with pytest.raises(StorageError) as exc_info:
        await submit(players.alice, 200)
    assert not isinstance(exc_info.value, TransactionError)

    aggregate = await core.get_aggregate(players.alice)
    assert (aggregate.total_games, aggregate.total_score, aggregate.best_score) == (1, 100, 100)
    assert (await core.player_history(players.alice)).total_results == 1
    assert (await core.leaderboard.get_entry(players.alice)).best_score == 100
    assert await core.verify_consistency() == []


@pytest.mark.asyncio
async def test_storage_failure_on_first_submission_leaves_nothing(core, players, submit, monkeypatch):
    async def disk_failure(session, result, achieved_at):
        raise OperationalError("INSERT INTO leaderboard_entries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(core.leaderboard, 'record_personal_best', disk_failure)

    with pytest.raises(StorageError):
        await submit(players.bob, 50)

    assert (await core.player_history(players.bob)).total_results == 0
    assert await core.get_aggregate(players.bob) is None
    assert await core.leaderboard.get_entry(players.bob) is None

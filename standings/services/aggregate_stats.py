"""
Aggregate stats engine: lifetime rollups and the score submission path.

A submission appends the result, folds it into the player's aggregate and,
on a new personal best, raises the leaderboard entry. All three writes share
one transaction; a failed attempt leaves nothing behind.
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from standings.config import Config
from standings.data_models.results import (
    AggregateSnapshot, ResultSubmission, StoredResult, SubmissionOutcome
)
from standings.database.models import Player, PlayerAggregate
from standings.services.base import BaseService, retry_delay
from standings.services.leaderboard_cache import LeaderboardCache
from standings.services.player_locks import PlayerLockManager
from standings.services.result_store import ResultStore
from standings.utils.exceptions import (
    NotFoundError, StandingsException, StorageError, SubmissionTimeoutError, TransactionError
)
from standings.utils.time_parser import utc_now

logger = logging.getLogger(__name__)


def apply_result(aggregate: PlayerAggregate, submission: ResultSubmission, is_first: bool) -> bool:
    """
    Fold one result into an aggregate in place.

    A tie with the current best is not a new best. A player's first result
    always is, so the leaderboard entry exists as soon as any result does.

    Returns:
        True if the result sets a new personal best
    """
    is_new_personal_best = is_first or submission.score > aggregate.best_score

    aggregate.total_games += 1
    aggregate.total_score += submission.score
    aggregate.total_lines_cleared += submission.lines_cleared
    aggregate.total_time_played += submission.time_played
    if submission.won:
        aggregate.total_wins += 1
    else:
        aggregate.total_losses += 1

    if is_new_personal_best:
        aggregate.best_score = submission.score

    aggregate.refresh_derived()
    return is_new_personal_best


class AggregateStatsEngine(BaseService):
    """Owns ``player_aggregates`` and the transactional submission."""

    def __init__(
        self,
        session_factory,
        result_store: ResultStore,
        leaderboard_cache: LeaderboardCache,
        lock_manager: PlayerLockManager,
        clock: Callable = utc_now,
        max_retries: Optional[int] = None,
    ):
        super().__init__(session_factory)
        self.result_store = result_store
        self.leaderboard_cache = leaderboard_cache
        self.lock_manager = lock_manager
        self.clock = clock
        self.max_retries = max_retries if max_retries is not None else Config.SUBMISSION_MAX_RETRIES

    async def get_aggregate(self, player_id: int) -> Optional[AggregateSnapshot]:
        async with self.get_session() as session:
            aggregate = await session.scalar(
                select(PlayerAggregate).where(PlayerAggregate.player_id == player_id)
            )
            return AggregateSnapshot.from_model(aggregate) if aggregate else None

    async def submit(self, submission: ResultSubmission, timeout: Optional[float] = None) -> SubmissionOutcome:
        """
        Record a validated result.

        The deadline covers waiting for the player's lock and the writes up
        to the commit. Once the commit has been issued the submission runs
        to completion: a result that may be durable is never reported as
        failed. Releasing the lock afterwards is not under the deadline.

        Raises:
            NotFoundError: The player has no profile
            TransactionError: Write conflicts persisted through every retry
            SubmissionTimeoutError: The deadline passed; nothing was written
            StorageError: Any other storage failure; nothing was written
        """
        if timeout is None:
            timeout = Config.SUBMISSION_TIMEOUT_SECONDS

        commit_started = asyncio.Event()
        work = asyncio.ensure_future(self._submit_serialized(submission, commit_started))
        try:
            await self.run_with_timeout(
                "score submission", self._until_commit(work, commit_started), timeout
            )
        except asyncio.CancelledError:
            if not commit_started.is_set():
                work.cancel()
            raise
        except SubmissionTimeoutError:
            if not commit_started.is_set():
                work.cancel()
                # Let the rollback and lock release finish before reporting
                await asyncio.gather(work, return_exceptions=True)
                raise
            logger.warning(
                f"Score submission for player {submission.player_id} passed its deadline "
                f"after committing; waiting for it to finish"
            )
        return await work

    @staticmethod
    async def _until_commit(work: asyncio.Future, commit_started: asyncio.Event) -> None:
        """Return once ``work`` is done or has issued its commit."""
        waiter = asyncio.ensure_future(commit_started.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

    async def _submit_serialized(self, submission: ResultSubmission,
                                 commit_started: Optional[asyncio.Event] = None) -> SubmissionOutcome:
        async with self.lock_manager.hold(submission.player_id):
            return await self._submit_with_retry(submission, commit_started)

    async def _submit_with_retry(self, submission: ResultSubmission,
                                 commit_started: Optional[asyncio.Event] = None) -> SubmissionOutcome:
        """Submit with retry logic for write conflicts."""
        for attempt in range(self.max_retries):
            try:
                return await self._submit_attempt(submission, commit_started)
            except (IntegrityError, StaleDataError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Score submission failed after {self.max_retries} attempts: {e}")
                    raise TransactionError("score submission", self.max_retries) from e
                await asyncio.sleep(retry_delay(attempt))
                logger.warning(f"Score submission retry {attempt + 1} for player {submission.player_id}")
            except StandingsException:
                raise
            except SQLAlchemyError as e:
                logger.error(f"Database error during score submission: {e}")
                raise StorageError("score submission", str(e)) from e

    async def _submit_attempt(self, submission: ResultSubmission,
                              commit_started: Optional[asyncio.Event] = None) -> SubmissionOutcome:
        """Single attempt at score submission with transaction atomicity."""
        now = self.clock()

        async with self.get_session() as session:
            async with session.begin():
                # Insert first so the transaction holds the write lock from its first statement
                result = await self.result_store.append(session, submission, now)

                if await session.get(Player, submission.player_id) is None:
                    raise NotFoundError(submission.player_id)

                aggregate = await session.scalar(
                    select(PlayerAggregate)
                    .where(PlayerAggregate.player_id == submission.player_id)
                    .with_for_update()
                )
                is_first = aggregate is None
                if is_first:
                    aggregate = PlayerAggregate.zero(submission.player_id)
                    session.add(aggregate)

                is_new_personal_best = apply_result(aggregate, submission, is_first)

                # Versioned write; a concurrent update raises StaleDataError here
                await session.flush()

                if is_new_personal_best:
                    await self.leaderboard_cache.record_personal_best(session, result, now)
                    await self.result_store.mark_personal_best(session, result)

                outcome = SubmissionOutcome(
                    result=StoredResult.from_model(result),
                    aggregate=AggregateSnapshot.from_model(aggregate),
                    is_new_personal_best=is_new_personal_best,
                )
                # No await between here and the commit on block exit
                if commit_started is not None:
                    commit_started.set()

        logger.info(
            f"Recorded score {submission.score} for player {submission.player_id}"
            + (" (new personal best)" if is_new_personal_best else "")
        )
        return outcome

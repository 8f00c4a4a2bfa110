"""
Leaderboard cache: one denormalized best-result row per player.

The row is created with the player's first result and overwritten only by a
strictly better one, inside the same transaction that appends the result
and updates the aggregate. It must always agree with
``PlayerAggregate.best_score``; ``verify_consistency`` checks that against
the ledger and ``rebuild_from_results`` repairs it.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, union, update
from sqlalchemy.ext.asyncio import AsyncSession

from standings.data_models.leaderboard import ConsistencyIssue
from standings.database.models import GameResult, LeaderboardEntry, PlayerAggregate
from standings.services.base import BaseService
from standings.services.result_store import ResultStore
from standings.utils.exceptions import CacheConsistencyError

logger = logging.getLogger(__name__)


class LeaderboardCache(BaseService):
    """Maintains ``leaderboard_entries``."""

    def __init__(self, session_factory, result_store: ResultStore, lock_manager=None):
        super().__init__(session_factory)
        self.result_store = result_store
        self.lock_manager = lock_manager

    async def get_entry(self, player_id: int, session: Optional[AsyncSession] = None) -> Optional[LeaderboardEntry]:
        async with self._get_session_context(session) as s:
            return await s.scalar(
                select(LeaderboardEntry).where(LeaderboardEntry.player_id == player_id)
            )

    async def record_personal_best(self, session: AsyncSession, result: GameResult,
                                   achieved_at: datetime) -> None:
        """
        Conditionally upsert the player's entry for a new personal best.

        The update only matches a row holding a lower score. If no row
        matched and none exists, the first entry is inserted (a concurrent
        insert surfaces as IntegrityError at flush). A row that exists but
        did not match means the cache and the aggregate disagree.
        """
        values = dict(
            best_score=result.score,
            level=result.level,
            lines_cleared=result.lines_cleared,
            game_mode=result.game_mode,
            game_result_id=result.id,
            achieved_at=achieved_at,
            updated_at=achieved_at,
        )

        outcome = await session.execute(
            update(LeaderboardEntry)
            .where(
                LeaderboardEntry.player_id == result.player_id,
                LeaderboardEntry.best_score < result.score,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount == 1:
            logger.debug(f"Leaderboard entry for player {result.player_id} raised to {result.score}")
            return

        cached = await session.scalar(
            select(LeaderboardEntry.best_score).where(LeaderboardEntry.player_id == result.player_id)
        )
        if cached is None:
            session.add(LeaderboardEntry(player_id=result.player_id, **values))
            await session.flush()
            logger.debug(f"Leaderboard entry created for player {result.player_id} at {result.score}")
            return

        logger.error(
            f"Leaderboard entry for player {result.player_id} holds {cached}, "
            f"refusing personal best {result.score}"
        )
        raise CacheConsistencyError(result.player_id, result.score, cached)

    @staticmethod
    def consistency_query(player_ids: Optional[List[int]] = None):
        """
        One row per player known to any of the three tables, with the
        aggregate best, the cached best and the ledger max side by side.

        A single statement, so all three are read from the same state even
        while submissions commit.
        """
        known = []
        for column in (PlayerAggregate.player_id, LeaderboardEntry.player_id, GameResult.player_id):
            query = select(column.label('player_id'))
            if player_ids is not None:
                query = query.where(column.in_(player_ids))
            known.append(query)
        known_players = union(*known).subquery('known_players')
        player_id = known_players.c.player_id

        return (
            select(
                player_id,
                select(PlayerAggregate.best_score)
                .where(PlayerAggregate.player_id == player_id)
                .scalar_subquery().label('aggregate_best'),
                select(LeaderboardEntry.best_score)
                .where(LeaderboardEntry.player_id == player_id)
                .scalar_subquery().label('cached_best'),
                select(func.max(GameResult.score))
                .where(GameResult.player_id == player_id)
                .scalar_subquery().label('ledger_best'),
            )
            .order_by(player_id)
        )

    async def verify_consistency(self, player_ids: Optional[Iterable[int]] = None) -> List[ConsistencyIssue]:
        """
        Compare aggregate best, cached best and ledger max for each player.

        Returns one issue per player where the three disagree or where one
        exists without the others.
        """
        ids = list(player_ids) if player_ids is not None else None

        async with self.get_session() as session:
            rows = (await session.execute(self.consistency_query(ids))).all()

        issues = []
        for row in rows:
            if row.aggregate_best == row.cached_best == row.ledger_best:
                continue
            issues.append(ConsistencyIssue(row.player_id, row.aggregate_best, row.cached_best, row.ledger_best))

        if issues:
            logger.warning(f"Leaderboard consistency check found {len(issues)} issue(s)")
        else:
            logger.info("Leaderboard consistency check passed")
        return issues

    async def rebuild_from_results(self, rebuild_aggregates: bool = True) -> int:
        """
        Recompute every entry (and optionally every aggregate) from the ledger.

        Each player is rebuilt in its own transaction under the player's lock,
        so live submissions can continue meanwhile. Entries and aggregates of
        players without results are removed.

        Returns:
            Number of players rebuilt
        """
        player_ids = await self.result_store.players_with_results()

        async with self.get_session() as session:
            await session.execute(
                delete(LeaderboardEntry)
                .where(LeaderboardEntry.player_id.not_in(player_ids))
                .execution_options(synchronize_session=False)
            )
            if rebuild_aggregates:
                await session.execute(
                    delete(PlayerAggregate)
                    .where(PlayerAggregate.player_id.not_in(player_ids))
                    .execution_options(synchronize_session=False)
                )

        for player_id in player_ids:
            async def rebuild_one(player_id=player_id):
                if self.lock_manager is None:
                    await self._rebuild_player(player_id, rebuild_aggregates)
                    return
                async with self.lock_manager.hold(player_id):
                    await self._rebuild_player(player_id, rebuild_aggregates)

            await self.execute_with_retry(rebuild_one)

        logger.info(f"Rebuilt leaderboard for {len(player_ids)} player(s)")
        return len(player_ids)

    async def _rebuild_player(self, player_id: int, rebuild_aggregates: bool) -> None:
        async with self.get_session() as session:
            async with session.begin():
                best = await self.result_store.best_result(session, player_id)
                if best is None:
                    return

                entry = await self.get_entry(player_id, session=session)
                if entry is None:
                    entry = LeaderboardEntry(player_id=player_id)
                    session.add(entry)
                entry.best_score = best.score
                entry.level = best.level
                entry.lines_cleared = best.lines_cleared
                entry.game_mode = best.game_mode
                entry.game_result_id = best.id
                entry.achieved_at = best.created_at

                if not rebuild_aggregates:
                    return

                totals = await self.result_store.player_totals(session, player_id)
                aggregate = await session.scalar(
                    select(PlayerAggregate).where(PlayerAggregate.player_id == player_id)
                )
                if aggregate is None:
                    aggregate = PlayerAggregate.zero(player_id)
                    session.add(aggregate)
                for name, value in totals.items():
                    setattr(aggregate, name, value)
                aggregate.refresh_derived()

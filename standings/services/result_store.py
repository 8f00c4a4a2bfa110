"""
Result store: the append-only ledger of game results.

Rows are written once by the submitting transaction and never updated
afterwards. Everything else the core knows (aggregates, the leaderboard
cache, windowed rankings, statistics) can be derived from this table.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from standings.data_models.results import ResultPage, ResultSubmission, StoredResult
from standings.database.models import GameMode, GameResult
from standings.services.base import BaseService
from standings.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


class ResultStore(BaseService):
    """Append and range-scan access to ``game_results``."""

    # ------------------------------------------------------------------
    # Writes (submitting transaction only)
    # ------------------------------------------------------------------

    async def append(self, session: AsyncSession, submission: ResultSubmission,
                     created_at: datetime) -> GameResult:
        """
        Append one result inside the caller's transaction.

        Flushes so the immutable id is assigned before the aggregate is
        touched; the caller's commit makes it durable.
        """
        stats = submission.stats
        result = GameResult(
            player_id=submission.player_id,
            score=submission.score,
            level=submission.level,
            lines_cleared=submission.lines_cleared,
            time_played=submission.time_played,
            game_mode=submission.game_mode,
            difficulty=submission.difficulty,
            total_pieces=stats.total_pieces,
            perfect_clears=stats.perfect_clears,
            t_spins=stats.t_spins,
            max_combo=stats.max_combo,
            total_combos=stats.total_combos,
            single_clears=stats.single_clears,
            double_clears=stats.double_clears,
            triple_clears=stats.triple_clears,
            tetris_clears=stats.tetris_clears,
            won=submission.won,
            is_personal_best=False,
            created_at=created_at,
        )
        session.add(result)
        await session.flush()
        return result

    async def mark_personal_best(self, session: AsyncSession, result: GameResult) -> None:
        """Set the personal best flag before the submission is acknowledged."""
        result.is_personal_best = True
        await session.flush()

    # ------------------------------------------------------------------
    # Point and range reads
    # ------------------------------------------------------------------

    async def get_result(self, result_id: int) -> Optional[StoredResult]:
        async with self.get_session() as session:
            row = await session.get(GameResult, result_id)
            return StoredResult.from_model(row) if row else None

    async def list_player_results(
        self,
        player_id: int,
        page: int = 1,
        page_size: int = 20,
        game_mode: Optional[GameMode] = None,
        since: Optional[datetime] = None,
    ) -> ResultPage:
        """A player's results, newest first."""
        conditions = [GameResult.player_id == player_id]
        if game_mode is not None:
            conditions.append(GameResult.game_mode == game_mode)
        if since is not None:
            conditions.append(GameResult.created_at >= since)

        async with self.get_session() as session:
            total = await session.scalar(
                select(func.count(GameResult.id)).where(*conditions)
            )
            rows = await session.scalars(
                select(GameResult)
                .where(*conditions)
                .order_by(GameResult.created_at.desc(), GameResult.id.desc())
                .limit(page_size)
                .offset((page - 1) * page_size)
            )
            results = [StoredResult.from_model(row) for row in rows]

        return ResultPage(
            results=results,
            current_page=page,
            total_pages=RankingUtility.total_pages(total or 0, page_size),
            total_results=total or 0,
            game_mode=game_mode,
        )

    async def list_results_between(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        limit: int = 100,
        offset: int = 0,
    ) -> List[StoredResult]:
        """All players' results created in ``[start, end]``, oldest first."""
        query = select(GameResult)
        if start is not None:
            query = query.where(GameResult.created_at >= start)
        if end is not None:
            query = query.where(GameResult.created_at <= end)
        query = query.order_by(GameResult.created_at.asc(), GameResult.id.asc()).limit(limit).offset(offset)

        async with self.get_session() as session:
            rows = await session.scalars(query)
            return [StoredResult.from_model(row) for row in rows]

    async def top_scores(self, limit: int = 10, since: Optional[datetime] = None) -> List[StoredResult]:
        """Highest single results, earliest first among equal scores."""
        query = select(GameResult)
        if since is not None:
            query = query.where(GameResult.created_at >= since)
        query = query.order_by(
            GameResult.score.desc(), GameResult.created_at.asc(), GameResult.id.asc()
        ).limit(limit)

        async with self.get_session() as session:
            rows = await session.scalars(query)
            return [StoredResult.from_model(row) for row in rows]

    # ------------------------------------------------------------------
    # Aggregate scans
    # ------------------------------------------------------------------

    @staticmethod
    def windowed_bests(start: datetime, end: datetime):
        """
        Per-player best inside ``[start, end]`` as a CTE.

        Columns: ``player_id``, ``best_score`` (in-window max), ``games``
        (in-window result count) and ``achieved_at`` (earliest in-window time
        the max was reached). Players without results in the range have no
        row.
        """
        in_window = and_(GameResult.created_at >= start, GameResult.created_at <= end)

        window_max = (
            select(
                GameResult.player_id.label('player_id'),
                func.max(GameResult.score).label('best_score'),
                func.count(GameResult.id).label('games'),
            )
            .where(in_window)
            .group_by(GameResult.player_id)
            .cte('window_max')
        )

        first_reached = (
            select(
                GameResult.player_id.label('player_id'),
                func.min(GameResult.created_at).label('achieved_at'),
            )
            .join(
                window_max,
                and_(
                    GameResult.player_id == window_max.c.player_id,
                    GameResult.score == window_max.c.best_score,
                ),
            )
            .where(in_window)
            .group_by(GameResult.player_id)
            .cte('window_first_reached')
        )

        return (
            select(
                window_max.c.player_id,
                window_max.c.best_score,
                window_max.c.games,
                first_reached.c.achieved_at,
            )
            .join(first_reached, first_reached.c.player_id == window_max.c.player_id)
            .cte('windowed_bests')
        )

    async def ledger_bests(self, player_ids: Optional[Iterable[int]] = None) -> Dict[int, int]:
        """Max score per player straight from the ledger."""
        query = select(GameResult.player_id, func.max(GameResult.score)).group_by(GameResult.player_id)
        if player_ids is not None:
            query = query.where(GameResult.player_id.in_(list(player_ids)))

        async with self.get_session() as session:
            rows = await session.execute(query)
            return {player_id: best for player_id, best in rows}

    async def best_result(self, session: AsyncSession, player_id: int) -> Optional[GameResult]:
        """The result that first reached the player's all-time best."""
        return await session.scalar(
            select(GameResult)
            .where(GameResult.player_id == player_id)
            .order_by(GameResult.score.desc(), GameResult.created_at.asc(), GameResult.id.asc())
            .limit(1)
        )

    async def player_totals(self, session: AsyncSession, player_id: int) -> Optional[dict]:
        """Counters of a player's lifetime rollup recomputed from the ledger."""
        row = (await session.execute(
            select(
                func.count(GameResult.id).label('total_games'),
                func.coalesce(func.sum(case((GameResult.won.is_(True), 1), else_=0)), 0).label('total_wins'),
                func.coalesce(func.max(GameResult.score), 0).label('best_score'),
                func.coalesce(func.sum(GameResult.score), 0).label('total_score'),
                func.coalesce(func.sum(GameResult.lines_cleared), 0).label('total_lines_cleared'),
                func.coalesce(func.sum(GameResult.time_played), 0).label('total_time_played'),
            ).where(GameResult.player_id == player_id)
        )).one()

        if not row.total_games:
            return None
        return {
            'total_games': row.total_games,
            'total_wins': row.total_wins,
            'total_losses': row.total_games - row.total_wins,
            'best_score': row.best_score,
            'total_score': row.total_score,
            'total_lines_cleared': row.total_lines_cleared,
            'total_time_played': row.total_time_played,
        }

    async def players_with_results(self) -> List[int]:
        async with self.get_session() as session:
            rows = await session.scalars(
                select(GameResult.player_id).distinct().order_by(GameResult.player_id)
            )
            return list(rows)

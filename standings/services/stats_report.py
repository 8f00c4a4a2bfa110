"""
Statistics reports computed from the result ledger.

Read-only views over a period: a single player's detailed stats, the
server-wide overview and a side-by-side comparison of two players.
Periods are 'all', a named period (daily, weekly, monthly, yearly) or a
duration such as 12h or 2w.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Callable, List, Tuple

from sqlalchemy import func, select

from standings.constants import PaginationConstants, StatsConstants, WindowConstants
from standings.data_models.stats import (
    ActivityBucket, CountryStats, DailyActivity, GlobalStatsReport, PlayerStatsReport, ScorePoint
)
from standings.data_models.results import StoredResult
from standings.database.models import GameMode, GameResult, Player, PlayerAggregate
from standings.services.base import BaseService
from standings.services.rank_query import RankQueryEngine
from standings.services.result_store import ResultStore
from standings.utils.exceptions import NotFoundError, ValidationError
from standings.utils.partitions import GlobalPartition, WindowPartition
from standings.utils.time_parser import period_start, utc_now

logger = logging.getLogger(__name__)


def rounded_ratio(numerator: int, denominator: int) -> int:
    """round(numerator / denominator) with halves rounded up; 0 for an empty denominator."""
    if not denominator:
        return 0
    return (2 * numerator + denominator) // (2 * denominator)


class StatsReportService(BaseService):
    """Builds player and global statistics reports."""

    def __init__(self, session_factory, result_store: ResultStore,
                 rank_query: RankQueryEngine, clock: Callable = utc_now):
        super().__init__(session_factory)
        self.result_store = result_store
        self.rank_query = rank_query
        self.clock = clock

    def _period_bounds(self, period: str):
        now = self.clock()
        try:
            return now, period_start(period, now)
        except ValueError as e:
            raise ValidationError('period', str(e))

    # ------------------------------------------------------------------
    # Player report
    # ------------------------------------------------------------------

    async def player_stats(self, player_id: int, period: str = "all") -> PlayerStatsReport:
        """
        Detailed statistics for one player.

        Raises:
            NotFoundError: Unknown or inactive player
            ValidationError: Unparseable period
        """
        now, since = self._period_bounds(period)

        conditions = [GameResult.player_id == player_id]
        if since is not None:
            conditions.append(GameResult.created_at >= since)

        async with self.get_session() as session:
            player = await session.get(Player, player_id)
            if player is None or not player.is_active:
                raise NotFoundError(player_id)

            totals = (await session.execute(
                select(
                    func.count(GameResult.id).label('total_games'),
                    func.coalesce(func.sum(GameResult.score), 0).label('total_score'),
                    func.coalesce(func.max(GameResult.score), 0).label('best_score'),
                    func.coalesce(func.sum(GameResult.lines_cleared), 0).label('total_lines_cleared'),
                    func.coalesce(func.sum(GameResult.time_played), 0).label('total_time_played'),
                    func.coalesce(func.sum(GameResult.total_pieces), 0).label('total_pieces'),
                    func.coalesce(func.sum(GameResult.t_spins), 0).label('total_t_spins'),
                    func.coalesce(func.sum(GameResult.perfect_clears), 0).label('total_perfect_clears'),
                    func.coalesce(func.max(GameResult.max_combo), 0).label('max_combo'),
                    func.coalesce(func.sum(GameResult.single_clears), 0).label('single'),
                    func.coalesce(func.sum(GameResult.double_clears), 0).label('double'),
                    func.coalesce(func.sum(GameResult.triple_clears), 0).label('triple'),
                    func.coalesce(func.sum(GameResult.tetris_clears), 0).label('tetris'),
                ).where(*conditions)
            )).one()

            mode_rows = await session.execute(
                select(GameResult.game_mode, func.count(GameResult.id))
                .where(*conditions)
                .group_by(GameResult.game_mode)
            )
            games_by_mode = {mode.value: 0 for mode in GameMode}
            for mode, count in mode_rows:
                games_by_mode[mode.value] = count

            history_rows = (await session.scalars(
                select(GameResult)
                .where(*conditions)
                .order_by(GameResult.created_at.desc(), GameResult.id.desc())
                .limit(PaginationConstants.SCORE_HISTORY_LIMIT)
            )).all()

            activity_rows = (await session.execute(
                select(GameResult.created_at, GameResult.score).where(*conditions)
            )).all()

            best_rows = await session.scalars(
                select(GameResult)
                .where(GameResult.player_id == player_id, GameResult.is_personal_best.is_(True))
                .order_by(GameResult.created_at.desc(), GameResult.id.desc())
                .limit(PaginationConstants.PERSONAL_BESTS_LIMIT)
            )
            personal_bests = [StoredResult.from_model(row) for row in best_rows]

        line_clears = {kind: getattr(totals, kind) for kind in StatsConstants.LINE_WEIGHTS}
        weighted_lines = sum(StatsConstants.LINE_WEIGHTS[kind] * count for kind, count in line_clears.items())

        score_history = [
            ScorePoint(
                played_at=row.created_at,
                score=row.score,
                level=row.level,
                game_mode=row.game_mode.value,
            )
            for row in reversed(history_rows)
        ]
        recent_results = [
            StoredResult.from_model(row)
            for row in history_rows[:PaginationConstants.RECENT_RESULTS_LIMIT]
        ]

        day_of_week, hour_of_day = self._activity_buckets(activity_rows)

        return PlayerStatsReport(
            player_id=player.id,
            username=player.username,
            period=period,
            total_games=totals.total_games,
            total_score=totals.total_score,
            best_score=totals.best_score,
            average_score=rounded_ratio(totals.total_score, totals.total_games),
            total_lines_cleared=totals.total_lines_cleared,
            total_time_played=totals.total_time_played,
            average_time_played=rounded_ratio(totals.total_time_played, totals.total_games),
            games_by_mode=games_by_mode,
            total_pieces=totals.total_pieces,
            total_t_spins=totals.total_t_spins,
            total_perfect_clears=totals.total_perfect_clears,
            max_combo=totals.max_combo,
            line_clears=line_clears,
            efficiency=rounded_ratio(100 * weighted_lines, totals.total_lines_cleared),
            pieces_per_minute=rounded_ratio(60 * totals.total_pieces, totals.total_time_played),
            score_history=score_history,
            day_of_week=day_of_week,
            hour_of_day=hour_of_day,
            personal_bests=personal_bests,
            recent_results=recent_results,
        )

    @staticmethod
    def _activity_buckets(rows) -> Tuple[List[ActivityBucket], List[ActivityBucket]]:
        """Group (created_at, score) rows by weekday (Monday first) and by hour."""
        by_day = defaultdict(lambda: [0, 0])
        by_hour = defaultdict(lambda: [0, 0])
        for created_at, score in rows:
            for bucket in (by_day[created_at.weekday()], by_hour[created_at.hour]):
                bucket[0] += 1
                bucket[1] += score

        day_of_week = [
            ActivityBucket(StatsConstants.DAY_NAMES[day], games, rounded_ratio(total, games), total)
            for day, (games, total) in sorted(by_day.items())
        ]
        hour_of_day = [
            ActivityBucket(f"{hour:02d}:00", games, rounded_ratio(total, games), total)
            for hour, (games, total) in sorted(by_hour.items())
        ]
        return day_of_week, hour_of_day

    async def compare_players(self, first_player_id: int,
                              second_player_id: int) -> Tuple[PlayerStatsReport, PlayerStatsReport]:
        """All-time reports of two players, in argument order."""
        first = await self.player_stats(first_player_id)
        second = await self.player_stats(second_player_id)
        return first, second

    # ------------------------------------------------------------------
    # Global report
    # ------------------------------------------------------------------

    async def global_stats(self, period: str = "all") -> GlobalStatsReport:
        """Server-wide statistics over a period."""
        now, since = self._period_bounds(period)

        conditions = []
        if since is not None:
            conditions.append(GameResult.created_at >= since)

        async with self.get_session() as session:
            total_players = await session.scalar(
                select(func.count(Player.id)).where(Player.is_active.is_(True))
            )

            totals = (await session.execute(
                select(
                    func.count(GameResult.id).label('total_games'),
                    func.coalesce(func.sum(GameResult.score), 0).label('total_score'),
                    func.coalesce(func.max(GameResult.score), 0).label('best_score'),
                    func.coalesce(func.sum(GameResult.lines_cleared), 0).label('total_lines_cleared'),
                    func.coalesce(func.sum(GameResult.time_played), 0).label('total_time_played'),
                    func.coalesce(func.sum(GameResult.total_pieces), 0).label('total_pieces'),
                ).where(*conditions)
            )).one()

            mode_rows = await session.execute(
                select(GameResult.game_mode, func.count(GameResult.id))
                .where(*conditions)
                .group_by(GameResult.game_mode)
            )
            games_by_mode = {mode.value: 0 for mode in GameMode}
            for mode, count in mode_rows:
                games_by_mode[mode.value] = count

            country_code = func.upper(Player.country).label('country')
            country_rows = await session.execute(
                select(
                    country_code,
                    func.count(Player.id).label('players'),
                    func.avg(Player.ranking_points).label('average_ranking_points'),
                    func.coalesce(func.sum(PlayerAggregate.total_score), 0).label('total_score'),
                )
                .outerjoin(PlayerAggregate, PlayerAggregate.player_id == Player.id)
                .where(Player.is_active.is_(True), Player.country.is_not(None))
                .group_by(country_code)
                .order_by(func.count(Player.id).desc(), country_code.asc())
                .limit(PaginationConstants.TOP_COUNTRIES_LIMIT)
            )
            countries = [
                CountryStats(
                    country=row.country,
                    players=row.players,
                    average_ranking_points=int(float(row.average_ranking_points or 0) + 0.5),
                    total_score=row.total_score,
                )
                for row in country_rows
            ]

            trend_start = now - timedelta(days=WindowConstants.DAILY_TREND_DAYS)
            trend_rows = (await session.execute(
                select(GameResult.created_at, GameResult.player_id)
                .where(GameResult.created_at >= trend_start, GameResult.created_at <= now)
            )).all()

        if since is None:
            top_partition = GlobalPartition()
        else:
            top_partition = WindowPartition(now - since, period)
        top_page = await self.rank_query.top_n(
            top_partition, page=1, page_size=PaginationConstants.TOP_PLAYERS_LIMIT
        )
        top_scores = await self.result_store.top_scores(PaginationConstants.TOP_SCORES_LIMIT, since=since)

        return GlobalStatsReport(
            period=period,
            total_players=total_players or 0,
            total_games=totals.total_games,
            total_score=totals.total_score,
            average_score=rounded_ratio(totals.total_score, totals.total_games),
            best_score=totals.best_score,
            total_lines_cleared=totals.total_lines_cleared,
            total_time_played=totals.total_time_played,
            average_time_played=rounded_ratio(totals.total_time_played, totals.total_games),
            pieces_per_minute=rounded_ratio(60 * totals.total_pieces, totals.total_time_played),
            games_by_mode=games_by_mode,
            top_players=top_page.entries,
            top_scores=top_scores,
            countries=countries,
            daily_games=self._daily_activity(trend_rows),
        )

    @staticmethod
    def _daily_activity(rows) -> List[DailyActivity]:
        games = defaultdict(int)
        players = defaultdict(set)
        for created_at, player_id in rows:
            day = created_at.date()
            games[day] += 1
            players[day].add(player_id)
        return [DailyActivity(day, games[day], len(players[day])) for day in sorted(games)]

"""
StandingsCore: the entry point for score ingestion and rank queries.

Wires the database, the per-player locks and the services together. Callers
(request routing, the social graph, the profile service) hand in a player id
with a raw game result and read ranking views back; they never touch the
services directly.
"""

from typing import Callable, Iterable, List, Mapping, Optional, Tuple

from standings.config import Config
from standings.data_models.leaderboard import ConsistencyIssue, LeaderboardPage
from standings.data_models.results import AggregateSnapshot, ResultPage, SubmissionOutcome
from standings.data_models.stats import GlobalStatsReport, PlayerStatsReport
from standings.database.database import Database
from standings.services.aggregate_stats import AggregateStatsEngine
from standings.services.leaderboard_cache import LeaderboardCache
from standings.services.player_locks import PlayerLockManager
from standings.services.rank_query import RankQueryEngine
from standings.services.result_store import ResultStore
from standings.services.stats_report import StatsReportService
from standings.utils.exceptions import ValidationError
from standings.utils.logger import setup_logger
from standings.utils.partitions import FriendsPartition, PartitionSpec, parse_partition
from standings.utils.redis_utils import RedisUtils
from standings.utils.time_parser import utc_now
from standings.utils.validation import (
    parse_game_mode, validate_pagination, validate_submission, validate_timeout
)


class StandingsCore:
    """Score ingestion and rank maintenance facade."""

    def __init__(self, database_url: Optional[str] = None, clock: Callable = utc_now,
                 redis_client=None, use_redis: bool = True):
        self.logger = setup_logger(__name__)
        self.db = Database(database_url)
        self.clock = clock
        self.redis_client = redis_client
        self.use_redis = use_redis
        self._owns_redis_client = False

        self.locks: Optional[PlayerLockManager] = None
        self.results: Optional[ResultStore] = None
        self.leaderboard: Optional[LeaderboardCache] = None
        self.aggregates: Optional[AggregateStatsEngine] = None
        self.ranks: Optional[RankQueryEngine] = None
        self.stats: Optional[StatsReportService] = None

    async def initialize(self):
        """Open the database, connect Redis when configured and build the services."""
        Config.validate()
        await self.db.initialize()

        if self.redis_client is None and self.use_redis:
            self.redis_client = await RedisUtils.create_redis_client()
            self._owns_redis_client = self.redis_client is not None

        session_factory = self.db.session_factory
        self.locks = PlayerLockManager(self.redis_client)
        self.results = ResultStore(session_factory)
        self.leaderboard = LeaderboardCache(session_factory, self.results, self.locks)
        self.aggregates = AggregateStatsEngine(
            session_factory, self.results, self.leaderboard, self.locks, clock=self.clock
        )
        self.ranks = RankQueryEngine(session_factory, self.results, clock=self.clock)
        self.stats = StatsReportService(session_factory, self.results, self.ranks, clock=self.clock)

        self.logger.info(
            "Standings core ready"
            + (" with Redis player locks" if self.redis_client is not None else "")
        )

    async def close(self):
        if self._owns_redis_client and self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            self._owns_redis_client = False
        await self.db.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def submit_result(
        self,
        player_id: int,
        score: int,
        level: int,
        lines_cleared: int,
        time_played: int,
        game_mode: str = "classic",
        difficulty: str = "normal",
        detailed_stats: Optional[Mapping] = None,
        won: bool = False,
        timeout: Optional[float] = None,
    ) -> SubmissionOutcome:
        """
        Validate and record one game result.

        Raises:
            ValidationError: Malformed input; nothing was written
            NotFoundError: The player has no profile
            StorageError: The submission was rolled back as a whole
        """
        validate_timeout(timeout)
        submission = validate_submission(
            player_id, score, level, lines_cleared, time_played,
            game_mode=game_mode, difficulty=difficulty,
            detailed_stats=detailed_stats, won=won,
        )
        outcome = await self.aggregates.submit(submission, timeout=timeout)
        await self.ranks.invalidate()
        return outcome

    # ------------------------------------------------------------------
    # Rank queries
    # ------------------------------------------------------------------

    async def query_rank(self, player_id: int, partition: PartitionSpec = "global",
                         timeout: Optional[float] = None) -> Optional[int]:
        """1-based rank of a player in a partition, or None if unranked there."""
        validate_timeout(timeout)
        return await self.ranks.rank(player_id, parse_partition(partition, viewer_id=player_id), timeout=timeout)

    async def query_top_n(
        self,
        partition: PartitionSpec = "global",
        page: int = 1,
        page_size: Optional[int] = None,
        viewer_id: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LeaderboardPage:
        validate_timeout(timeout)
        return await self.ranks.top_n(
            parse_partition(partition, viewer_id=viewer_id),
            page=page, page_size=page_size, viewer_id=viewer_id, timeout=timeout,
        )

    async def query_friends(self, player_id: int, friend_ids: Iterable[int],
                            page: int = 1, page_size: Optional[int] = None) -> LeaderboardPage:
        """Leaderboard of a player and their accepted friends."""
        return await self.ranks.top_n(
            FriendsPartition(friend_ids, viewer_id=player_id),
            page=page, page_size=page_size, viewer_id=player_id,
        )

    # ------------------------------------------------------------------
    # Supplementary reads
    # ------------------------------------------------------------------

    async def get_aggregate(self, player_id: int) -> Optional[AggregateSnapshot]:
        return await self.aggregates.get_aggregate(player_id)

    async def player_history(self, player_id: int, page: int = 1, page_size: int = 20,
                             game_mode: Optional[str] = None) -> ResultPage:
        """A player's results, newest first, optionally for one game mode."""
        validate_pagination(page, page_size)
        mode = parse_game_mode(game_mode) if game_mode is not None else None
        return await self.results.list_player_results(player_id, page, page_size, game_mode=mode)

    async def player_stats(self, player_id: int, period: str = "all") -> PlayerStatsReport:
        return await self.stats.player_stats(player_id, period)

    async def global_stats(self, period: str = "all") -> GlobalStatsReport:
        return await self.stats.global_stats(period)

    async def compare_players(self, first_player_id: int,
                              second_player_id: int) -> Tuple[PlayerStatsReport, PlayerStatsReport]:
        if first_player_id == second_player_id:
            raise ValidationError('player_id', "cannot compare a player with themselves")
        return await self.stats.compare_players(first_player_id, second_player_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def verify_consistency(self, player_ids: Optional[Iterable[int]] = None) -> List[ConsistencyIssue]:
        return await self.leaderboard.verify_consistency(player_ids)

    async def rebuild_leaderboard(self, rebuild_aggregates: bool = True) -> int:
        """Recompute the leaderboard cache (and aggregates) from the ledger."""
        rebuilt = await self.leaderboard.rebuild_from_results(rebuild_aggregates)
        await self.ranks.invalidate()
        return rebuilt

"""
Rank query engine: positions and ranked pages, read-only.

All-time views read the leaderboard cache; windowed views aggregate the
result ledger over the window on the fly. A player's rank is the number of
players ahead of them plus one, so a single rank lookup is a count over the
indexed ordering rather than a scan of the whole population.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from standings.config import Config
from standings.data_models.leaderboard import LeaderboardPage, PlayerSummary, RankedEntry
from standings.database.models import LeaderboardEntry, Player
from standings.services.base import BaseService
from standings.services.result_store import ResultStore
from standings.utils.partitions import GlobalPartition, Partition
from standings.utils.ranking import RankingUtility
from standings.utils.time_parser import utc_now
from standings.utils.validation import validate_pagination

logger = logging.getLogger(__name__)


def _active_player(player_col):
    """Join condition to the player row; deactivated players are not ranked."""
    return and_(Player.id == player_col, Player.is_active.is_(True))


def player_summary(player: Player) -> PlayerSummary:
    return PlayerSummary(
        player_id=player.id,
        username=player.username,
        display_name=player.display_name or player.username,
        country=player.country,
        avatar=player.avatar,
        profile_level=player.profile_level or 1,
        ranking_points=player.ranking_points if player.ranking_points is not None else Config.STARTING_RANKING_POINTS,
    )


class RankQueryEngine(BaseService):
    """Service for leaderboard queries and ranking with caching."""

    def __init__(self, session_factory, result_store: ResultStore,
                 clock: Callable = utc_now, cache_ttl: Optional[float] = None):
        super().__init__(session_factory)
        self.result_store = result_store
        self.clock = clock
        # TTL cache for leaderboard pages
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = Config.LEADERBOARD_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self._cache_max_size = 500
        self._cache_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Page cache
    # ------------------------------------------------------------------

    async def _get_cached(self, key):
        if self._cache_ttl <= 0:
            return None
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache[key]

    async def _store_cached(self, key, page: LeaderboardPage):
        if self._cache_ttl <= 0:
            return
        async with self._cache_lock:
            self._cache[key] = page
            self._cache_timestamps[key] = time.time()

            # Enforce size limit by removing oldest entries
            if len(self._cache) > self._cache_max_size:
                sorted_keys = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for old_key, _ in sorted_keys[:len(self._cache) - self._cache_max_size]:
                    self._cache.pop(old_key, None)
                    self._cache_timestamps.pop(old_key, None)

    async def invalidate(self):
        """Drop every cached page; called after each committed submission."""
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()

    # ------------------------------------------------------------------
    # Public queries
    # ------------------------------------------------------------------

    async def rank(self, player_id: int, partition: Optional[Partition] = None,
                   timeout: Optional[float] = None) -> Optional[int]:
        """
        A player's 1-based position in a partition.

        Returns None when the player has no entry (or no result in the
        window), is deactivated or falls outside the partition.
        """
        partition = partition or GlobalPartition()
        if timeout is None:
            timeout = Config.QUERY_TIMEOUT_SECONDS
        return await self.run_with_timeout("rank query", self._rank(player_id, partition), timeout)

    async def top_n(
        self,
        partition: Optional[Partition] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        viewer_id: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LeaderboardPage:
        """Get a ranked page of a partition with caching."""
        partition = partition or GlobalPartition()
        if page_size is None:
            page_size = Config.DEFAULT_PAGE_SIZE
        validate_pagination(page, page_size)
        if timeout is None:
            timeout = Config.QUERY_TIMEOUT_SECONDS

        cache_key = (partition, page, page_size, viewer_id)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        leaderboard_page = await self.run_with_timeout(
            "leaderboard query", self._top_n(partition, page, page_size, viewer_id), timeout
        )
        await self._store_cached(cache_key, leaderboard_page)
        return leaderboard_page

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _source(self, partition: Partition):
        """Ranking source for a partition: (selectable, player_id, best_score, achieved_at, games)."""
        if partition.is_windowed:
            start, end = partition.bounds(self.clock())
            bests = ResultStore.windowed_bests(start, end)
            return bests, bests.c.player_id, bests.c.best_score, bests.c.achieved_at, bests.c.games
        table = LeaderboardEntry.__table__
        return table, table.c.player_id, table.c.best_score, table.c.achieved_at, None

    async def _rank(self, player_id: int, partition: Partition) -> Optional[int]:
        async with self.get_session() as session:
            return await self._rank_in_session(session, player_id, partition)

    async def _rank_in_session(self, session: AsyncSession, player_id: int,
                               partition: Partition) -> Optional[int]:
        source, player_col, score_col, achieved_col, _ = self._source(partition)

        own = (await session.execute(
            select(score_col, achieved_col, Player.country)
            .select_from(source)
            .join(Player, _active_player(player_col))
            .where(player_col == player_id)
        )).first()
        if own is None:
            return None
        best_score, achieved_at, country = own
        if not partition.contains(player_id, country):
            return None

        ahead_query = (
            select(func.count())
            .select_from(source)
            .join(Player, _active_player(player_col))
            .where(RankingUtility.outranks(
                score_col, achieved_col, player_col, best_score, achieved_at, player_id
            ))
        )
        ahead = await session.scalar(partition.apply(ahead_query))
        return (ahead or 0) + 1

    async def _top_n(self, partition: Partition, page: int, page_size: int,
                     viewer_id: Optional[int]) -> LeaderboardPage:
        source, player_col, score_col, achieved_col, games_col = self._source(partition)
        offset = (page - 1) * page_size

        async with self.get_session() as session:
            count_query = select(func.count()).select_from(source).join(Player, _active_player(player_col))
            total_count = await session.scalar(partition.apply(count_query)) or 0

            columns = [Player, score_col, achieved_col]
            if games_col is not None:
                columns.append(games_col)
            else:
                table = LeaderboardEntry.__table__
                columns.extend([table.c.level, table.c.lines_cleared, table.c.game_mode])

            page_query = (
                select(*columns)
                .select_from(source)
                .join(Player, _active_player(player_col))
                .order_by(*RankingUtility.order_by(score_col, achieved_col, player_col))
                .limit(page_size)
                .offset(offset)
            )
            rows = await session.execute(partition.apply(page_query))

            entries = []
            for index, row in enumerate(rows):
                player = row[0]
                common = dict(
                    rank=offset + index + 1,
                    player=player_summary(player),
                    best_score=row[1],
                    achieved_at=row[2],
                    is_viewer=viewer_id is not None and player.id == viewer_id,
                )
                if games_col is not None:
                    entries.append(RankedEntry(games_in_window=row[3], **common))
                else:
                    entries.append(RankedEntry(
                        level=row[3], lines_cleared=row[4], game_mode=row[5], **common
                    ))

            viewer_rank = None
            if viewer_id is not None:
                viewer_rank = await self._rank_in_session(session, viewer_id, partition)

        return LeaderboardPage(
            entries=entries,
            partition=partition.label,
            current_page=page,
            page_size=page_size,
            total_pages=RankingUtility.total_pages(total_count, page_size),
            total_entries=total_count,
            viewer_rank=viewer_rank,
        )

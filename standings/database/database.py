from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from standings.config import Config
from standings.database.models import Base, Player
from standings.utils.logger import setup_logger

# Seconds an SQLite writer waits for the file lock before failing
SQLITE_BUSY_TIMEOUT = 30

ASYNC_DRIVERS = {
    'sqlite': 'sqlite+aiosqlite',
}


def async_database_url(database_url: str) -> str:
    """Swap a plain dialect URL for its async driver; URLs naming a driver are kept."""
    url = make_url(database_url)
    if '+' not in url.drivername and url.drivername in ASYNC_DRIVERS:
        url = url.set(drivername=ASYNC_DRIVERS[url.drivername])
    return url.render_as_string(hide_password=False)


class Database:
    """Engine and session factory shared by every service."""

    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.database_url).get_backend_name() == 'sqlite'

    async def initialize(self):
        """Create the engine and any missing tables."""
        url = async_database_url(self.database_url)
        self.logger.info(f"Initializing database ({make_url(url).get_backend_name()})...")

        engine_options = {'echo': Config.DEBUG}
        if self.is_sqlite:
            # Writers queue on the file lock instead of failing with "database is locked"
            engine_options['connect_args'] = {'timeout': SQLITE_BUSY_TIMEOUT}
        else:
            engine_options['pool_pre_ping'] = True

        self.engine = create_async_engine(url, **engine_options)
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database ready")

    @asynccontextmanager
    async def get_session(self):
        """A plain session; the caller commits."""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self):
        """A session inside one transaction, committed on exit or rolled back on error."""
        async with self.async_session() as session:
            async with session.begin():
                yield session

    async def close(self):
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.logger.info("Database connection closed")

    # Profile rows belong to the profile service; these helpers exist for
    # seeding and tests.

    async def create_player(
        self,
        username: str,
        display_name: Optional[str] = None,
        country: Optional[str] = None,
        avatar: Optional[str] = None,
        ranking_points: Optional[int] = None,
    ) -> Player:
        async with self.transaction() as session:
            player = Player(
                username=username,
                display_name=display_name or username,
                country=country.upper() if country else None,
                avatar=avatar,
                ranking_points=Config.STARTING_RANKING_POINTS if ranking_points is None else ranking_points,
                is_active=True,
            )
            session.add(player)
            await session.flush()
        self.logger.debug(f"Created player {player.id} ({username})")
        return player

    async def get_player(self, player_id: int) -> Optional[Player]:
        async with self.get_session() as session:
            return await session.get(Player, player_id)

    async def get_player_by_username(self, username: str) -> Optional[Player]:
        async with self.get_session() as session:
            return await session.scalar(select(Player).where(Player.username == username))

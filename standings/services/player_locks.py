"""
Per-player serialization of submissions.

Submissions for one player run one at a time; different players never wait
on each other here. Inside one process an ``asyncio.Lock`` per player is
enough. When several processes share the database and ``REDIS_URL`` is set,
a Redis lock named ``standings:player_lock:<id>`` is taken as well.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from redis.exceptions import LockError, RedisError

from standings.config import Config
from standings.constants import LockConstants
from standings.utils.exceptions import StorageError

logger = logging.getLogger(__name__)


class _LockSlot:
    __slots__ = ('lock', 'holders')

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class PlayerLockManager:
    """Registry of per-player locks, dropping a player's lock once unused."""

    def __init__(self, redis_client=None, lock_ttl: Optional[float] = None):
        self.redis_client = redis_client
        self.lock_ttl = lock_ttl if lock_ttl is not None else Config.PLAYER_LOCK_TTL_SECONDS
        self._slots: Dict[int, _LockSlot] = {}
        self._registry_lock = asyncio.Lock()

    @property
    def active_players(self) -> int:
        return len(self._slots)

    async def _checkout(self, player_id: int) -> _LockSlot:
        async with self._registry_lock:
            slot = self._slots.get(player_id)
            if slot is None:
                slot = _LockSlot()
                self._slots[player_id] = slot
            slot.holders += 1
            return slot

    async def _release(self, player_id: int, slot: _LockSlot) -> None:
        async with self._registry_lock:
            slot.holders -= 1
            if slot.holders == 0 and self._slots.get(player_id) is slot:
                del self._slots[player_id]

    @asynccontextmanager
    async def hold(self, player_id: int):
        """Hold the player's lock for the duration of the block."""
        slot = await self._checkout(player_id)
        try:
            async with slot.lock:
                if self.redis_client is None:
                    yield
                else:
                    async with self._redis_lock(player_id):
                        yield
        finally:
            await self._release(player_id, slot)

    @asynccontextmanager
    async def _redis_lock(self, player_id: int):
        lock = self.redis_client.lock(
            f"{LockConstants.REDIS_LOCK_PREFIX}{player_id}",
            timeout=self.lock_ttl,
        )
        try:
            await lock.acquire()
        except RedisError as e:
            logger.error(f"Failed to acquire Redis lock for player {player_id}: {e}")
            raise StorageError("player lock", str(e))
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while held; the versioned aggregate update still guards the write
                logger.warning(f"Redis lock for player {player_id} expired before release: {e}")
            except RedisError as e:
                # The block has already finished; the TTL frees the key
                logger.warning(f"Failed to release Redis lock for player {player_id}: {e}")

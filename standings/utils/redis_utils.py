"""
Redis connection helpers.

Redis is optional: without REDIS_URL the core serializes submissions with
in-process locks only, which is correct for a single worker process. With
several workers sharing one database, every worker must point at the same
Redis so the per-player locks agree.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.exceptions import RedisError

from standings.config import Config

logger = logging.getLogger(__name__)

LOCAL_HOSTS = {'localhost', '127.0.0.1', '::1'}


class RedisUtils:
    """Redis URL checks and client construction."""

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        """The configured Redis URL, or None if unset or rejected."""
        redis_url = Config.REDIS_URL
        if not redis_url:
            logger.debug("REDIS_URL not set; cross-process player locks disabled")
            return None

        if RedisUtils._validate_redis_security(redis_url):
            return redis_url

        logger.error("REDIS_URL rejected; cross-process player locks disabled")
        return None

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """
        Production URLs need TLS (``rediss://``) and a password. In debug
        mode anything parseable is accepted, with a warning for plain
        connections to other hosts.
        """
        parsed = urlparse(redis_url)
        if parsed.scheme not in ('redis', 'rediss') or not parsed.hostname:
            logger.error(f"Not a Redis URL: {parsed.scheme or '?'}://{parsed.hostname or '?'}")
            return False

        if not Config.DEBUG:
            if parsed.scheme != 'rediss':
                logger.error("Production Redis must use rediss:// (TLS) protocol")
                return False
            if not parsed.password:
                logger.error("Production Redis must include authentication credentials")
                return False
            return True

        if parsed.scheme == 'redis' and parsed.hostname not in LOCAL_HOSTS:
            logger.warning(f"Plain-text Redis connection to {parsed.hostname} in debug mode")
        return True

    @staticmethod
    async def create_redis_client() -> Optional[redis.Redis]:
        """
        Connect and ping.

        Returns None when Redis is not configured. A configured but
        unreachable Redis raises, since running without the shared lock
        would let workers race on the same player.
        """
        redis_url = RedisUtils.get_secure_redis_url()
        if not redis_url:
            return None

        client = redis.from_url(
            redis_url,
            socket_connect_timeout=Config.QUERY_TIMEOUT_SECONDS,
            socket_timeout=Config.QUERY_TIMEOUT_SECONDS,
        )
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            logger.error(f"Failed to connect to Redis at {urlparse(redis_url).hostname}: {e}")
            raise
        logger.info("Connected to Redis for player locks")
        return client

"""
Base service class for the standings core.

Every service shares one async session factory. Sessions opened here commit
when the block exits cleanly and roll back otherwise; services that need an
explicit transaction open ``session.begin()`` inside.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from standings.utils.exceptions import SubmissionTimeoutError

logger = logging.getLogger(__name__)

# Write conflicts and lock waits that a fresh attempt can get past
RETRYABLE_ERRORS = (IntegrityError, StaleDataError, OperationalError)


def retry_delay(attempt: int) -> float:
    """Exponential backoff capped at one second."""
    return min(0.1 * (2 ** attempt), 1.0)


class BaseService:
    """Holds the session factory and the session, retry and deadline helpers."""

    def __init__(self, session_factory):
        """
        Args:
            session_factory: Async session factory from Database
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """Reuse the caller's session, or open (and commit) a new one."""
        if session is not None:
            yield session
            return
        async with self.get_session() as new_session:
            yield new_session

    async def execute_with_retry(self, func: Callable[[], Awaitable], max_retries: int = 3) -> Any:
        """Run ``func`` again after write conflicts; other errors propagate at once."""
        for attempt in range(max_retries):
            try:
                return await func()
            except RETRYABLE_ERRORS as e:
                if attempt == max_retries - 1:
                    raise
                logger.warning(f"Retry {attempt + 1}/{max_retries - 1} for {func.__name__}: {e}")
                await asyncio.sleep(retry_delay(attempt))

    async def run_with_timeout(self, operation: str, coro: Awaitable, timeout: Optional[float]) -> Any:
        """
        Await ``coro`` under a deadline.

        Cancellation unwinds any open ``session.begin()`` block, so a timed
        out write is rolled back rather than partially applied.
        """
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{operation} timed out after {timeout:.2f}s")
            raise SubmissionTimeoutError(operation, timeout)

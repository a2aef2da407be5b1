"""
asyncpg pool for the alert store of record.

The pool is created once per process by the CLI or the API dependency layer
and handed to ``AlertRepository``. Every connection is tagged with the
``fleetwatch`` application name so alert-store sessions are identifiable in
``pg_stat_activity``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from fleetwatch.config.settings import get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "fleetwatch"


class Database:
    """
    Connection pool wrapper used by AlertRepository.

    Usage:
        db = Database()
        await db.connect()
        await AlertRepository(db).ensure_schema()
        ...
        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        """
        Configure the pool. Unset arguments fall back to settings.

        Args:
            database_url: PostgreSQL connection URL
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Per-statement timeout in seconds
        """
        settings = get_settings()
        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout or settings.db_command_timeout
        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """
        Create the connection pool. A second call is a no-op.

        Raises:
            OSError: The server is unreachable.
            asyncpg.PostgresError: The server refused the connection.
        """
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings={"application_name": APPLICATION_NAME},
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Alert store unreachable: %s", e)
            raise
        logger.info(
            "Alert store pool ready (%d-%d connections)", self._min_size, self._max_size,
        )

    async def close(self) -> None:
        """Close the connection pool, if open."""
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("Alert store pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising RuntimeError if not connected."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection and open a transaction on it.

        Commits when the block exits normally and rolls back on an exception.

        Usage:
            async with db.transaction() as conn:
                await conn.execute("...")
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """
        Run a query and return all rows.

        Args:
            query: SQL with $1-style placeholders
            *args: Placeholder values

        Returns:
            Matching records, possibly empty.
        """
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Run a query and return its first row, or None."""
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Run a query and return the first column of its first row."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if ``SELECT 1`` round-trips, False if the pool is closed or
            the query fails.
        """
        if self._pool is None:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning("Alert store health check failed: %s", e)
            return False

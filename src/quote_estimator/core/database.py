"""Database connection management with asyncpg and connection pooling.

The ``Database`` handle is created by the caller and passed explicitly into
every service; there is no module-level connection.
"""

import contextlib
import json
import time
from collections.abc import AsyncIterator
from typing import Any

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import Settings, get_settings
from .logging_utils import get_logger

logger = get_logger(__name__)


@frozen
class PoolMetrics:
    """Immutable pool metrics snapshot."""

    size: int = field()
    free_size: int = field()
    min_size: int = field()
    max_size: int = field()
    queries_total: int = field()
    queries_slow: int = field()
    connection_errors: int = field()


class Database:
    """Connection pool wrapper exposing the narrow query surface services use."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize database manager."""
        self._pool: asyncpg.Pool | None = None
        self._settings = settings or get_settings()
        self._metrics = {
            "queries_total": 0,
            "queries_slow": 0,
            "connection_errors": 0,
        }

    @beartype
    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        """Register JSON codecs so jsonb columns round-trip as Python objects."""
        for type_name in ("jsonb", "json"):
            await conn.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        self._pool = await asyncpg.create_pool(
            self._settings.database_url,
            min_size=self._settings.database_pool_min,
            max_size=self._settings.database_pool_max,
            command_timeout=self._settings.database_command_timeout,
            init=self._init_connection,
        )
        logger.info(
            "Database pool ready (min=%d, max=%d)",
            self._settings.database_pool_min,
            self._settings.database_pool_max,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
        self._pool = None

    @contextlib.asynccontextmanager
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection with query timing."""
        if self._pool is None:
            raise RuntimeError("Database not connected")

        timeout = timeout or self._settings.database_pool_timeout
        start_time = time.perf_counter()
        try:
            async with self._pool.acquire(timeout=timeout) as conn:
                self._metrics["queries_total"] += 1
                yield conn
        except (asyncpg.PostgresConnectionError, OSError):
            self._metrics["connection_errors"] += 1
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > 1000:  # 1 second threshold
                self._metrics["queries_slow"] += 1
                logger.warning("Slow database operation: %.2fms", duration_ms)

    @beartype
    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query without returning results."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @beartype
    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all results."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @beartype
    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch a single row."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @beartype
    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Create a database transaction context.

        Statements that must commit together have to run on the yielded
        connection, not through ``fetch``/``execute`` on this handle.
        """
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    @beartype
    def get_pool_stats(self) -> PoolMetrics:
        """Get pool statistics."""
        if self._pool is None:
            return PoolMetrics(
                size=0,
                free_size=0,
                min_size=0,
                max_size=0,
                queries_total=self._metrics["queries_total"],
                queries_slow=self._metrics["queries_slow"],
                connection_errors=self._metrics["connection_errors"],
            )
        return PoolMetrics(
            size=self._pool.get_size(),
            free_size=self._pool.get_free_size(),
            min_size=self._pool.get_min_size(),
            max_size=self._pool.get_max_size(),
            queries_total=self._metrics["queries_total"],
            queries_slow=self._metrics["queries_slow"],
            connection_errors=self._metrics["connection_errors"],
        )

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._pool is not None

"""
Database connection provider.

Owns a single psycopg async connection pool and hands out query handles
scoped to a table. Repositories receive `database.query_builder` at
construction time; nothing else in the package reaches for a global.

A process-wide instance is available from get_database(). Open it once at
startup:

    database = get_database()
    await database.connect(config.database)
    users = UserRepository(database.query_builder)

Handles bound to a transaction (see Database.transaction()) run on the
caller's connection and are committed or rolled back with it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from rowkeeper.config import DatabaseConfig
from rowkeeper.errors import DatabaseConnectionError
from rowkeeper.query import QueryHandle
from rowkeeper.query.builder import COUNT, SELECT

logger = logging.getLogger(__name__)


class Database:
    """Connection pool plus the query-building entry point."""

    def __init__(self):
        self._pool: AsyncConnectionPool | None = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._pool is not None

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self, config: DatabaseConfig) -> "Database":
        """
        Open the connection pool, or reuse it if already open.

        Args:
            config: Host, credentials, database name and pool bounds

        Returns:
            self, so the call can be chained at startup

        Raises:
            DatabaseConnectionError: the config is incomplete or the pool
                could not reach the database within connect_timeout
        """
        async with self._lock:
            if self._pool is not None:
                return self

            missing = config.missing_fields()
            if missing:
                raise DatabaseConnectionError(f"Incomplete database config, missing: {', '.join(missing)}")
            if config.pool_max < 1 or not 0 <= config.pool_min <= config.pool_max:
                raise DatabaseConnectionError(
                    f"Invalid pool bounds: min={config.pool_min}, max={config.pool_max}"
                )

            try:
                conninfo = make_conninfo(
                    host=config.host,
                    port=config.port,
                    user=config.user,
                    password=config.password,
                    dbname=config.database,
                )
                pool = AsyncConnectionPool(
                    conninfo,
                    min_size=config.pool_min,
                    max_size=config.pool_max,
                    kwargs={"row_factory": dict_row},
                    open=False,
                )
                await pool.open(wait=True, timeout=config.connect_timeout)
            except (psycopg.Error, PoolTimeout) as e:
                raise DatabaseConnectionError(
                    f"Could not connect to {config.host}:{config.port}/{config.database}: {e}"
                ) from e

            self._pool = pool
            logger.info(
                "Connected to %s:%s/%s (pool %d-%d)",
                config.host,
                config.port,
                config.database,
                config.pool_min,
                config.pool_max,
            )
            return self

    async def close(self) -> None:
        """Close the pool. A later connect() opens a new one."""
        async with self._lock:
            if self._pool is None:
                return
            await self._pool.close()
            self._pool = None
            logger.info("Connection pool closed")

    @asynccontextmanager
    async def transaction(self):
        """
        Context manager yielding a pooled connection inside a transaction.

        Commits on successful exit, rolls back on exception. Pass the
        connection to QueryHandle.transacting() to run statements in it.

        Usage:
            async with database.transaction() as tx:
                await repo.delete_in("code", codes).transacting(tx)
                await repo.insert_many(rows).transacting(tx)
        """
        pool = self._require_pool()
        async with pool.connection() as conn:
            async with conn.transaction():
                yield conn

    # =========================================================================
    # Query Helpers
    # =========================================================================

    def query_builder(self, table: str) -> QueryHandle:
        """Fresh, unexecuted handle scoped to table. No I/O happens here."""
        return QueryHandle(table, self)

    async def run(self, handle: QueryHandle) -> Any:
        """
        Compile and execute a handle.

        Returns:
            list of dicts for selects, a dict or None for first(), an int
            for counts, the affected row count for writes
        """
        if handle.is_noop:
            return 0

        query, params = handle.compile()

        if handle.connection is not None:
            return await self._execute(handle.connection, handle, query, params)

        pool = self._require_pool()
        async with pool.connection() as conn:
            return await self._execute(conn, handle, query, params)

    async def _execute(self, conn, handle: QueryHandle, query, params: list[Any]) -> Any:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s %r", query.as_string(conn), params)

        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params)

            if handle.action == SELECT:
                if handle.single:
                    return await cur.fetchone()
                return await cur.fetchall()

            if handle.action == COUNT:
                if handle.group_column:
                    return await cur.fetchall()
                row = await cur.fetchone()
                return int(row["count"]) if row else 0

            return cur.rowcount

    def _require_pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise DatabaseConnectionError("Database is not connected; call connect() first")
        return self._pool


_database: Database | None = None


def get_database() -> Database:
    """The process-wide Database instance."""
    global _database
    if _database is None:
        _database = Database()
    return _database

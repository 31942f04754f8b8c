"""
Database connection provider for clinic-orm.

Owns the process-wide psycopg ``AsyncConnectionPool`` and exposes checkout,
checkin, and a direct execution path for statements that run outside a
transaction. Pool connections are opened in autocommit mode; transactions are
issued explicitly by ``clinic_orm.orm.transaction``.

Includes retry logic for transient failures while opening the pool using
tenacity.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg.types.json import JsonbDumper
from psycopg_pool import AsyncConnectionPool, PoolTimeout, TooManyRequests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from clinic_orm.config import Settings, get_settings
from clinic_orm.errors import ConfigurationError, NotInitializedError, PoolExhaustionError
from clinic_orm.utils.logging import get_logger

log = get_logger(__name__)

Row = Dict[str, Any]


@dataclass
class StatementResult:
    """Rows returned by a statement (if any) and the driver's affected-row count."""

    rows: List[Row] = field(default_factory=list)
    rowcount: int = 0


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


async def run_statement(
    conn: AsyncConnection, sql: str, params: Optional[Sequence[Any]] = None
) -> StatementResult:
    """
    Execute one statement on ``conn`` and collect its result.

    Parameters
    ----------
    conn : AsyncConnection
        A checked-out connection (transactional or not).
    sql : str
        Statement text using ``%s`` placeholders.
    params : Sequence, optional
        Positional bindings. ``None`` sends the text without placeholder
        processing (used for BEGIN/SAVEPOINT and migration scripts).

    Returns
    -------
    StatementResult
        Fetched rows as dicts (empty for statements without a result set) and
        the affected-row count.
    """
    start = time.perf_counter()
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(sql, params)
        rows = await cur.fetchall() if cur.description is not None else []
        rowcount = cur.rowcount
    log.debug(
        "statement executed",
        extra={
            "sql": sql,
            "rowcount": rowcount,
            "duration_ms": round((time.perf_counter() - start) * 1000, 3),
        },
    )
    return StatementResult(rows=list(rows), rowcount=rowcount)


async def _configure_connection(conn: AsyncConnection) -> None:
    """
    Pool hook: autocommit mode (transactions are explicit) and dicts bound as jsonb.
    """
    await conn.set_autocommit(True)
    conn.adapters.register_dumper(dict, JsonbDumper)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, OSError)),
    reraise=True,
)
async def _open_pool(settings: Settings) -> AsyncConnectionPool:
    """
    Create and open a pool, retrying transient connection failures.

    A pool whose first connections cannot be established within
    ``db_pool_timeout`` is closed by psycopg_pool, so every attempt builds a
    fresh instance.
    """
    pool = AsyncConnectionPool(
        conninfo=build_dsn(settings),
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        max_waiting=settings.db_pool_max_waiting,
        timeout=settings.db_pool_timeout,
        kwargs={"keepalives": 1 if settings.db_keepalive else 0},
        configure=_configure_connection,
        name="clinic_orm",
        open=False,
    )
    await pool.open(wait=True, timeout=settings.db_pool_timeout)
    return pool


class ConnectionProvider:
    """
    Lifecycle manager for the pooled set of database connections.

    Every connection handed out by ``acquire_connection`` must be given back
    through ``release_connection`` exactly once; ``connection()`` pairs the
    two for callers that can use a context manager.
    """

    def __init__(self) -> None:
        self._pool: Optional[AsyncConnectionPool] = None
        self._checked_out = 0

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    @property
    def checked_out(self) -> int:
        """Connections currently checked out through this provider."""
        return self._checked_out

    async def initialize(self, settings: Optional[Settings] = None) -> None:
        """
        Create the pool exactly once.

        Raises
        ------
        ConfigurationError
            If the pool is already initialized.
        """
        if self._pool is not None:
            raise ConfigurationError("Database pool already initialized")

        settings = settings or get_settings()
        self._pool = await _open_pool(settings)
        log.info(
            "database connection pool initialized",
            extra={
                "db_host": settings.db_host,
                "db_name": settings.db_name,
                "pool_max_size": settings.db_pool_max_size,
            },
        )

    def get_pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise NotInitializedError(
                "Database pool not initialized. Call initialize() first."
            )
        return self._pool

    async def acquire_connection(self) -> AsyncConnection:
        """
        Check out one connection, waiting while the pool is saturated.

        Raises
        ------
        PoolExhaustionError
            If the wait queue is full or no connection frees up in time.
        """
        pool = self.get_pool()
        try:
            conn = await pool.getconn()
        except TooManyRequests as exc:
            raise PoolExhaustionError(f"Connection wait queue is full: {exc}") from exc
        except PoolTimeout as exc:
            raise PoolExhaustionError(f"No connection available: {exc}") from exc
        self._checked_out += 1
        return conn

    async def release_connection(self, conn: AsyncConnection) -> None:
        try:
            await self.get_pool().putconn(conn)
        finally:
            self._checked_out -= 1

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        """
        Context manager for obtaining a connection from the pool.

        Example
        -------
            async with provider.connection() as conn:
                await run_statement(conn, "SELECT 1")
        """
        conn = await self.acquire_connection()
        try:
            yield conn
        finally:
            await self.release_connection(conn)

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> StatementResult:
        """Run one statement on a pooled connection (auto checkout/checkin)."""
        async with self.connection() as conn:
            return await run_statement(conn, sql, params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        """Run one non-transactional read and return its rows."""
        result = await self.execute(sql, params)
        return result.rows

    async def close(self) -> None:
        """Drain and close the pool. Safe to call more than once."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        log.info("database connection pool closed")

    async def health_check(self) -> bool:
        """Run a trivial statement; never raises."""
        try:
            await self.query("SELECT 1")
            return True
        except Exception as exc:
            log.error("database health check failed", extra={"error": str(exc)})
            return False


@lru_cache(maxsize=1)
def get_provider() -> ConnectionProvider:
    """
    Process-wide default provider used when no explicit provider is injected.
    """
    return ConnectionProvider()


__all__ = [
    "ConnectionProvider",
    "Row",
    "StatementResult",
    "build_dsn",
    "get_provider",
    "run_statement",
]

"""
Pytest configuration for clinic-orm.

Provides fixtures for:
- Settings for unit and integration tests
- In-process fake pools/connections standing in for psycopg_pool
- Database connection management and schema setup for integration tests
"""

from __future__ import annotations

import asyncio
import itertools
import os
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Generator, List, Optional, Sequence, Tuple

import psycopg
import pytest
import pytest_asyncio

from clinic_orm.config import Settings
from clinic_orm.infrastructure import connection as connection_module
from clinic_orm.infrastructure.connection import ConnectionProvider

Responder = Callable[[str, Optional[Sequence[Any]]], Any]

INIT_SQL = Path(__file__).parent.parent / "db" / "init.sql"
TABLES = ("role_permissions", "permissions", "login_attempts", "audit_logs", "users", "roles")


def default_responder(sql: str, params: Optional[Sequence[Any]]) -> Any:
    """
    Canned outcome for a statement.

    A list is returned as the result set, an int as the affected-row count,
    an exception instance is raised, ``None`` means no result set.
    """
    del params
    if "RETURNING" in sql:
        return [{"id": 1}]
    keyword = sql.lstrip().split(" ", 1)[0].upper()
    if keyword == "SELECT":
        return []
    if keyword in ("INSERT", "UPDATE", "DELETE"):
        return 1
    return None


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._rows: List[dict] = []
        self.description: Optional[List[Tuple[str]]] = None
        self.rowcount = -1

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        del exc_type, exc, tb
        return False

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        self._conn.statements.append((sql, params))
        # let other tasks interleave like a real network round-trip
        await asyncio.sleep(0)
        outcome = self._conn.responder(sql, params)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, list):
            self._rows = [dict(row) for row in outcome]
            self.description = [("column",)]
            self.rowcount = len(outcome)
        elif isinstance(outcome, int):
            self.rowcount = outcome

    async def fetchall(self) -> List[dict]:
        return self._rows


class FakeConnection:
    """Records every statement; answers through its own or its pool's responder."""

    _ids = itertools.count(1)

    def __init__(
        self, pool: Optional["FakePool"] = None, responder: Optional[Responder] = None
    ) -> None:
        self.id = next(self._ids)
        self.pool = pool
        self._responder = responder
        self.statements: List[Tuple[str, Optional[Sequence[Any]]]] = []

    @property
    def responder(self) -> Responder:
        if self._responder is not None:
            return self._responder
        if self.pool is not None:
            return self.pool.responder
        return default_responder

    @property
    def sql(self) -> List[str]:
        return [statement for statement, _ in self.statements]

    def cursor(self, row_factory: Any = None) -> FakeCursor:
        del row_factory
        return FakeCursor(self)


class FakePool:
    """
    Minimal stand-in for ``psycopg_pool.AsyncConnectionPool``.

    Checkouts beyond ``max_size`` wait like the real pool; ``getconn_error``
    makes the next checkouts fail with the given exception.
    """

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.max_size = kwargs.get("max_size", 10)
        self._slots = asyncio.Semaphore(self.max_size)
        self._idle: List[FakeConnection] = []
        self.connections: List[FakeConnection] = []
        self.responder: Responder = default_responder
        self.getconn_error: Optional[BaseException] = None
        self.in_use = 0
        self.max_in_use = 0
        self.opened = False
        self.closed = False

    async def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        del wait, timeout
        self.opened = True

    async def getconn(self, timeout: Optional[float] = None) -> FakeConnection:
        del timeout
        if self.getconn_error is not None:
            raise self.getconn_error
        await self._slots.acquire()
        if self._idle:
            conn = self._idle.pop()
        else:
            conn = FakeConnection(self)
            self.connections.append(conn)
        self.in_use += 1
        self.max_in_use = max(self.max_in_use, self.in_use)
        return conn

    async def putconn(self, conn: FakeConnection) -> None:
        self.in_use -= 1
        self._idle.append(conn)
        self._slots.release()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def unit_settings() -> Settings:
    return Settings(
        db_host="db.test",
        db_port=5432,
        db_user="clinic",
        db_password="secret",
        db_name="clinic_test",
        db_pool_min_size=1,
        db_pool_max_size=3,
        db_pool_timeout=1.0,
        tx_retries=3,
        tx_backoff_ms=0,
    )


@pytest.fixture
def fake_pools(monkeypatch: pytest.MonkeyPatch) -> List[FakePool]:
    """
    Replace the pool class used by the provider; collects every pool created.
    """
    created: List[FakePool] = []

    def factory(*args: Any, **kwargs: Any) -> FakePool:
        del args
        pool = FakePool(**kwargs)
        created.append(pool)
        return pool

    monkeypatch.setattr(connection_module, "AsyncConnectionPool", factory)
    return created


@pytest_asyncio.fixture
async def provider(
    fake_pools: List[FakePool], unit_settings: Settings
) -> AsyncIterator[ConnectionProvider]:
    provider = ConnectionProvider()
    await provider.initialize(unit_settings)
    yield provider
    await provider.close()


@pytest.fixture
def pool(provider: ConnectionProvider) -> FakePool:
    return provider.get_pool()  # type: ignore[return-value]


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    """Factory for standalone connections (not owned by any pool)."""

    def factory(responder: Optional[Responder] = None) -> FakeConnection:
        return FakeConnection(responder=responder)

    return factory


# --- Integration fixtures ---


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "dental_clinic_mis"),
        db_pool_min_size=1,
        db_pool_max_size=4,
        db_pool_timeout=5.0,
        tx_backoff_ms=10,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return connection_module.build_dsn(test_settings)


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the schema exists by running db/init.sql (idempotent).
    """
    with db_connection.cursor() as cur:
        cur.execute(INIT_SQL.read_text(encoding="utf-8"))
    db_connection.commit()
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty every table before and after each test function.
    """

    def truncate() -> None:
        with db_connection.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE;")
        db_connection.commit()

    truncate()
    yield
    truncate()


@pytest_asyncio.fixture
async def db_provider(
    test_settings: Settings, clean_tables
) -> AsyncIterator[ConnectionProvider]:
    """
    A provider backed by a real pool against the test database.
    """
    provider = ConnectionProvider()
    await provider.initialize(test_settings)
    yield provider
    await provider.close()

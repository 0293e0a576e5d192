"""
Pytest configuration for the jewelry inventory.

Provides fixtures for:
- A fake async connection pool that records every statement (unit tests)
- Settings tuned for tests
- Database connection, schema and table cleanup for integration tests
"""

from __future__ import annotations

import inspect
import itertools
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Generator, List, Optional, Tuple

import psycopg
import pytest

from jewelry_inventory.config import Settings

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "init.sql"
TABLES = "jewelry_stones, jewelry_pieces, materials, categories, vendors, users"

_INSERT = re.compile(r"^INSERT INTO (\w+) \((.*?)\) VALUES")


# ---------------------------------------------------------------------------
# Fake pool harness
# ---------------------------------------------------------------------------


def echo_insert(sql: str, params: Tuple[Any, ...], new_id: int) -> dict:
    """Row an INSERT ... RETURNING * would give back: the bound columns plus an id."""
    match = _INSERT.match(sql)
    columns = [c.strip() for c in match.group(2).split(",")] if match else []
    return {"id": new_id, **dict(zip(columns, params))}


class ScriptedResponder:
    """
    Answers statements by SQL fragment; the first matching rule wins.

    A rule's result may be rows (list of dicts), a row count (int), an
    exception instance to raise, or a callable ``(sql, params)`` returning any
    of those (or a coroutine resolving to them). Unmatched INSERTs echo the
    inserted row with a fresh id; other unmatched statements return no rows.
    """

    def __init__(self) -> None:
        self.rules: List[Tuple[str, Any]] = []
        self._ids = itertools.count(1)

    def on(self, fragment: str, result: Any) -> "ScriptedResponder":
        self.rules.append((fragment, result))
        return self

    async def __call__(self, sql: str, params: Tuple[Any, ...]) -> Any:
        for fragment, result in self.rules:
            if fragment in sql:
                value = result(sql, params) if callable(result) else result
                if inspect.isawaitable(value):
                    value = await value
                if isinstance(value, BaseException):
                    raise value
                return value
        if sql.startswith("INSERT INTO"):
            return [echo_insert(sql, params, next(self._ids))]
        if sql.startswith("DELETE"):
            return 0
        return []


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._rows: List[dict] = []
        self.rowcount = -1

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    async def execute(self, sql: str, params: Any = ()) -> None:
        params = tuple(params or ())
        self._conn.pool.record(("execute", sql, params), self._conn)
        result = await self._conn.pool.responder(sql, params)
        if isinstance(result, int):
            self._rows, self.rowcount = [], result
        else:
            self._rows = [dict(row) for row in (result or [])]
            self.rowcount = len(self._rows)

    async def fetchall(self) -> List[dict]:
        return list(self._rows)

    async def fetchone(self) -> Optional[dict]:
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, pool: "FakePool", number: int) -> None:
        self.pool = pool
        self.number = number
        self.commits = 0
        self.rollbacks = 0
        self.isolation_levels: List[Any] = []

    def cursor(self, row_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)

    async def execute(self, sql: str, params: Any = ()) -> None:
        self.pool.record(("execute", sql, tuple(params or ())), self)

    async def commit(self) -> None:
        self.commits += 1
        self.pool.record(("commit",), self)
        if self.pool.fail_commit is not None:
            raise self.pool.fail_commit

    async def rollback(self) -> None:
        self.rollbacks += 1
        self.pool.record(("rollback",), self)
        if self.pool.fail_rollback is not None:
            raise self.pool.fail_rollback

    async def set_isolation_level(self, level: Any) -> None:
        self.isolation_levels.append(level)


class FakePool:
    """
    Stand-in for ``psycopg_pool.AsyncConnectionPool``.

    Every connection it hands out is new, so ``events`` can be split per
    connection; ``acquired``/``released`` count ``getconn``/``putconn``.
    """

    def __init__(self, responder: Optional[Callable[..., Any]] = None) -> None:
        self.responder = responder or ScriptedResponder()
        self.events: List[Tuple[int, Tuple[Any, ...]]] = []
        self.connections: List[FakeConnection] = []
        self.acquired = 0
        self.released = 0
        self.fail_getconn: Optional[BaseException] = None
        self.fail_commit: Optional[BaseException] = None
        self.fail_rollback: Optional[BaseException] = None

    def record(self, event: Tuple[Any, ...], conn: FakeConnection) -> None:
        self.events.append((conn.number, event))

    @property
    def statements(self) -> List[Tuple[str, Tuple[Any, ...]]]:
        return [(e[1], e[2]) for _, e in self.events if e[0] == "execute"]

    @property
    def sql(self) -> List[str]:
        return [sql for sql, _ in self.statements]

    def kinds(self) -> List[str]:
        """Compact event trail: statement verbs plus commit/rollback markers."""
        return [e[1].split()[0] if e[0] == "execute" else e[0].upper() for _, e in self.events]

    async def getconn(self, timeout: Optional[float] = None) -> FakeConnection:
        if self.fail_getconn is not None:
            raise self.fail_getconn
        self.acquired += 1
        conn = FakeConnection(self, len(self.connections) + 1)
        self.connections.append(conn)
        return conn

    async def putconn(self, conn: FakeConnection) -> None:
        self.released += 1

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None) -> AsyncIterator[FakeConnection]:
        conn = await self.getconn(timeout)
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        else:
            await conn.commit()
        finally:
            await self.putconn(conn)


@pytest.fixture
def unit_settings() -> Settings:
    return Settings(
        db_statement_timeout_ms=0,
        db_operation_timeout_seconds=5.0,
        db_transaction_timeout_seconds=5.0,
        db_pool_timeout_seconds=1.0,
        default_search_limit=50,
    )


@pytest.fixture
def responder() -> ScriptedResponder:
    return ScriptedResponder()


@pytest.fixture
def fake_pool(responder: ScriptedResponder) -> FakePool:
    return FakePool(responder)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


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
        db_name=os.getenv("DB_NAME", "jewelry_inventory"),
        db_pool_min_size=1,
        db_pool_max_size=4,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to skip integration tests when no database is available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            conn.execute("SELECT 1")
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """Session-scoped autocommit connection used for schema setup and cleanup."""
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clean_tables(db_connection: psycopg.Connection) -> Generator[None, None, None]:
    """Start and finish every integration test with empty tables."""
    db_connection.execute(f"TRUNCATE TABLE {TABLES} RESTART IDENTITY CASCADE")
    yield
    db_connection.execute(f"TRUNCATE TABLE {TABLES} RESTART IDENTITY CASCADE")

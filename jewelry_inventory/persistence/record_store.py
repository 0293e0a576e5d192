"""
Generic record store: CRUD primitives for one named table.

Rows come back as plain dictionaries (``psycopg.rows.dict_row``). Every
operation accepts an optional ``tx`` handle; without one the statement runs on
a connection borrowed from the pool for that single statement.

Transactions own exactly one pooled connection from ``begin_transaction``
until ``commit_transaction``/``rollback_transaction``, and the connection goes
back to the pool on every exit path, including when commit or rollback itself
fails. Prefer the scoped form:

    async with store.transaction() as tx:
        piece = await store.create({"code": "N-001", "name": "Necklace"}, tx=tx)
        await stones.create({"jewelry_id": piece["id"], "stone_code": "RD"}, tx=tx)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Literal, Mapping, Optional, Sequence

import psycopg
from psycopg import AsyncConnection, IsolationLevel
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from jewelry_inventory.config import Settings, as_deadline, get_settings
from jewelry_inventory.errors import (
    OperationTimeout,
    TransactionClosed,
    translate_driver_error,
)
from jewelry_inventory.infrastructure.db_factory import apply_statement_timeout
from jewelry_inventory.persistence.query_builder import (
    UNBOUNDED,
    OrderBy,
    Page,
    PageWindow,
    Query,
    Where,
    build_count,
    build_delete,
    build_insert,
    build_select,
    build_update,
)
from jewelry_inventory.utils.logging import get_logger

log = get_logger(__name__)

Record = Dict[str, Any]
Fetch = Literal["all", "one", "rowcount"]


async def run_query(
    conn: AsyncConnection,
    query: Query,
    fetch: Fetch = "all",
    *,
    table: Optional[str] = None,
) -> Any:
    """
    Execute ``query`` on ``conn`` and return rows, one row, or the row count.

    Driver errors are translated into the persistence error taxonomy.
    """
    log.debug("Executing statement", extra={"table": table, "sql": query.sql})
    try:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query.sql, query.params)
            if fetch == "rowcount":
                return cur.rowcount
            if fetch == "one":
                return await cur.fetchone()
            return await cur.fetchall()
    except psycopg.Error as exc:
        raise translate_driver_error(exc, table=table, sql=query.sql) from exc


class Transaction:
    """
    Handle on one pooled connection running one database transaction.

    psycopg opens the transaction implicitly with the first statement on a
    non-autocommit connection; ``commit``/``rollback`` end it and return the
    connection to the pool.
    """

    def __init__(
        self,
        pool: AsyncConnectionPool,
        conn: AsyncConnection,
        deadline: Optional[float] = None,
    ) -> None:
        self._pool = pool
        self._conn: Optional[AsyncConnection] = conn
        self.deadline = deadline
        # Set while a scoped transaction() block enforces the deadline itself.
        self.scoped = False
        self.isolation_changed = False

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> AsyncConnection:
        if self._conn is None:
            raise TransactionClosed("Transaction already committed or rolled back")
        return self._conn

    async def run(self, query: Query, fetch: Fetch = "all", *, table: Optional[str] = None) -> Any:
        """
        Run one statement on the transaction's connection, within its deadline.

        Past the deadline the transaction is rolled back and the connection
        released before ``OperationTimeout`` is raised.
        """
        conn = self._connection()
        try:
            async with asyncio.timeout_at(None if self.scoped else self.deadline):
                return await run_query(conn, query, fetch, table=table)
        except TimeoutError as exc:
            await self.rollback_quietly()
            raise OperationTimeout(
                "Transaction deadline exceeded", {"table": table, "sql": query.sql[:500]}
            ) from exc

    async def commit(self) -> None:
        conn = self._connection()
        try:
            await conn.commit()
            log.debug("Transaction committed")
        except psycopg.Error as exc:
            raise translate_driver_error(exc) from exc
        finally:
            await self.release()

    async def rollback(self) -> None:
        if self._conn is None:
            log.warning("No active transaction to roll back")
            return
        try:
            await self._conn.rollback()
            log.debug("Transaction rolled back")
        except psycopg.Error as exc:
            raise translate_driver_error(exc) from exc
        finally:
            await self.release()

    async def rollback_quietly(self) -> None:
        """Roll back on an error path without masking the error being handled."""
        try:
            await self.rollback()
        except Exception as exc:  # noqa: BLE001 - the caller re-raises the original error
            log.warning(f"Rollback failed: {exc}")

    async def release(self) -> None:
        """Return the connection to the pool; safe to call more than once."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            if self.isolation_changed:
                await conn.set_isolation_level(None)
        except Exception as exc:  # noqa: BLE001 - the connection still goes back below
            log.warning(f"Failed to reset isolation level: {exc}")
        try:
            await self._pool.putconn(conn)
        except Exception as exc:  # noqa: BLE001 - the pool discards broken connections itself
            log.warning(f"Failed to return connection to pool: {exc}")


class RecordStore:
    """
    CRUD operations over one table.

    Parameters
    ----------
    table : str
        Table name (trusted, from application code).
    pool : AsyncConnectionPool
        Shared connection pool.
    settings : Settings, optional
        Timeouts; defaults to the cached application settings.
    primary_key : str
        Primary key column used by the id-based operations.
    touch_column : str, optional
        Column stamped with ``CURRENT_TIMESTAMP`` by ``update``; None disables.
    active_column : str
        Flag cleared by ``soft_delete``.
    """

    def __init__(
        self,
        table: str,
        pool: AsyncConnectionPool,
        *,
        settings: Optional[Settings] = None,
        primary_key: str = "id",
        touch_column: Optional[str] = "updated_at",
        active_column: str = "is_active",
    ) -> None:
        self.table = table
        self.pool = pool
        self.settings = settings or get_settings()
        self.primary_key = primary_key
        self.touch_column = touch_column
        self.active_column = active_column

    def __repr__(self) -> str:
        return f"RecordStore(table={self.table!r})"

    # -- execution -------------------------------------------------------

    async def _run(self, query: Query, fetch: Fetch, tx: Optional[Transaction]) -> Any:
        if tx is not None:
            return await tx.run(query, fetch, table=self.table)
        try:
            async with asyncio.timeout(as_deadline(self.settings.db_operation_timeout_seconds)):
                async with self._borrow() as conn:
                    return await run_query(conn, query, fetch, table=self.table)
        except TimeoutError as exc:
            raise OperationTimeout(
                f"Operation on {self.table} exceeded its deadline", {"table": self.table}
            ) from exc

    @asynccontextmanager
    async def _borrow(self) -> AsyncIterator[AsyncConnection]:
        # pool.connection() commits on clean exit and rolls back on error.
        try:
            async with self.pool.connection(
                timeout=self.settings.db_pool_timeout_seconds
            ) as conn:
                await apply_statement_timeout(conn, self.settings.db_statement_timeout_ms)
                yield conn
        except psycopg.Error as exc:
            raise translate_driver_error(exc, table=self.table) from exc

    # -- reads -----------------------------------------------------------

    async def query(self, query: Query, *, tx: Optional[Transaction] = None) -> List[Record]:
        """Run a prebuilt statement (e.g. an ad-hoc join) and return its rows."""
        return await self._run(query, "all", tx)

    async def find_all(
        self,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        page: PageWindow = UNBOUNDED,
        columns: Optional[Sequence[str]] = None,
        *,
        tx: Optional[Transaction] = None,
    ) -> List[Record]:
        query = build_select(self.table, where, order_by, page, columns)
        return await self._run(query, "all", tx)

    async def find_by_id(self, key: Any, *, tx: Optional[Transaction] = None) -> Optional[Record]:
        rows = await self.find_all({self.primary_key: key}, page=Page(1), tx=tx)
        return rows[0] if rows else None

    async def find_one(
        self,
        where: Optional[Where] = None,
        *,
        order_by: Optional[OrderBy] = None,
        tx: Optional[Transaction] = None,
    ) -> Optional[Record]:
        rows = await self.find_all(where, order_by, Page(1), tx=tx)
        return rows[0] if rows else None

    async def count(self, where: Optional[Where] = None, *, tx: Optional[Transaction] = None) -> int:
        row = await self._run(build_count(self.table, where), "one", tx)
        return int(row["count"]) if row else 0

    async def exists(self, where: Optional[Where] = None, *, tx: Optional[Transaction] = None) -> bool:
        return await self.count(where, tx=tx) > 0

    # -- writes ----------------------------------------------------------

    async def create(self, fields: Mapping[str, Any], *, tx: Optional[Transaction] = None) -> Record:
        """
        Insert one row and return it with generated columns filled in.

        Raises
        ------
        ConstraintViolation
            When a unique or foreign-key constraint rejects the row.
        """
        return await self._run(build_insert(self.table, fields), "one", tx)

    async def update(
        self,
        key: Any,
        fields: Mapping[str, Any],
        *,
        tx: Optional[Transaction] = None,
    ) -> Optional[Record]:
        """Patch the supplied columns only; None when the row does not exist."""
        query = build_update(
            self.table,
            key,
            fields,
            primary_key=self.primary_key,
            touch_column=self.touch_column,
        )
        return await self._run(query, "one", tx)

    async def delete(self, key: Any, *, tx: Optional[Transaction] = None) -> bool:
        return await self.delete_where({self.primary_key: key}, tx=tx) > 0

    async def delete_where(self, where: Where, *, tx: Optional[Transaction] = None) -> int:
        return await self._run(build_delete(self.table, where), "rowcount", tx)

    async def soft_delete(self, key: Any, *, tx: Optional[Transaction] = None) -> Optional[Record]:
        return await self.update(key, {self.active_column: False}, tx=tx)

    async def batch_create(self, rows: Sequence[Mapping[str, Any]]) -> List[Record]:
        """Insert every row in one transaction; nothing is kept if any insert fails."""
        if not rows:
            return []
        async with self.transaction() as tx:
            return [await self.create(fields, tx=tx) for fields in rows]

    # -- transactions ----------------------------------------------------

    async def begin_transaction(
        self,
        timeout: Optional[float] = None,
        *,
        isolation_level: Optional[IsolationLevel] = None,
    ) -> Transaction:
        """
        Acquire a dedicated connection and start a transaction on it.

        Parameters
        ----------
        timeout : float, optional
            Seconds before the transaction's deadline; defaults to
            ``db_transaction_timeout_seconds``.
        isolation_level : IsolationLevel, optional
            Isolation for this transaction only; the connection is reset to
            the server default before it goes back to the pool.
        """
        try:
            conn = await self.pool.getconn(timeout=self.settings.db_pool_timeout_seconds)
        except psycopg.Error as exc:
            raise translate_driver_error(exc, table=self.table) from exc

        if timeout is None:
            timeout = self.settings.db_transaction_timeout_seconds
        seconds = as_deadline(timeout)
        deadline = asyncio.get_running_loop().time() + seconds if seconds else None
        tx = Transaction(self.pool, conn, deadline)
        try:
            if isolation_level is not None:
                tx.isolation_changed = True
                await conn.set_isolation_level(isolation_level)
            await apply_statement_timeout(conn, self.settings.db_statement_timeout_ms)
        except BaseException as exc:
            await tx.rollback_quietly()
            if isinstance(exc, psycopg.Error):
                raise translate_driver_error(exc, table=self.table) from exc
            raise
        return tx

    async def commit_transaction(self, tx: Transaction) -> None:
        await tx.commit()

    async def rollback_transaction(self, tx: Transaction) -> None:
        await tx.rollback()

    @asynccontextmanager
    async def transaction(
        self,
        timeout: Optional[float] = None,
        *,
        isolation_level: Optional[IsolationLevel] = None,
    ) -> AsyncIterator[Transaction]:
        """
        Scoped transaction: commit on success, roll back on any exception.

        The whole block runs under the transaction deadline; when it expires
        the transaction is rolled back and ``OperationTimeout`` raised.
        """
        tx = await self.begin_transaction(timeout, isolation_level=isolation_level)
        tx.scoped = True
        try:
            async with asyncio.timeout_at(tx.deadline):
                yield tx
        except TimeoutError as exc:
            await tx.rollback_quietly()
            raise OperationTimeout(
                f"Transaction on {self.table} exceeded its deadline", {"table": self.table}
            ) from exc
        except BaseException:
            await tx.rollback_quietly()
            raise
        await tx.commit()


__all__ = ["Record", "RecordStore", "Transaction", "run_query"]

"""
Database connection factory utilities for the jewelry inventory backend.

Provides centralized management of the async PostgreSQL connection pool with
proper lifecycle management. The PoolManager owns the process-wide pool; the
persistence layer borrows connections from it one statement or one
transaction at a time.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import psycopg
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from jewelry_inventory.config import Settings, get_settings
from jewelry_inventory.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
async def open_async_pool(
    conninfo: Optional[str] = None,
    min_size: Optional[int] = None,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> AsyncConnectionPool:
    """
    Create and open an asynchronous connection pool with automatic retry.

    Retries up to 3 times with exponential backoff when the database cannot
    be reached while the pool fills its minimum size.

    Parameters
    ----------
    conninfo : str, optional
        Connection string; defaults to the one built from settings.
    min_size : int, optional
        Minimum number of idle connections to keep.
    max_size : int, optional
        Maximum total connections in the pool.
    timeout : float, optional
        Seconds to wait for the pool to fill ``min_size`` connections.

    Returns
    -------
    AsyncConnectionPool
        An open pool.

    Raises
    ------
    psycopg.OperationalError
        If the pool cannot be opened after all retry attempts.
    """
    settings = get_settings()
    pool = AsyncConnectionPool(
        conninfo=conninfo or build_dsn(settings),
        min_size=min_size if min_size is not None else settings.db_pool_min_size,
        max_size=max_size if max_size is not None else settings.db_pool_max_size,
        timeout=settings.db_pool_timeout_seconds,
        open=False,
    )
    try:
        await pool.open(wait=True, timeout=timeout or settings.db_pool_timeout_seconds)
    except BaseException:
        await pool.close()
        raise
    log.info("Connection pool opened", extra={"min_size": pool.min_size, "max_size": pool.max_size})
    return pool


class PoolManager:
    """
    Owner of the process-wide async connection pool.

    The pool is created lazily on first use and closed explicitly by the
    application (CLI command or service shutdown hook).
    """

    def __init__(self, conninfo: Optional[str] = None) -> None:
        self._conninfo = conninfo
        self._pool: Optional[AsyncConnectionPool] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    async def get_pool(self) -> AsyncConnectionPool:
        """
        Get or create the asynchronous connection pool.

        Returns
        -------
        AsyncConnectionPool
            The managed pool instance.
        """
        async with self._lock:
            if self._pool is None:
                self._pool = await open_async_pool(conninfo=self._conninfo)
            return self._pool

    async def close(self) -> None:
        """Close the managed pool and release its connections."""
        async with self._lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                    log.info("Connection pool closed")
                finally:
                    self._pool = None

    async def __aenter__(self) -> AsyncConnectionPool:
        return await self.get_pool()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def apply_statement_timeout(conn: AsyncConnection, timeout_ms: int) -> None:
    """
    Bound every statement of the current transaction on the server side.

    ``SET LOCAL`` only lasts until the enclosing transaction ends, so pooled
    connections never carry the setting over to the next borrower.
    """
    if timeout_ms and timeout_ms > 0:
        await conn.execute(f"SET LOCAL statement_timeout = {int(timeout_ms)}")


__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "open_async_pool",
]

"""
Infrastructure package for the jewelry inventory.

Centralizes database connectivity concerns (DSN, async pool lifecycle,
per-transaction server settings), decoupled from persistence logic.
"""

from jewelry_inventory.infrastructure.db_factory import (
    PoolManager,
    apply_statement_timeout,
    build_dsn,
    open_async_pool,
)

__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "open_async_pool",
]

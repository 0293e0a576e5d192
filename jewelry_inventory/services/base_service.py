"""
Generic application service over one record store.

Services sit between callers (CLI, seed script, an HTTP layer) and the
persistence core: they validate ids, stamp audit columns and turn absence into
``NotFound`` where the caller asked for a specific row.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, Optional

from jewelry_inventory.errors import NotFound, ValidationError
from jewelry_inventory.persistence.query_builder import UNBOUNDED, OrderBy, PageWindow, Where
from jewelry_inventory.persistence.record_store import Record, RecordStore
from jewelry_inventory.utils.logging import get_logger

log = get_logger(__name__)


def validate_id(value: Any) -> int:
    """Return ``value`` as a positive integer id or raise ``ValidationError``."""
    if isinstance(value, bool):
        raise ValidationError("Invalid ID provided", {"id": value})
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError("Invalid ID provided", {"id": value})
    return value


class BaseService:
    """Operation logging shared by every service."""

    name = "service"

    @asynccontextmanager
    async def operation(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """
        Log the start, outcome and duration of one service operation.

        Failures are logged and re-raised unchanged.
        """
        fields = {"service": self.name, "operation": operation, **context}
        log.debug("Service operation started", extra=fields)
        start = time.perf_counter()
        try:
            yield
        except Exception as exc:
            log.warning(
                "Service operation failed",
                extra={**fields, "error": type(exc).__name__, "reason": str(exc)},
            )
            raise
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        log.debug("Service operation completed", extra={**fields, "duration_ms": duration_ms})


class EntityService(BaseService):
    """
    CRUD service for a simple entity table (users, vendors, categories, materials).

    Parameters
    ----------
    store : RecordStore
        Store for the entity's table.
    name : str, optional
        Name used in logs; defaults to the table name.
    """

    def __init__(self, store: RecordStore, name: Optional[str] = None) -> None:
        self.store = store
        self.name = name or store.table

    async def get_all(
        self,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        page: PageWindow = UNBOUNDED,
    ) -> List[Record]:
        async with self.operation("get_all"):
            return await self.store.find_all(where, order_by, page)

    async def get_by_id(self, key: Any) -> Optional[Record]:
        key = validate_id(key)
        async with self.operation("get_by_id", id=key):
            return await self.store.find_by_id(key)

    async def create(self, data: Mapping[str, Any], user_id: Optional[int] = None) -> Record:
        fields = dict(data)
        if user_id is not None:
            fields["created_by"] = user_id
        async with self.operation("create"):
            return await self.store.create(fields)

    async def update(self, key: Any, data: Mapping[str, Any]) -> Record:
        """Patch a row; raises ``NotFound`` when it does not exist."""
        key = validate_id(key)
        async with self.operation("update", id=key):
            row = await self.store.update(key, data)
            if row is None:
                raise NotFound(f"{self.name} record {key} not found", {"id": key})
            return row

    async def delete(self, key: Any) -> bool:
        """Hard delete; raises ``NotFound`` when the row does not exist."""
        key = validate_id(key)
        async with self.operation("delete", id=key):
            if not await self.store.delete(key):
                raise NotFound(f"{self.name} record {key} not found", {"id": key})
            return True

    async def soft_delete(self, key: Any) -> Optional[Record]:
        key = validate_id(key)
        async with self.operation("soft_delete", id=key):
            return await self.store.soft_delete(key)

    async def count(self, where: Optional[Where] = None) -> int:
        async with self.operation("count"):
            return await self.store.count(where)

    async def exists(self, where: Optional[Where] = None) -> bool:
        async with self.operation("exists"):
            return await self.store.exists(where)


__all__ = ["BaseService", "EntityService", "validate_id"]

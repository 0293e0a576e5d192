"""
Table names and record stores for the simple entities.

Users, vendors, categories and materials have no owned children, so services
use a plain ``RecordStore`` for them. Jewelry pieces and their stones go
through ``JewelryRepository`` instead.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from psycopg_pool import AsyncConnectionPool

from jewelry_inventory.config import Settings
from jewelry_inventory.persistence.record_store import RecordStore

USERS = "users"
VENDORS = "vendors"
CATEGORIES = "categories"
MATERIALS = "materials"
JEWELRY_PIECES = "jewelry_pieces"
JEWELRY_STONES = "jewelry_stones"

ENTITY_TABLES = (USERS, VENDORS, CATEGORIES, MATERIALS)


def _store_factories(
    pool: AsyncConnectionPool, settings: Optional[Settings]
) -> Dict[str, Callable[[], RecordStore]]:
    """Registry of simple entity stores."""
    return {
        name: (lambda name=name: RecordStore(name, pool, settings=settings))
        for name in ENTITY_TABLES
    }


def available_entities() -> List[str]:
    """List entity names served by a plain record store."""
    return sorted(ENTITY_TABLES)


def entity_store(
    name: str, pool: AsyncConnectionPool, settings: Optional[Settings] = None
) -> RecordStore:
    """Build the record store for one simple entity table."""
    factories = _store_factories(pool, settings)
    if name not in factories:
        raise ValueError(f"Unknown entity '{name}'. Available: {', '.join(available_entities())}")
    return factories[name]()


__all__ = [
    "CATEGORIES",
    "ENTITY_TABLES",
    "JEWELRY_PIECES",
    "JEWELRY_STONES",
    "MATERIALS",
    "USERS",
    "VENDORS",
    "available_entities",
    "entity_store",
]

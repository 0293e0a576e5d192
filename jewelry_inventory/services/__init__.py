"""
Application services for the jewelry inventory.

``build_services`` wires one ``EntityService`` per simple entity table plus the
``JewelryService`` onto a shared connection pool.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from psycopg_pool import AsyncConnectionPool

from jewelry_inventory.config import Settings
from jewelry_inventory.persistence.jewelry_repository import JewelryRepository
from jewelry_inventory.persistence.tables import CATEGORIES, MATERIALS, USERS, VENDORS, entity_store
from jewelry_inventory.services.base_service import BaseService, EntityService, validate_id
from jewelry_inventory.services.jewelry_service import JewelryService


@dataclass(frozen=True)
class Services:
    users: EntityService
    vendors: EntityService
    categories: EntityService
    materials: EntityService
    jewelry: JewelryService


def build_services(pool: AsyncConnectionPool, settings: Optional[Settings] = None) -> Services:
    """Create every service on top of ``pool``."""
    stores = {name: entity_store(name, pool, settings) for name in (USERS, VENDORS, CATEGORIES, MATERIALS)}
    return Services(
        users=EntityService(stores[USERS]),
        vendors=EntityService(stores[VENDORS]),
        categories=EntityService(stores[CATEGORIES]),
        materials=EntityService(stores[MATERIALS]),
        jewelry=JewelryService(JewelryRepository(pool, settings), categories=stores[CATEGORIES]),
    )


__all__ = [
    "BaseService",
    "EntityService",
    "JewelryService",
    "Services",
    "build_services",
    "validate_id",
]

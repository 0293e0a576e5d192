"""
Persistence package for the jewelry inventory.

Query building, the generic record store with its transaction handle, and the
jewelry + stones aggregate repository. Keep this layer free of business rules;
those live in ``jewelry_inventory.services``.
"""

from jewelry_inventory.persistence.jewelry_repository import JewelryRepository
from jewelry_inventory.persistence.query_builder import (
    UNBOUNDED,
    Eq,
    In,
    Op,
    Page,
    Query,
    Unbounded,
)
from jewelry_inventory.persistence.record_store import Record, RecordStore, Transaction
from jewelry_inventory.persistence.tables import available_entities, entity_store

__all__ = [
    # Query building
    "Eq",
    "In",
    "Op",
    "Page",
    "Query",
    "UNBOUNDED",
    "Unbounded",
    # Stores
    "JewelryRepository",
    "Record",
    "RecordStore",
    "Transaction",
    "available_entities",
    "entity_store",
]

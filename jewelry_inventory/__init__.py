"""
Jewelry Inventory - persistence core for a jewelry shop backend.

This package provides:

- A parameterized query builder with typed filter conditions
- A generic async record store with explicit and scoped transactions
- An aggregate repository writing a jewelry piece and its stones atomically
- Application services with input validation and code management
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from jewelry_inventory.config import Settings, get_settings
from jewelry_inventory.errors import (
    ConstraintViolation,
    NotFound,
    OperationTimeout,
    PersistenceError,
    StorageUnavailable,
    TransactionClosed,
    ValidationError,
)
from jewelry_inventory.persistence import JewelryRepository, RecordStore, Transaction
from jewelry_inventory.services import Services, build_services
from jewelry_inventory.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "ConstraintViolation",
    "NotFound",
    "OperationTimeout",
    "PersistenceError",
    "StorageUnavailable",
    "TransactionClosed",
    "ValidationError",
    # Persistence
    "JewelryRepository",
    "RecordStore",
    "Transaction",
    # Services
    "Services",
    "build_services",
    # Logging
    "configure_logging",
    "get_logger",
]

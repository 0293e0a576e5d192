"""
Utilities package for the jewelry inventory.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from jewelry_inventory.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]

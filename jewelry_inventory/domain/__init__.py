"""
Domain package for the jewelry inventory.

Exports the input models and the jewelry aggregate. Keep this package focused
on data definitions and validation concerns.
"""

from jewelry_inventory.domain.models import (
    JewelryAggregate,
    JewelryStatus,
    PieceCreate,
    PieceUpdate,
    SearchCriteria,
    StoneInput,
)

__all__ = [
    "JewelryAggregate",
    "JewelryStatus",
    "PieceCreate",
    "PieceUpdate",
    "SearchCriteria",
    "StoneInput",
]

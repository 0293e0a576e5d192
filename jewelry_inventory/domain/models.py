"""
Domain models for the jewelry inventory.

Input models validate what services accept before anything reaches the
persistence layer; ``extra="forbid"`` also guarantees that only known column
names are ever turned into SQL identifiers. Stored rows stay plain
dictionaries; ``JewelryAggregate`` pairs a piece row with its stone rows.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

GOLD_PURITIES = (14, 18, 22, 24)


class JewelryStatus(str, Enum):
    IN_STOCK = "In Stock"
    SOLD = "Sold"
    RESERVED = "Reserved"
    DAMAGED = "Damaged"
    LOST = "Lost"


_INPUT_CONFIG = ConfigDict(
    extra="forbid",
    str_strip_whitespace=True,
    use_enum_values=True,
)


def _non_negative() -> Any:
    return Field(None, ge=0)


class StoneInput(BaseModel):
    """One stone set in a piece."""

    stone_code: str = Field(..., min_length=1, max_length=50)
    stone_name: Optional[str] = Field(None, max_length=100)
    weight: Optional[Decimal] = _non_negative()
    cost_price: Optional[Decimal] = _non_negative()
    sale_price: Optional[Decimal] = _non_negative()

    model_config = _INPUT_CONFIG


class PieceFields(BaseModel):
    """
    Columns of ``jewelry_pieces`` a caller may set.

    Every field is optional so the same model validates partial updates;
    ``PieceCreate`` tightens the fields a new piece requires.
    """

    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[int] = Field(None, gt=0)
    vendor_id: Optional[int] = Field(None, gt=0)
    gross_weight: Optional[Decimal] = _non_negative()
    net_weight: Optional[Decimal] = _non_negative()
    gold_weight: Optional[Decimal] = _non_negative()
    gold_purity: Optional[int] = None
    stone_weight: Optional[Decimal] = _non_negative()
    gold_rate: Optional[Decimal] = _non_negative()
    total_gold_price: Optional[Decimal] = _non_negative()
    total_stone_cost: Optional[Decimal] = _non_negative()
    wastage_percentage: Optional[Decimal] = _non_negative()
    total_wastage: Optional[Decimal] = _non_negative()
    making_charges: Optional[Decimal] = _non_negative()
    total_making_charges: Optional[Decimal] = _non_negative()
    total_cost_value: Optional[Decimal] = _non_negative()
    sale_price: Optional[Decimal] = _non_negative()
    certificate: Optional[str] = None
    status: Optional[JewelryStatus] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None

    model_config = _INPUT_CONFIG

    @field_validator("gold_purity")
    @classmethod
    def _known_purity(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in GOLD_PURITIES:
            raise ValueError(
                f"Gold purity must be one of: {', '.join(str(p) for p in GOLD_PURITIES)}"
            )
        return value

    def to_fields(self) -> Dict[str, Any]:
        """Columns the caller actually supplied, ready for the record store."""
        return self.model_dump(exclude_unset=True)


class PieceCreate(PieceFields):
    name: str = Field(..., min_length=1, max_length=200)
    sale_price: Decimal = Field(..., gt=0)


class PieceUpdate(PieceFields):
    pass


class SearchCriteria(BaseModel):
    """Filters accepted by the jewelry search; unset fields add no constraint."""

    search_term: Optional[str] = None
    category_id: Optional[int] = Field(None, gt=0)
    vendor_id: Optional[int] = Field(None, gt=0)
    status: Optional[JewelryStatus] = None
    min_price: Optional[Decimal] = _non_negative()
    max_price: Optional[Decimal] = _non_negative()
    gold_purity: Optional[int] = None
    include_stones: bool = True

    model_config = _INPUT_CONFIG


class JewelryAggregate(BaseModel):
    """A jewelry piece row together with its stone rows."""

    piece: Dict[str, Any]
    stones: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def id(self) -> Any:
        return self.piece.get("id")

    def as_dict(self) -> Dict[str, Any]:
        """Flatten into the piece row with a ``stones`` list, as the API returns it."""
        return {**self.piece, "stones": [dict(stone) for stone in self.stones]}


__all__ = [
    "GOLD_PURITIES",
    "JewelryAggregate",
    "JewelryStatus",
    "PieceCreate",
    "PieceFields",
    "PieceUpdate",
    "SearchCriteria",
    "StoneInput",
]

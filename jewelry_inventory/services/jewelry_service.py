"""
Business rules for jewelry pieces.

Inputs are validated with the pydantic models from ``domain.models`` before
anything reaches the repository; pydantic errors are re-raised as
``ValidationError`` with the individual problems kept in ``details``.
"""

from __future__ import annotations

import random
import time
from typing import Any, Iterable, List, Mapping, Optional, Type, TypeVar, Union

import pydantic

from jewelry_inventory.domain.models import (
    JewelryAggregate,
    JewelryStatus,
    PieceCreate,
    PieceUpdate,
    SearchCriteria,
    StoneInput,
)
from jewelry_inventory.errors import ConstraintViolation, NotFound, ValidationError
from jewelry_inventory.persistence.jewelry_repository import JewelryRepository
from jewelry_inventory.persistence.query_builder import UNBOUNDED, OrderBy, PageWindow, Where
from jewelry_inventory.persistence.record_store import Record, RecordStore
from jewelry_inventory.persistence.tables import JEWELRY_PIECES
from jewelry_inventory.services.base_service import BaseService, validate_id
from jewelry_inventory.utils.logging import get_logger

log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

DEFAULT_CODE_PREFIX = "JWL"
CODE_ATTEMPTS = 10


def validate_input(model: Type[ModelT], data: Any, label: Optional[str] = None) -> ModelT:
    """
    Validate ``data`` against ``model``.

    Raises
    ------
    ValidationError
        With a readable message and pydantic's error list in ``details``.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
            for err in exc.errors()
        ]
        prefix = f"{label}: " if label else ""
        raise ValidationError(
            f"{prefix}{'; '.join(problems)}",
            {"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def parse_status(status: Any) -> str:
    try:
        return JewelryStatus(status).value
    except ValueError as exc:
        allowed = ", ".join(s.value for s in JewelryStatus)
        raise ValidationError(
            f"Invalid status. Must be one of: {allowed}", {"status": status}
        ) from exc


class JewelryService(BaseService):
    """
    Jewelry operations: validated aggregate writes, code management and listings.

    Parameters
    ----------
    repository : JewelryRepository
        Aggregate repository for pieces and stones.
    categories : RecordStore, optional
        Category store used to prefix generated codes with the category code.
    """

    name = "jewelry"

    def __init__(
        self, repository: JewelryRepository, categories: Optional[RecordStore] = None
    ) -> None:
        self.repository = repository
        self.categories = categories

    # -- codes -----------------------------------------------------------

    async def _code_prefix(self, category_id: Optional[int]) -> str:
        if category_id is None or self.categories is None:
            return DEFAULT_CODE_PREFIX
        category = await self.categories.find_by_id(category_id)
        if category and category.get("code"):
            return str(category["code"])
        return DEFAULT_CODE_PREFIX

    async def generate_code(self, prefix: str = DEFAULT_CODE_PREFIX) -> str:
        """
        Generate an unused code ``<prefix>-<6 digits of time>-<random>``.

        Raises
        ------
        ConstraintViolation
            When no free code was found within ``CODE_ATTEMPTS`` tries.
        """
        stamp = str(int(time.time() * 1000))[-6:]
        for _ in range(CODE_ATTEMPTS):
            code = f"{prefix}-{stamp}-{random.randint(0, 999):03d}"
            if await self.repository.is_code_available(code):
                return code
        raise ConstraintViolation(
            "Failed to generate unique jewelry code", table=JEWELRY_PIECES, details={"prefix": prefix}
        )

    async def _ensure_code_available(self, code: str, exclude_id: Optional[int] = None) -> None:
        if not await self.repository.is_code_available(code, exclude_id):
            raise ConstraintViolation(
                "Jewelry code is already taken", table=JEWELRY_PIECES, details={"code": code}
            )

    @staticmethod
    def _stone_fields(stones: Iterable[Any]) -> List[dict]:
        return [
            validate_input(StoneInput, stone, f"Stone {index}").model_dump(exclude_unset=True)
            for index, stone in enumerate(stones, start=1)
        ]

    # -- writes ----------------------------------------------------------

    async def create_with_stones(
        self,
        piece: Mapping[str, Any],
        stones: Iterable[Any] = (),
        user_id: Optional[int] = None,
    ) -> JewelryAggregate:
        """
        Create a piece with its stones.

        ``status`` defaults to In Stock and ``gold_weight`` to ``net_weight``.
        A supplied code must be free among active pieces; otherwise one is
        generated from the category code.
        """
        fields = validate_input(PieceCreate, piece).to_fields()
        stone_fields = self._stone_fields(stones)

        if fields.get("status") is None:
            fields["status"] = JewelryStatus.IN_STOCK.value
        if fields.get("gold_weight") is None and fields.get("net_weight") is not None:
            fields["gold_weight"] = fields["net_weight"]
        if user_id is not None:
            fields["created_by"] = user_id

        async with self.operation("create_with_stones", code=fields.get("code")):
            if fields.get("code"):
                await self._ensure_code_available(fields["code"])
            else:
                prefix = await self._code_prefix(fields.get("category_id"))
                fields["code"] = await self.generate_code(prefix)
            return await self.repository.create_with_stones(fields, stone_fields)

    async def update_with_stones(
        self,
        key: Any,
        piece: Mapping[str, Any],
        stones: Optional[Iterable[Any]] = None,
    ) -> JewelryAggregate:
        """
        Patch a piece; ``stones=None`` keeps its stones, any list replaces them.

        Patching ``net_weight`` without ``gold_weight`` sets both, as on create.

        Raises
        ------
        NotFound
            When the piece does not exist.
        """
        key = validate_id(key)
        fields = validate_input(PieceUpdate, piece).to_fields()
        stone_fields = None if stones is None else self._stone_fields(stones)
        if fields.get("gold_weight") is None and fields.get("net_weight") is not None:
            fields["gold_weight"] = fields["net_weight"]

        async with self.operation("update_with_stones", id=key):
            if fields.get("code"):
                await self._ensure_code_available(fields["code"], exclude_id=key)
            updated = await self.repository.update_with_stones(key, fields, stone_fields)
            if updated is None:
                raise NotFound("Jewelry piece not found", {"id": key})
            return updated

    async def delete(self, key: Any) -> bool:
        key = validate_id(key)
        async with self.operation("delete", id=key):
            if not await self.repository.delete_with_stones(key):
                raise NotFound("Jewelry piece not found", {"id": key})
            return True

    async def update_status(self, key: Any, status: Any) -> Record:
        key = validate_id(key)
        value = parse_status(status)
        async with self.operation("update_status", id=key, status=value):
            row = await self.repository.update_status(key, value)
            if row is None:
                raise NotFound("Jewelry piece not found", {"id": key})
            return row

    # -- reads -----------------------------------------------------------

    async def get(self, key: Any) -> JewelryAggregate:
        """One piece with category/vendor details and stones; ``NotFound`` if absent."""
        key = validate_id(key)
        async with self.operation("get", id=key):
            found = await self.repository.find_by_id_with_details(key)
            if found is None:
                raise NotFound("Jewelry piece not found", {"id": key})
            return found

    async def list(
        self,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        page: PageWindow = UNBOUNDED,
    ) -> List[JewelryAggregate]:
        async with self.operation("list"):
            return await self.repository.find_all_with_details(where, order_by, page)

    async def get_by_status(self, status: Any, page: PageWindow = UNBOUNDED) -> List[JewelryAggregate]:
        value = parse_status(status)
        async with self.operation("get_by_status", status=value):
            return await self.repository.find_by_status(value, page)

    async def get_by_category(self, category_id: Any, page: PageWindow = UNBOUNDED) -> List[JewelryAggregate]:
        category_id = validate_id(category_id)
        async with self.operation("get_by_category", category_id=category_id):
            return await self.repository.find_by_category(category_id, page)

    async def get_by_vendor(self, vendor_id: Any, page: PageWindow = UNBOUNDED) -> List[JewelryAggregate]:
        vendor_id = validate_id(vendor_id)
        async with self.operation("get_by_vendor", vendor_id=vendor_id):
            return await self.repository.find_by_vendor(vendor_id, page)

    async def search(
        self,
        criteria: Union[SearchCriteria, Mapping[str, Any], None] = None,
        page: Optional[PageWindow] = None,
    ) -> List[JewelryAggregate]:
        parsed = validate_input(SearchCriteria, criteria or {})
        async with self.operation("search"):
            return await self.repository.search(parsed, page)


__all__ = ["JewelryService", "parse_status", "validate_input"]

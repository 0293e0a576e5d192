"""
Jewelry pieces and their stones, written as one aggregate.

A piece owns its stone rows: stones are only ever written together with the
piece, inside one transaction on one pooled connection. Every write runs
the same shape:

    BEGIN
      insert / patch the piece                  step "piece"
      DELETE the piece's stones                 step "stones"  (update with stones only)
      INSERT each supplied stone                step "stones"
    COMMIT        -- any failure: ROLLBACK, release, re-raise

Reads fetch the pieces first and then every stone of the page with a single
``jewelry_id IN (...)`` query, both inside one REPEATABLE READ transaction so
the stones always belong to the pieces that were returned.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Mapping, Optional

from psycopg import IsolationLevel
from psycopg_pool import AsyncConnectionPool

from jewelry_inventory.config import Settings, get_settings
from jewelry_inventory.domain.models import JewelryAggregate, JewelryStatus, SearchCriteria
from jewelry_inventory.errors import NotFound, PersistenceError, ValidationError
from jewelry_inventory.persistence.query_builder import (
    UNBOUNDED,
    In,
    Op,
    OrderBy,
    Page,
    PageWindow,
    Query,
    Where,
    build_select,
)
from jewelry_inventory.persistence.record_store import Record, RecordStore, Transaction
from jewelry_inventory.persistence.tables import JEWELRY_PIECES, JEWELRY_STONES
from jewelry_inventory.utils.logging import get_logger

log = get_logger(__name__)

DETAIL_COLUMNS = (
    "j.*",
    "c.name AS category_name",
    "c.code AS category_code",
    "c.type AS category_type",
    "v.name AS vendor_name",
    "v.company AS vendor_company",
)
DETAIL_JOINS = (
    "LEFT JOIN categories c ON j.category_id = c.id",
    "LEFT JOIN vendors v ON j.vendor_id = v.id",
)
DEFAULT_ORDER: OrderBy = {"created_at": "DESC", "id": "DESC"}
STONE_ORDER: OrderBy = {"id": "ASC"}

SEARCH_COLUMNS = ("j.name", "j.code", "j.description", "c.name", "v.name")


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so a search term only ever matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class JewelryRepository:
    """
    Aggregate repository over ``jewelry_pieces`` and ``jewelry_stones``.

    Parameters
    ----------
    pool : AsyncConnectionPool
        Shared connection pool.
    settings : Settings, optional
        Timeouts and the default search page size.
    """

    def __init__(self, pool: AsyncConnectionPool, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.pieces = RecordStore(JEWELRY_PIECES, pool, settings=self.settings)
        self.stones = RecordStore(JEWELRY_STONES, pool, settings=self.settings, touch_column=None)

    # -- helpers ---------------------------------------------------------

    @contextmanager
    def _step(self, name: str, jewelry_id: Any = None) -> Iterator[None]:
        try:
            yield
        except Exception as exc:
            exc.add_note(f"jewelry write failed at step '{name}'")
            if isinstance(exc, PersistenceError):
                exc.step = name
            log.exception(
                "Jewelry write step failed", extra={"step": name, "jewelry_id": jewelry_id}
            )
            raise

    @asynccontextmanager
    async def _read_transaction(self) -> AsyncIterator[Transaction]:
        async with self.pieces.transaction(
            isolation_level=IsolationLevel.REPEATABLE_READ
        ) as tx:
            yield tx

    async def _insert_stones(
        self, jewelry_id: Any, stones: Iterable[Mapping[str, Any]], tx: Transaction
    ) -> List[Record]:
        rows = []
        for stone in stones:
            rows.append(await self.stones.create({**stone, "jewelry_id": jewelry_id}, tx=tx))
        return rows

    async def _stones_by_piece(
        self, ids: List[Any], tx: Optional[Transaction] = None
    ) -> Dict[Any, List[Record]]:
        grouped: Dict[Any, List[Record]] = {key: [] for key in ids}
        if not ids:
            return grouped
        rows = await self.stones.find_all({"jewelry_id": In(ids)}, STONE_ORDER, tx=tx)
        for row in rows:
            grouped.setdefault(row["jewelry_id"], []).append(row)
        return grouped

    # -- aggregate writes ------------------------------------------------

    async def create_with_stones(
        self,
        piece_fields: Mapping[str, Any],
        stones: Iterable[Mapping[str, Any]] = (),
    ) -> JewelryAggregate:
        """
        Insert a piece and its stones atomically.

        Returns
        -------
        JewelryAggregate
            The stored piece row and stone rows, as returned inside the
            transaction. The piece row carries no category or vendor names;
            use ``find_by_id_with_details`` for the joined shape.
        """
        async with self.pieces.transaction() as tx:
            with self._step("piece"):
                piece = await self.pieces.create(piece_fields, tx=tx)
            with self._step("stones", piece["id"]):
                stone_rows = await self._insert_stones(piece["id"], stones, tx)

        log.info(
            "Jewelry piece created",
            extra={"jewelry_id": piece["id"], "code": piece.get("code"), "stones": len(stone_rows)},
        )
        return JewelryAggregate(piece=piece, stones=stone_rows)

    async def update_with_stones(
        self,
        key: Any,
        piece_fields: Mapping[str, Any],
        stones: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> Optional[JewelryAggregate]:
        """
        Patch a piece and optionally replace its stones, atomically.

        Parameters
        ----------
        key : Any
            Piece id.
        piece_fields : Mapping
            Columns to patch; ``updated_at`` is always stamped.
        stones : iterable of Mapping, optional
            ``None`` leaves the stones untouched. Any other value, including
            an empty list, replaces the whole stone set.

        Returns
        -------
        JewelryAggregate or None
            None when the piece does not exist; nothing is written then.
            As with ``create_with_stones`` the piece row is the bare table row.
        """
        try:
            async with self.pieces.transaction() as tx:
                with self._step("piece", key):
                    piece = await self.pieces.update(key, piece_fields, tx=tx)
                if piece is None:
                    raise NotFound(f"Jewelry piece {key} not found", {"id": key})
                with self._step("stones", key):
                    if stones is None:
                        grouped = await self._stones_by_piece([piece["id"]], tx)
                        stone_rows = grouped[piece["id"]]
                    else:
                        await self.stones.delete_where({"jewelry_id": key}, tx=tx)
                        stone_rows = await self._insert_stones(key, stones, tx)
        except NotFound:
            log.info("Jewelry piece not found for update", extra={"jewelry_id": key})
            return None

        log.info(
            "Jewelry piece updated",
            extra={"jewelry_id": key, "stones_replaced": stones is not None},
        )
        return JewelryAggregate(piece=piece, stones=stone_rows)

    async def delete_with_stones(self, key: Any) -> bool:
        """Delete a piece's stones, then the piece; False when it did not exist."""
        async with self.pieces.transaction() as tx:
            with self._step("stones", key):
                await self.stones.delete_where({"jewelry_id": key}, tx=tx)
            with self._step("piece", key):
                deleted = await self.pieces.delete(key, tx=tx)

        if deleted:
            log.info("Jewelry piece deleted", extra={"jewelry_id": key})
        return deleted

    async def update_status(self, key: Any, status: str) -> Optional[Record]:
        """Set a piece's status; the value must be a known ``JewelryStatus``."""
        try:
            value = JewelryStatus(status).value
        except ValueError as exc:
            allowed = ", ".join(s.value for s in JewelryStatus)
            raise ValidationError(
                f"Invalid status. Must be one of: {allowed}", {"status": status}
            ) from exc
        return await self.pieces.update(key, {"status": value})

    # -- aggregate reads -------------------------------------------------

    async def get_with_stones(
        self,
        where: Optional[Where] = None,
        page: PageWindow = UNBOUNDED,
        order_by: Optional[OrderBy] = None,
    ) -> List[JewelryAggregate]:
        """Matching pieces, each with its stones (one batched stone query)."""
        async with self._read_transaction() as tx:
            pieces = await self.pieces.find_all(where, order_by, page, tx=tx)
            grouped = await self._stones_by_piece([p["id"] for p in pieces], tx)
        return [JewelryAggregate(piece=p, stones=grouped[p["id"]]) for p in pieces]

    async def _detailed(
        self,
        where: Optional[Where],
        order_by: Optional[OrderBy],
        page: PageWindow,
        include_stones: bool,
        extra: tuple = (),
    ) -> List[JewelryAggregate]:
        query = build_select(
            JEWELRY_PIECES,
            where,
            order_by or DEFAULT_ORDER,
            page,
            DETAIL_COLUMNS,
            alias="j",
            joins=DETAIL_JOINS,
            extra=extra,
        )
        async with self._read_transaction() as tx:
            rows = await self.pieces.query(query, tx=tx)
            grouped: Dict[Any, List[Record]] = {}
            if include_stones:
                grouped = await self._stones_by_piece([r["id"] for r in rows], tx)
        return [JewelryAggregate(piece=r, stones=grouped.get(r["id"], [])) for r in rows]

    async def find_all_with_details(
        self,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        page: PageWindow = UNBOUNDED,
        include_stones: bool = True,
    ) -> List[JewelryAggregate]:
        """
        Pieces joined with their category and vendor names, newest first.

        Each piece row gains ``category_name``, ``category_code``,
        ``category_type``, ``vendor_name`` and ``vendor_company``.
        """
        return await self._detailed(where, order_by, page, include_stones)

    async def find_by_id_with_details(self, key: Any) -> Optional[JewelryAggregate]:
        found = await self._detailed({"id": key}, None, Page(1), True)
        return found[0] if found else None

    async def find_by_status(
        self, status: str, page: PageWindow = UNBOUNDED, order_by: Optional[OrderBy] = None
    ) -> List[JewelryAggregate]:
        return await self.find_all_with_details({"status": status}, order_by, page)

    async def find_by_category(
        self, category_id: int, page: PageWindow = UNBOUNDED, order_by: Optional[OrderBy] = None
    ) -> List[JewelryAggregate]:
        return await self.find_all_with_details({"category_id": category_id}, order_by, page)

    async def find_by_vendor(
        self, vendor_id: int, page: PageWindow = UNBOUNDED, order_by: Optional[OrderBy] = None
    ) -> List[JewelryAggregate]:
        return await self.find_all_with_details({"vendor_id": vendor_id}, order_by, page)

    async def search(
        self, criteria: SearchCriteria, page: Optional[PageWindow] = None
    ) -> List[JewelryAggregate]:
        """
        Free-text and attribute search over the detailed listing.

        The search term matches, case-insensitively and as a substring, the
        piece name, code and description and the category and vendor names.
        """
        where = [
            ("category_id", criteria.category_id),
            ("vendor_id", criteria.vendor_id),
            ("status", criteria.status),
            ("gold_purity", criteria.gold_purity),
            ("sale_price", None if criteria.min_price is None else Op(">=", criteria.min_price)),
            ("sale_price", None if criteria.max_price is None else Op("<=", criteria.max_price)),
        ]
        extra = ()
        if criteria.search_term:
            pattern = f"%{escape_like(criteria.search_term)}%"
            text = " OR ".join(f"{column} ILIKE %s" for column in SEARCH_COLUMNS)
            extra = (Query(f"({text})", (pattern,) * len(SEARCH_COLUMNS)),)
        if page is None:
            page = Page(self.settings.default_search_limit)
        return await self._detailed(where, None, page, criteria.include_stones, extra)

    async def get_stones(self, jewelry_id: Any, *, tx: Optional[Transaction] = None) -> List[Record]:
        """Stones of one piece, ordered by stone code."""
        return await self.stones.find_all(
            {"jewelry_id": jewelry_id}, {"stone_code": "ASC", "id": "ASC"}, tx=tx
        )

    # -- code lookups ----------------------------------------------------

    async def find_by_code(self, code: str) -> Optional[Record]:
        """The active piece carrying ``code``, if any."""
        return await self.pieces.find_one({"code": code, "is_active": True})

    async def is_code_available(self, code: str, exclude_id: Any = None) -> bool:
        """True when no active piece other than ``exclude_id`` uses ``code``."""
        where = [
            ("code", code),
            ("is_active", True),
            ("id", None if exclude_id is None else Op("<>", exclude_id)),
        ]
        return not await self.pieces.exists(where)


__all__ = ["DETAIL_COLUMNS", "JewelryRepository", "escape_like"]

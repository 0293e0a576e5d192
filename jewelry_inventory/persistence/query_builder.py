"""
Parameterized SQL construction for the generic record store.

Every value ends up in the bound parameter tuple; only identifiers (table and
column names, which come from application code) are interpolated, and those
are checked against a strict pattern first.

Filters are expressed with a closed set of condition variants:

    Eq(value)             column = %s
    In(values)            column IN (%s, %s, ...)   -- empty set renders FALSE
    Op(operator, value)   column <operator> %s

Plain Python values are accepted as shorthands and normalized:

    {"status": "In Stock"}                          -> Eq
    {"id": [1, 2, 3]}                               -> In
    {"name": {"operator": "ILIKE", "value": "%r%"}} -> Op
    {"vendor_id": None}                             -> dropped (no constraint)

Example:
    query = build_select(
        "jewelry_pieces",
        where={"status": "In Stock", "sale_price": Op(">=", 100)},
        order_by={"created_at": "DESC"},
        page=Page(limit=20, offset=40),
    )
    await cursor.execute(query.sql, query.params)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

from jewelry_inventory.errors import ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

OPERATORS = frozenset(
    {"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "ILIKE", "NOT LIKE", "NOT ILIKE"}
)
DIRECTIONS = frozenset({"ASC", "DESC"})


@dataclass(frozen=True)
class Query:
    """SQL text plus the parameters bound to its placeholders, in order."""

    sql: str
    params: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class In:
    values: Tuple[Any, ...]

    def __init__(self, values: Iterable[Any]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Op:
    operator: str
    value: Any


Condition = Union[Eq, In, Op]
Where = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]
OrderBy = Mapping[str, str]


@dataclass(frozen=True)
class Page:
    """A bounded window over a result set."""

    limit: int
    offset: int = 0


@dataclass(frozen=True)
class Unbounded:
    """Every matching row, optionally skipping the first ``offset``."""

    offset: int = 0


PageWindow = Union[Page, Unbounded]
UNBOUNDED = Unbounded()


def validate_identifier(name: str, context: str = "column") -> str:
    """Return ``name`` unchanged if it is a plain or alias-qualified identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid {context} name: {name!r}", {context: name})
    return name


def _qualify(column: str, alias: Optional[str]) -> str:
    validate_identifier(column)
    if alias and "." not in column:
        return f"{alias}.{column}"
    return column


def to_condition(value: Any) -> Optional[Condition]:
    """Normalize a filter shorthand into a condition; ``None`` means no constraint."""
    if value is None:
        return None
    if isinstance(value, (Eq, In, Op)):
        return value
    if isinstance(value, Mapping):
        if "operator" not in value:
            raise ValidationError(
                "Filter mappings need an 'operator' key", {"filter": dict(value)}
            )
        return Op(value["operator"], value.get("value"))
    if isinstance(value, (list, tuple, set, frozenset)):
        return In(value)
    return Eq(value)


def _render_condition(column: str, condition: Condition) -> Query:
    if isinstance(condition, In):
        if not condition.values:
            return Query("FALSE")
        placeholders = ", ".join(["%s"] * len(condition.values))
        return Query(f"{column} IN ({placeholders})", condition.values)

    if isinstance(condition, Op):
        operator = " ".join(str(condition.operator).upper().split())
        if operator not in OPERATORS:
            raise ValidationError(
                f"Unsupported operator {condition.operator!r} for {column}",
                {"column": column, "operator": condition.operator},
            )
        if condition.value is None:
            raise ValidationError(
                f"Operator {operator} on {column} needs a value", {"column": column}
            )
        return Query(f"{column} {operator} %s", (condition.value,))

    if condition.value is None:
        raise ValidationError(f"Equality on {column} needs a value", {"column": column})
    return Query(f"{column} = %s", (condition.value,))


def _items(where: Optional[Where]) -> Iterable[Tuple[str, Any]]:
    if not where:
        return ()
    if isinstance(where, Mapping):
        return where.items()
    return where


def build_where(where: Optional[Where], *, alias: Optional[str] = None) -> Query:
    """
    Render a filter specification as an AND-joined clause (without ``WHERE``).

    Clauses keep the iteration order of the specification; an empty
    specification yields an empty clause.
    """
    clauses = []
    params: list[Any] = []
    for column, raw in _items(where):
        condition = to_condition(raw)
        if condition is None:
            continue
        fragment = _render_condition(_qualify(column, alias), condition)
        clauses.append(fragment.sql)
        params.extend(fragment.params)
    return Query(" AND ".join(clauses), tuple(params))


def build_order_by(order_by: Optional[OrderBy], *, alias: Optional[str] = None) -> str:
    """Render a sort specification (without ``ORDER BY``), in mapping order."""
    if not order_by:
        return ""
    parts = []
    for column, direction in order_by.items():
        normalized = str(direction).strip().upper()
        if normalized not in DIRECTIONS:
            raise ValidationError(
                f"Sort direction for {column} must be ASC or DESC, got {direction!r}",
                {"column": column, "direction": direction},
            )
        parts.append(f"{_qualify(column, alias)} {normalized}")
    return ", ".join(parts)


def _page_clause(page: PageWindow) -> Query:
    if isinstance(page, Page):
        if page.limit < 0 or page.offset < 0:
            raise ValidationError("Page limit and offset must not be negative", {"page": page})
        if page.offset:
            return Query("LIMIT %s OFFSET %s", (page.limit, page.offset))
        return Query("LIMIT %s", (page.limit,))
    if isinstance(page, Unbounded):
        if page.offset < 0:
            raise ValidationError("Page offset must not be negative", {"page": page})
        if page.offset:
            return Query("OFFSET %s", (page.offset,))
        return Query("")
    raise ValidationError(f"Unsupported page window: {page!r}")


def build_select(
    table: str,
    where: Optional[Where] = None,
    order_by: Optional[OrderBy] = None,
    page: PageWindow = UNBOUNDED,
    columns: Optional[Sequence[str]] = None,
    *,
    alias: Optional[str] = None,
    joins: Sequence[str] = (),
    extra: Sequence[Query] = (),
) -> Query:
    """
    Build a SELECT statement.

    Parameters
    ----------
    table : str
        Source table.
    where : Where, optional
        Filter specification.
    order_by : OrderBy, optional
        Sort specification.
    page : PageWindow
        ``Page(limit, offset)`` or ``UNBOUNDED`` (every matching row).
    columns : sequence of str, optional
        Projection; defaults to ``*``. Entries may carry ``AS`` aliases.
    alias : str, optional
        Table alias; unqualified filter and sort columns are prefixed with it.
    joins : sequence of str
        Trusted JOIN clauses appended after the table.
    extra : sequence of Query
        Pre-parameterized conditions ANDed after the filter.
    """
    validate_identifier(table, "table")
    if alias:
        validate_identifier(alias, "alias")
    projection = ", ".join(_projection(columns))

    sql = f"SELECT {projection} FROM {table}"
    if alias:
        sql += f" {alias}"
    for join in joins:
        sql += f" {join}"

    params: list[Any] = []
    condition = build_where(where, alias=alias)
    clauses = [condition.sql] if condition.sql else []
    params.extend(condition.params)
    for fragment in extra:
        clauses.append(fragment.sql)
        params.extend(fragment.params)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    ordering = build_order_by(order_by, alias=alias)
    if ordering:
        sql += f" ORDER BY {ordering}"

    window = _page_clause(page)
    if window.sql:
        sql += f" {window.sql}"
        params.extend(window.params)
    return Query(sql, tuple(params))


def _projection(columns: Optional[Sequence[str]]) -> list[str]:
    if not columns:
        return ["*"]
    rendered = []
    for column in columns:
        if column == "*" or column.endswith(".*"):
            if column != "*":
                validate_identifier(column[:-2], "alias")
            rendered.append(column)
            continue
        name, _, label = column.partition(" AS ")
        validate_identifier(name.strip())
        if label:
            validate_identifier(label.strip(), "label")
        rendered.append(column)
    return rendered


def build_count(table: str, where: Optional[Where] = None) -> Query:
    """Build ``SELECT COUNT(*) AS count`` over the filtered table."""
    validate_identifier(table, "table")
    condition = build_where(where)
    sql = f"SELECT COUNT(*) AS count FROM {table}"
    if condition.sql:
        sql += f" WHERE {condition.sql}"
    return Query(sql, condition.params)


def build_insert(table: str, fields: Mapping[str, Any]) -> Query:
    """Build a single-row INSERT returning the stored row."""
    validate_identifier(table, "table")
    if not fields:
        return Query(f"INSERT INTO {table} DEFAULT VALUES RETURNING *")
    columns = [validate_identifier(column) for column in fields]
    placeholders = ", ".join(["%s"] * len(columns))
    return Query(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
        tuple(fields.values()),
    )


def build_update(
    table: str,
    key: Any,
    fields: Mapping[str, Any],
    *,
    primary_key: str = "id",
    touch_column: Optional[str] = "updated_at",
) -> Query:
    """
    Build an UPDATE that patches only ``fields`` on the row ``primary_key = key``.

    ``touch_column`` is stamped with ``CURRENT_TIMESTAMP`` on every update.
    """
    validate_identifier(table, "table")
    validate_identifier(primary_key)
    if primary_key in fields:
        raise ValidationError(
            f"Primary key {primary_key} cannot be patched", {"table": table}
        )
    if touch_column and touch_column in fields:
        raise ValidationError(
            f"{touch_column} is stamped automatically and cannot be patched", {"table": table}
        )
    assignments = [f"{validate_identifier(column)} = %s" for column in fields]
    if touch_column:
        assignments.append(f"{validate_identifier(touch_column)} = CURRENT_TIMESTAMP")
    if not assignments:
        raise ValidationError(f"Nothing to update on {table}", {"table": table})
    return Query(
        f"UPDATE {table} SET {', '.join(assignments)} "
        f"WHERE {primary_key} = %s RETURNING *",
        (*fields.values(), key),
    )


def build_delete(table: str, where: Where) -> Query:
    """Build a filtered DELETE; an empty filter is refused."""
    validate_identifier(table, "table")
    condition = build_where(where)
    if not condition.sql:
        raise ValidationError(f"Refusing to delete from {table} without a filter")
    return Query(f"DELETE FROM {table} WHERE {condition.sql}", condition.params)


__all__ = [
    "Condition",
    "DIRECTIONS",
    "Eq",
    "In",
    "OPERATORS",
    "Op",
    "OrderBy",
    "Page",
    "PageWindow",
    "Query",
    "UNBOUNDED",
    "Unbounded",
    "Where",
    "build_count",
    "build_delete",
    "build_insert",
    "build_order_by",
    "build_select",
    "build_update",
    "build_where",
    "to_condition",
    "validate_identifier",
]

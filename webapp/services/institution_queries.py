"""
Institution Queries - filtered, sorted, paginated reads of the institutions table.

The filter lowering (descriptor -> SQL predicate) is pure and independent of
any session so it can be tested on its own. Every datastore failure degrades
to an empty page instead of propagating.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import Column, Date, DateTime, Float, Integer, Numeric, Select, String, cast, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from webapp.models import Institution
from webapp.services.cache import NullCache, TTLCache, cached_call
from webapp.services.table_params import (
    FilterDescriptor,
    FilterOperator,
    PageRequest,
    SortDescriptor,
    valid_filters,
)

log = logging.getLogger(__name__)

INSTITUTIONS_TABLE = Institution.__table__
DEFAULT_SORT = (SortDescriptor(id="asset", desc=True),)
CACHE_TTL = 60
CACHE_TAGS = ("institutions",)


@dataclass
class PageResult:
    rows: list[dict] = field(default_factory=list)
    page_count: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------

def column_kind(column: Column) -> str:
    """'date', 'number' or 'text' for a table column."""
    if isinstance(column.type, (DateTime, Date)):
        return "date"
    if isinstance(column.type, (Integer, Float, Numeric)):
        return "number"
    return "text"


def get_column(column_id: str) -> Column | None:
    return INSTITUTIONS_TABLE.c.get(column_id)


def resolve_columns(column_ids: tuple[str, ...] | list[str]) -> list[Column]:
    """Known columns in request order; unknown ids are logged and dropped."""
    cols = []
    for cid in column_ids:
        col = get_column(cid)
        if col is None:
            log.warning("Dropping unknown column %r from selection", cid)
            continue
        cols.append(col)
    return cols


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def to_iso_instant(raw: str) -> str | None:
    """Millisecond epoch (or ISO string) -> ISO-8601 UTC instant; None if unparseable."""
    s = str(raw).strip()
    try:
        if s.lstrip("-").isdigit():
            dt = datetime.fromtimestamp(int(s) / 1000, tz=timezone.utc)
        else:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    return dt.isoformat()


def coerce_value(column: Column, raw: str) -> Any:
    """Convert a raw query-string value to the column's Python type. Raises ValueError."""
    kind = column_kind(column)
    if kind == "date":
        iso = to_iso_instant(raw)
        if iso is None:
            raise ValueError(f"not a timestamp: {raw!r}")
        return datetime.fromisoformat(iso)
    if kind == "number":
        s = str(raw).strip()
        if isinstance(column.type, Integer):
            try:
                return int(s)
            except ValueError:
                pass
        return float(s)
    return raw


# ---------------------------------------------------------------------------
# Filter lowering
# ---------------------------------------------------------------------------

_COMPARISONS: dict[FilterOperator, Callable[[Any, Any], ColumnElement]] = {
    FilterOperator.EQ: lambda c, v: c == v,
    FilterOperator.NE: lambda c, v: c != v,
    FilterOperator.GT: lambda c, v: c > v,
    FilterOperator.GTE: lambda c, v: c >= v,
    FilterOperator.LT: lambda c, v: c < v,
    FilterOperator.LTE: lambda c, v: c <= v,
}


def build_predicate(descriptor: FilterDescriptor, column: Column | None = None) -> ColumnElement | None:
    """Lower one filter descriptor to a SQL predicate, or None to skip it."""
    if descriptor.is_empty():
        return None
    if column is None:
        column = get_column(descriptor.column_id)
    if column is None:
        log.warning("Skipping filter on unknown column %r", descriptor.column_id)
        return None

    op = descriptor.operator
    value = descriptor.value

    if op == FilterOperator.IN_ARRAY:
        if not isinstance(value, list):
            log.warning("'inArray' operator requires an array value for column %s", column.name)
            return None
        try:
            items = [coerce_value(column, v) for v in value if str(v).strip()]
        except ValueError as e:
            log.warning("Skipping inArray filter on %s: %s", column.name, e)
            return None
        return column.in_(items)

    if isinstance(value, list):
        log.warning("Operator %r requires a scalar value for column %s", op.value, column.name)
        return None

    if op == FilterOperator.ILIKE:
        target = column if column_kind(column) == "text" else cast(column, String)
        return target.ilike(f"%{value}%")

    compare = _COMPARISONS.get(op)
    if compare is None:
        log.warning("Unsupported filter operator: %s", op)
        return None
    try:
        coerced = coerce_value(column, value)
    except ValueError as e:
        log.warning("Skipping %s filter on %s: %s", op.value, column.name, e)
        return None
    return compare(column, coerced)


def apply_filters(query: Select, filters: tuple[FilterDescriptor, ...], join_operator: str = "and") -> Select:
    predicates = [p for p in (build_predicate(f) for f in valid_filters(filters)) if p is not None]
    if not predicates:
        return query
    if join_operator == "or":
        return query.where(or_(*predicates))
    for pred in predicates:
        query = query.where(pred)
    return query


def apply_sort(query: Select, sort: tuple[SortDescriptor, ...]) -> Select:
    """ORDER BY each descriptor; nulls sort as the smallest value."""
    clauses = []
    for item in sort or DEFAULT_SORT:
        col = get_column(item.column_id)
        if col is None:
            log.warning("Skipping sort on unknown column %r", item.column_id)
            continue
        clauses.append(col.desc().nulls_last() if item.desc else col.asc().nulls_first())
    if not clauses:
        col = get_column(DEFAULT_SORT[0].column_id)
        clauses.append(col.desc().nulls_last())
    return query.order_by(*clauses)


# ---------------------------------------------------------------------------
# Page fetch
# ---------------------------------------------------------------------------

def fetch_page(db: Session, request: PageRequest) -> PageResult:
    """One filtered/sorted/paginated read plus its total count."""
    try:
        cols = resolve_columns(request.columns)
        base = apply_filters(select(*cols), request.filters, request.join_operator)

        total = db.execute(select(func.count()).select_from(base.subquery())).scalar() or 0
        page_count = math.ceil(total / request.per_page)

        query = apply_sort(base, request.sort).offset(request.offset).limit(request.per_page)
        rows = [dict(r) for r in db.execute(query).mappings().all()]
        return PageResult(rows=rows, page_count=page_count, total=total)
    except Exception as e:
        db.rollback()
        log.error("Error fetching institutions: %s", e, exc_info=True)
        return PageResult()


def get_institutions(db: Session, request: PageRequest, cache: TTLCache | NullCache | None = None) -> PageResult:
    """Cached wrapper around fetch_page."""
    cache = cache if cache is not None else NullCache()
    request = request.model_copy(update={"filters": valid_filters(request.filters)})
    try:
        return cached_call(
            cache,
            "get_institutions",
            request.cache_params(),
            lambda: fetch_page(db, request),
            ttl=CACHE_TTL,
            tags=CACHE_TAGS,
        )
    except Exception as e:
        log.error("Error executing cached get_institutions: %s", e, exc_info=True)
        return PageResult()

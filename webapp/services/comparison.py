"""
Comparison service - pivot one taxonomy section against institution/period pairs.

Steps for a comparison page:
  1. Flatten the chosen section into ordered rows (depth + ancestor path)
  2. Look up field metadata for every row; rows without metadata are dropped
  3. Look up the reported value for every enriched row x pair
  4. Keep the first row per field_id, and the value rows at the same indices

Lookups in steps 2 and 3 fan out over a thread pool, one DB session per task,
and are reassembled in index order. A failed lookup degrades only its own row
or cell.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from webapp.models import Field, Institution, ReportedValue, ReportPeriod
from webapp.services.cache import NullCache, TTLCache, cached_call
from webapp.services.field_tree import FlattenedFieldRow, Section, flatten_section

log = logging.getLogger(__name__)

FIELD_CACHE_TTL = 3600
VALUE_CACHE_TTL = 300
OPTIONS_CACHE_TTL = 600

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class FieldMeta:
    field_id: int
    field_name: str
    title: str | None = None
    description: str | None = None
    title_alt: str | None = None
    description_alt: str | None = None

    @property
    def label(self) -> str:
        return self.title_alt or self.title or self.field_name

    @property
    def help_text(self) -> str:
        return self.description_alt or self.description or "No description available."


@dataclass(frozen=True)
class SelectedPair:
    institution_id: int | None = None
    report_period_id: int | None = None
    institution_name: str | None = None
    report_date: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.institution_id is not None and self.report_period_id is not None


@dataclass(frozen=True)
class ComparisonRow:
    code: str
    depth: int
    has_children: bool
    path: tuple[str, ...]
    field: FieldMeta


@dataclass
class ComparisonResult:
    rows: list[ComparisonRow] = field(default_factory=list)
    values: list[list[float | None]] = field(default_factory=list)
    pairs: list[SelectedPair] = field(default_factory=list)
    dropped_rows: int = 0
    duplicate_rows: int = 0
    failed_cells: int = 0


# =========================================================================
# Single lookups
# =========================================================================

def fetch_field_by_name(db: Session, field_name: str) -> FieldMeta | None:
    """Field metadata by unique code. Raises on datastore errors."""
    f = db.execute(select(Field).where(Field.field_name == field_name)).scalar_one_or_none()
    if f is None:
        return None
    return FieldMeta(
        field_id=f.field_id,
        field_name=f.field_name,
        title=f.title,
        description=f.description,
        title_alt=f.title_alt,
        description_alt=f.description_alt,
    )


def fetch_reported_value(db: Session, report_period_id: int, field_id: int, institution_id: int) -> float | None:
    """Reported value or None when nothing was filed. Raises on datastore errors."""
    return db.execute(
        select(ReportedValue.value)
        .where(ReportedValue.report_period_id == report_period_id)
        .where(ReportedValue.field_id == field_id)
        .where(ReportedValue.institution_id == institution_id)
        .limit(1)
    ).scalar_one_or_none()


def get_field_by_name(db: Session, field_name: str) -> FieldMeta | None:
    try:
        return fetch_field_by_name(db, field_name)
    except Exception as e:
        log.error('Error fetching field by name "%s": %s', field_name, e)
        return None


def get_reported_value(db: Session, report_period_id: int, field_id: int, institution_id: int) -> float | None:
    try:
        return fetch_reported_value(db, report_period_id, field_id, institution_id)
    except Exception as e:
        log.error(
            "Error fetching reported value for report_period_id %s, field_id %s, institution_id %s: %s",
            report_period_id, field_id, institution_id, e,
        )
        return None


# =========================================================================
# Selector options
# =========================================================================

def get_institution_options(db: Session, cache: TTLCache | NullCache | None = None, limit: int = 50) -> list[dict]:
    """Largest institutions by deposits, for the pair selectors."""
    cache = cache if cache is not None else NullCache()

    def _fetch() -> list[dict]:
        rows = db.execute(
            select(Institution.id, Institution.name, Institution.cert, Institution.dep)
            .where(Institution.dep.is_not(None))
            .order_by(Institution.dep.desc())
            .limit(limit)
        ).mappings().all()
        return [dict(r) for r in rows]

    try:
        return cached_call(cache, "get_institution_options", {"limit": limit}, _fetch,
                           ttl=OPTIONS_CACHE_TTL, tags=("institutions",))
    except Exception as e:
        db.rollback()
        log.error("Error fetching institutions: %s", e)
        return []


def include_selected_institutions(
    db: Session, options: list[dict], selected_ids: Iterable[int | None],
) -> list[dict]:
    """Options plus any selected institution outside the top-by-deposits list."""
    known = {o["id"] for o in options}
    missing = sorted({i for i in selected_ids if i is not None and i not in known})
    if not missing:
        return options
    try:
        rows = db.execute(
            select(Institution.id, Institution.name, Institution.cert, Institution.dep)
            .where(Institution.id.in_(missing))
            .order_by(Institution.name)
        ).mappings().all()
    except Exception as e:
        db.rollback()
        log.error("Error fetching selected institutions %s: %s", missing, e)
        return options
    return options + [dict(r) for r in rows]


def get_report_periods(db: Session, cache: TTLCache | NullCache | None = None, limit: int = 20) -> list[dict]:
    cache = cache if cache is not None else NullCache()

    def _fetch() -> list[dict]:
        rows = db.execute(
            select(ReportPeriod.report_period_id, ReportPeriod.report_date)
            .order_by(ReportPeriod.report_date.desc())
            .limit(limit)
        ).mappings().all()
        return [dict(r) for r in rows]

    try:
        return cached_call(cache, "get_report_periods", {"limit": limit}, _fetch,
                           ttl=OPTIONS_CACHE_TTL, tags=("report_periods",))
    except Exception as e:
        db.rollback()
        log.error("Error fetching report_periods: %s", e)
        return []


def build_selected_pairs(
    institution_ids: list[int | None],
    report_period_ids: list[int | None],
    institutions: Iterable[dict] = (),
    report_periods: Iterable[dict] = (),
) -> list[SelectedPair]:
    """Zip the two id lists up to the longer one; missing ids stay None."""
    names = {i["id"]: i.get("name") for i in institutions}
    dates = {p["report_period_id"]: p.get("report_date") for p in report_periods}
    n = max(len(institution_ids), len(report_period_ids))
    pairs = []
    for i in range(n):
        inst_id = institution_ids[i] if i < len(institution_ids) else None
        period_id = report_period_ids[i] if i < len(report_period_ids) else None
        pairs.append(SelectedPair(
            institution_id=inst_id,
            report_period_id=period_id,
            institution_name=names.get(inst_id),
            report_date=dates.get(period_id),
        ))
    return pairs


# =========================================================================
# Fan-out helpers
# =========================================================================

def _in_session(session_factory: SessionFactory, fn: Callable[..., Any], *args: Any) -> Any:
    db = session_factory()
    try:
        return fn(db, *args)
    finally:
        db.close()


def _cached_field(cache, code: str) -> Callable[[Session], FieldMeta | None]:
    def _lookup(db: Session) -> FieldMeta | None:
        return cached_call(cache, "get_field_by_name", {"field_name": code},
                           lambda: fetch_field_by_name(db, code),
                           ttl=FIELD_CACHE_TTL, tags=("fields",))
    return _lookup


def _cached_value(cache, period_id: int, field_id: int, inst_id: int) -> Callable[[Session], float | None]:
    def _lookup(db: Session) -> float | None:
        params = {"report_period_id": period_id, "field_id": field_id, "institution_id": inst_id}
        return cached_call(cache, "get_reported_value", params,
                           lambda: fetch_reported_value(db, period_id, field_id, inst_id),
                           ttl=VALUE_CACHE_TTL, tags=("reported_values",))
    return _lookup


def _result_or_none(future: Future | None, what: str) -> tuple[Any, bool]:
    """(result, failed) for a future; a None future is an intentionally empty cell."""
    if future is None:
        return None, False
    try:
        return future.result(), False
    except Exception as e:
        log.error("Lookup failed for %s: %s", what, e)
        return None, True


# =========================================================================
# Pivot
# =========================================================================

def dedupe_first(rows: list[ComparisonRow]) -> list[int]:
    """Indices of the first row per field_id, in order."""
    seen: set[int] = set()
    keep: list[int] = []
    for i, row in enumerate(rows):
        if row.field.field_id in seen:
            continue
        seen.add(row.field.field_id)
        keep.append(i)
    return keep


def build_comparison(
    session_factory: SessionFactory,
    taxonomy: Iterable[Section],
    section_name: str | None,
    pairs: list[SelectedPair],
    cache: TTLCache | NullCache | None = None,
    max_workers: int = 8,
) -> ComparisonResult:
    """Rows and value matrix for one section against the selected pairs."""
    cache = cache if cache is not None else NullCache()
    flat: list[FlattenedFieldRow] = flatten_section(taxonomy, section_name)
    result = ComparisonResult(pairs=list(pairs))
    if not flat:
        return result

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        meta_futures = [
            pool.submit(_in_session, session_factory, _cached_field(cache, row.code))
            for row in flat
        ]
        enriched: list[ComparisonRow] = []
        for row, fut in zip(flat, meta_futures):
            meta, _failed = _result_or_none(fut, f"field {row.code}")
            if meta is None:
                result.dropped_rows += 1
                continue
            enriched.append(ComparisonRow(
                code=row.code, depth=row.depth, has_children=row.has_children,
                path=row.path, field=meta,
            ))

        value_futures: list[list[Future | None]] = []
        for row in enriched:
            cells: list[Future | None] = []
            for pair in pairs:
                if pair.is_complete:
                    cells.append(pool.submit(
                        _in_session, session_factory,
                        _cached_value(cache, pair.report_period_id, row.field.field_id, pair.institution_id),
                    ))
                else:
                    cells.append(None)
            value_futures.append(cells)

        all_values: list[list[float | None]] = []
        for row, cells in zip(enriched, value_futures):
            vals = []
            for j, fut in enumerate(cells):
                val, failed = _result_or_none(fut, f"value {row.code} pair {j}")
                if failed:
                    result.failed_cells += 1
                vals.append(val)
            all_values.append(vals)

    keep = dedupe_first(enriched)
    result.duplicate_rows = len(enriched) - len(keep)
    result.rows = [enriched[i] for i in keep]
    result.values = [all_values[i] for i in keep]

    if result.dropped_rows or result.failed_cells:
        log.warning(
            "Comparison %r: %d of %d rows had no metadata, %d value lookups failed",
            section_name, result.dropped_rows, len(flat), result.failed_cells,
        )
    return result

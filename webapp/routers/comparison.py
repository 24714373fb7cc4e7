"""
Comparison router - side-by-side financials for institution/report-period pairs.

Routes:
  GET /comparison/            -> pivot table for one field section
  GET /api/v1/comparison      -> same data as JSON (rows, values, diagnostics)

Query string: repeated institutionId / reportPeriodId (paired by position),
fieldGroup (section name), repeated expanded (codes whose children show).
"""
from __future__ import annotations

import logging
import urllib.parse

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from webapp.config import COMPARISON_WORKERS, TEMPLATES_DIR
from webapp.dependencies import get_cache, get_db, get_session_factory, get_taxonomy
from webapp.services.comparison import (
    ComparisonResult,
    build_comparison,
    build_selected_pairs,
    get_institution_options,
    get_report_periods,
    include_selected_institutions,
)
from webapp.services.field_tree import is_visible, section_names, toggle_expanded

log = logging.getLogger(__name__)
router = APIRouter(tags=["comparison"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _parse_ids(raw: list[str]) -> list[int | None]:
    """Positional ids; blanks and junk keep their slot as None."""
    out: list[int | None] = []
    for val in raw:
        try:
            out.append(int(str(val).strip()))
        except (TypeError, ValueError):
            out.append(None)
    return out


def _trim_empty_tail(inst_ids: list[int | None], period_ids: list[int | None]) -> tuple[list, list]:
    n = max(len(inst_ids), len(period_ids))
    inst_ids = inst_ids + [None] * (n - len(inst_ids))
    period_ids = period_ids + [None] * (n - len(period_ids))
    while n and inst_ids[n - 1] is None and period_ids[n - 1] is None:
        n -= 1
    return inst_ids[:n], period_ids[:n]


def format_value(val: float | None) -> str:
    if val is None:
        return ""
    if float(val).is_integer():
        return f"{int(val):,}"
    return f"{val:,.2f}"


def _qs(inst_ids, period_ids, field_group: str, expanded: list[str]) -> str:
    params: list[tuple[str, str]] = []
    if field_group:
        params.append(("fieldGroup", field_group))
    for inst_id, period_id in zip(inst_ids, period_ids):
        params.append(("institutionId", "" if inst_id is None else str(inst_id)))
        params.append(("reportPeriodId", "" if period_id is None else str(period_id)))
    params.extend(("expanded", code) for code in expanded)
    return urllib.parse.urlencode(params)


def _load(db, session_factory, cache, taxonomy, institution_id, report_period_id, field_group):
    inst_ids, period_ids = _trim_empty_tail(_parse_ids(institution_id), _parse_ids(report_period_id))
    institutions = include_selected_institutions(db, get_institution_options(db, cache), inst_ids)
    periods = get_report_periods(db, cache)
    pairs = build_selected_pairs(inst_ids, period_ids, institutions, periods)
    result = build_comparison(
        session_factory, taxonomy, field_group, pairs,
        cache=cache, max_workers=COMPARISON_WORKERS,
    )
    return inst_ids, period_ids, institutions, periods, result


#  Pages

@router.get("/comparison/")
def comparison_page(
    request: Request,
    institution_id: list[str] = Query(default=[], alias="institutionId"),
    report_period_id: list[str] = Query(default=[], alias="reportPeriodId"),
    field_group: str = Query(default="", alias="fieldGroup"),
    expanded: list[str] = Query(default=[]),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    cache=Depends(get_cache),
    taxonomy=Depends(get_taxonomy),
):
    """Comparison table: field rows x selected pairs, with expandable hierarchy."""
    inst_ids, period_ids, institutions, periods, result = _load(
        db, session_factory, cache, taxonomy, institution_id, report_period_id, field_group,
    )
    expanded_set = set(expanded)

    rows = []
    for row, vals in zip(result.rows, result.values):
        if not is_visible(row, expanded_set):
            continue
        rows.append({
            "code": row.code,
            "label": row.field.label,
            "help": row.field.help_text,
            "depth": row.depth,
            "has_children": row.has_children,
            "is_expanded": row.code in expanded_set,
            "toggle_qs": _qs(inst_ids, period_ids, field_group, toggle_expanded(expanded, row.code)),
            "values": [format_value(v) for v in vals],
        })

    return templates.TemplateResponse(request, "comparison.html", {
        "rows": rows,
        "pairs": result.pairs,
        "institutions": institutions,
        "report_periods": periods,
        "field_groups": section_names(taxonomy),
        "field_group": field_group,
        "expanded": expanded,
        "dropped_rows": result.dropped_rows,
        "failed_cells": result.failed_cells,
    })


#  API endpoints

def _result_json(result: ComparisonResult) -> dict:
    return {
        "pairs": [
            {
                "institutionId": p.institution_id,
                "reportPeriodId": p.report_period_id,
                "institutionName": p.institution_name,
                "reportDate": p.report_date,
            }
            for p in result.pairs
        ],
        "rows": [
            {
                "code": r.code,
                "depth": r.depth,
                "hasChildren": r.has_children,
                "path": list(r.path),
                "fieldId": r.field.field_id,
                "title": r.field.label,
                "description": r.field.help_text,
            }
            for r in result.rows
        ],
        "values": result.values,
        "diagnostics": {
            "droppedRows": result.dropped_rows,
            "duplicateRows": result.duplicate_rows,
            "failedCells": result.failed_cells,
        },
    }


@router.get("/api/v1/comparison")
def api_comparison(
    institution_id: list[str] = Query(default=[], alias="institutionId"),
    report_period_id: list[str] = Query(default=[], alias="reportPeriodId"),
    field_group: str = Query(default="", alias="fieldGroup"),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    cache=Depends(get_cache),
    taxonomy=Depends(get_taxonomy),
):
    _ids, _periods, _insts, _pers, result = _load(
        db, session_factory, cache, taxonomy, institution_id, report_period_id, field_group,
    )
    return JSONResponse(_result_json(result))

"""
Institutions router - paginated, filterable institutions table.

Routes:
  GET /institutions/          -> redirect to /institutions/table
  GET /institutions/table     -> server-rendered data table
  GET /api/v1/institutions    -> same query as JSON
"""
from __future__ import annotations

import json
import logging
import urllib.parse
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from webapp.config import TEMPLATES_DIR
from webapp.dependencies import get_cache, get_db
from webapp.services.institution_queries import column_kind, get_column, get_institutions
from webapp.services.table_params import ID_COLUMN, PageRequest, parse_page_request

log = logging.getLogger(__name__)
router = APIRouter(tags=["institutions"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

COLUMN_LABELS = {
    "cert": "FDIC Cert #",
    "name": "Institution Name",
    "active": "Status",
    "address": "Street Address",
    "city": "City",
    "county": "County",
    "stalp": "State Alpha Code",
    "stname": "State Name",
    "zip": "Zip Code",
    "webaddr": "Website",
    "bkclass": "Class",
    "cb": "Community Bank",
    "charter": "Charter Number",
    "chrtagnt": "Chartering Agency",
    "fedchrtr": "Federal Charter",
    "stchrtr": "State Charter",
    "regagnt": "Primary Regulator",
    "mutual": "Ownership Type",
    "specgrp": "Asset Concentration Hierarchy Code",
    "specgrpn": "Specialization Group Name",
    "namehcr": "Holding Company Name",
    "cbsa": "CBSA Name",
    "fed_rssd": "Federal Reserve RSSD",
    "asset": "Total Assets",
    "dep": "Total Deposits",
    "depdom": "Domestic Deposits",
    "eq": "Equity Capital",
    "netinc": "Net Income",
    "netincq": "Net Income Quarterly",
    "roa": "Return on Assets",
    "roaq": "Quarterly Return on Assets",
    "roe": "Return on Equity",
    "roeq": "Quarterly Return on Equity",
    "offices": "Offices",
    "offdom": "Domestic Offices",
    "offfor": "Foreign Offices",
    "estymd": "Established",
    "insdate": "Deposit Insurance Date",
    "effdate": "Last Structure Change Effective Date",
    "endefymd": "End Date",
    "repdte": "Report Date",
    "dateupdt": "Last Update Date",
}

# Amounts are reported in thousands of USD
_CURRENCY_COLUMNS = {"asset", "dep", "depdom", "eq", "netinc", "netincq"}
_PERCENT_COLUMNS = {"roa", "roaq", "roe", "roeq"}
_FLAG_COLUMNS = {"active", "cb", "fedchrtr", "stchrtr"}

FILTER_OPERATORS = [
    ("iLike", "contains"),
    ("eq", "is"),
    ("ne", "is not"),
    ("gt", ">"),
    ("gte", ">="),
    ("lt", "<"),
    ("lte", "<="),
    ("inArray", "is any of"),
]


def format_cell(column_id: str, value) -> str:
    """Display text for one table cell."""
    if value is None or value == "":
        return "-"
    if column_id in _CURRENCY_COLUMNS:
        try:
            return f"${float(value) * 1000:,.0f}"
        except (TypeError, ValueError):
            return "Invalid Value"
    if column_id in _PERCENT_COLUMNS:
        try:
            return f"{float(value):.2f}%"
        except (TypeError, ValueError):
            return "Invalid Value"
    if column_id in _FLAG_COLUMNS:
        return {"1": "Yes", "0": "No"}.get(str(value), str(value))
    if isinstance(value, (datetime, date)):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, float):
        return f"{value:,.0f}"
    return str(value)


def _display_columns(search: PageRequest) -> list[dict]:
    cols = []
    for cid in search.columns:
        if cid == ID_COLUMN:
            continue
        col = get_column(cid)
        if col is None:
            continue
        cols.append({"id": cid, "label": COLUMN_LABELS.get(cid, cid), "kind": column_kind(col)})
    return cols


def _sort_direction(search: PageRequest, column_id: str) -> str:
    for item in search.sort:
        if item.column_id == column_id:
            return "desc" if item.desc else "asc"
    return ""


def _build_qs(search: PageRequest, **overrides) -> str:
    params = search.cache_params()
    qs_params = {
        "page": overrides.get("page", search.page),
        "perPage": search.per_page,
        "columns": ",".join(c for c in search.columns if c != ID_COLUMN),
        "joinOperator": search.join_operator,
    }
    if params["filters"]:
        qs_params["filters"] = _dumps(params["filters"])
    sort = overrides.get("sort", params["sort"])
    if sort:
        qs_params["sort"] = _dumps(sort)
    return urllib.parse.urlencode(qs_params)


def _dumps(obj) -> str:
    return json.dumps(obj, separators=(",", ":"))


def _parse_search(page, per_page, columns, filters, sort, join_operator) -> PageRequest:
    return parse_page_request(
        page=page,
        per_page=per_page,
        columns=columns,
        filters=filters,
        sort=sort,
        join_operator=join_operator,
    )


#  Pages

@router.get("/institutions/")
def institutions_index():
    return RedirectResponse("/institutions/table", status_code=302)


@router.get("/institutions/table")
def institutions_table(
    request: Request,
    page: str = Query(default="1"),
    per_page: str = Query(default="10", alias="perPage"),
    columns: str = Query(default=""),
    filters: str = Query(default=""),
    sort: str = Query(default=""),
    join_operator: str = Query(default="and", alias="joinOperator"),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Institutions data table driven entirely by the query string."""
    search = _parse_search(page, per_page, columns, filters, sort, join_operator)
    result = get_institutions(db, search, cache)
    display_columns = _display_columns(search)

    rows = [
        {
            "id": r.get(ID_COLUMN),
            "cells": [format_cell(c["id"], r.get(c["id"])) for c in display_columns],
        }
        for r in result.rows
    ]
    out_of_range = result.page_count > 0 and search.page > result.page_count

    sort_links = {}
    for c in display_columns:
        current = _sort_direction(search, c["id"])
        next_sort = [{"id": c["id"], "desc": current != "desc"}]
        sort_links[c["id"]] = {"direction": current, "qs": _build_qs(search, page=1, sort=next_sort)}

    return templates.TemplateResponse(request, "institutions/table.html", {
        "search": search,
        "rows": rows,
        "columns": display_columns,
        "available_columns": [
            {"id": cid, "label": label, "selected": cid in search.columns}
            for cid, label in COLUMN_LABELS.items()
        ],
        "filter_operators": FILTER_OPERATORS,
        "active_filters": search.cache_params()["filters"],
        "total_results": result.total,
        "total_pages": result.page_count,
        "out_of_range": out_of_range,
        "prev_qs": _build_qs(search, page=search.page - 1) if search.page > 1 else "",
        "next_qs": _build_qs(search, page=search.page + 1) if search.page < result.page_count else "",
        "last_page_qs": _build_qs(search, page=max(1, result.page_count)),
        "sort_links": sort_links,
    })


#  API endpoints

@router.get("/api/v1/institutions")
def api_institutions(
    page: str = Query(default="1"),
    per_page: str = Query(default="10", alias="perPage"),
    columns: str = Query(default=""),
    filters: str = Query(default=""),
    sort: str = Query(default=""),
    join_operator: str = Query(default="and", alias="joinOperator"),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    search = _parse_search(page, per_page, columns, filters, sort, join_operator)
    result = get_institutions(db, search, cache)
    return JSONResponse(jsonable_encoder({
        "data": result.rows,
        "pageCount": result.page_count,
        "total": result.total,
        "page": search.page,
        "perPage": search.per_page,
    }))

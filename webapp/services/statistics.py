"""
Dashboard statistics - aggregate figures and chart data for the institutions dashboard.

Headline totals, histograms and market-share splits come from set-returning
functions in the data schema. Category breakdowns are grouped counts on the
institutions table. Every getter is cached and falls back to an empty/zero
result on any datastore error.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from webapp.config import DB_SCHEMA
from webapp.models import Institution
from webapp.services.cache import NullCache, TTLCache, cached_call

log = logging.getLogger(__name__)

BANK_CLASS_DESCRIPTIONS = {
    "N": "National Charter, Fed Member (OCC)",
    "NM": "State Charter, Fed Non-Member (FDIC)",
    "SM": "State Charter, Fed Member (FRB)",
    "SB": "Federal Savings Banks",
    "SA": "Savings Associations",
    "OI": "Insured U.S. Branch of Foreign Institution",
    "unknown": "Unknown Classification",
}

# column -> (cache tag, title)
CATEGORY_BREAKDOWNS = {
    "bkclass": ("bankClass", "Bank Class"),
    "cb": ("communityBank", "Community Bank"),
    "regagnt": ("regulatorAgent", "Primary Regulator"),
    "fedchrtr": ("federalCharter", "Federal Charter"),
    "stchrtr": ("stateCharter", "State Charter"),
    "chrtagnt": ("charteringAgency", "Chartering Agency"),
    "specgrpn": ("specialization", "Specialization"),
}

MARKET_SHARE_FUNCTIONS = {
    "assets": "get_market_share_of_top_assets",
    "deposits": "get_market_share_of_top_deposits",
    "equity": "get_market_share_of_top_eq",
    "net_income": "get_market_share_of_top_netinc",
}

_MARKET_SHARE_COLUMNS = ("group_name", "percentage_of_total", "bank_count")


@dataclass
class KeyStatistics:
    total_institutions: int = 0
    total_assets: float = 0.0
    total_deposits: float = 0.0
    total_branches: int = 0


# ---------------------------------------------------------------------------
# Datastore access
# ---------------------------------------------------------------------------

def call_function(db: Session, name: str, columns: tuple[str, ...]) -> list[dict]:
    """Rows from a set-returning function ``<schema>.<name>()``."""
    fn = getattr(getattr(func, DB_SCHEMA), name)().table_valued(*columns)
    try:
        return [dict(r) for r in db.execute(select(fn)).mappings().all()]
    except Exception:
        db.rollback()
        raise


def _num(val: Any, default: float = 0) -> float:
    try:
        out = float(val)
    except (TypeError, ValueError):
        return default
    return default if pd.isna(out) else out


def fetch_key_statistics(db: Session) -> KeyStatistics:
    try:
        rows = call_function(db, "get_key_statistics",
                             ("total_institutions", "total_assets", "total_deposits", "total_branches"))
    except Exception as e:
        log.error("Error fetching key statistics: %s", e)
        return KeyStatistics()
    if not rows:
        log.error("No data returned from get_key_statistics")
        return KeyStatistics()
    raw = rows[0]
    return KeyStatistics(
        total_institutions=int(_num(raw.get("total_institutions"))),
        total_assets=_num(raw.get("total_assets")),
        total_deposits=_num(raw.get("total_deposits")),
        total_branches=int(_num(raw.get("total_branches"))),
    )


def fetch_age_distribution(db: Session) -> list[dict]:
    try:
        rows = call_function(db, "get_bank_age_distribution", ("age_range", "count"))
    except Exception as e:
        log.error("Error fetching bank age distribution: %s", e)
        return []
    return [{"age_range": str(r.get("age_range") or "Unknown"), "count": int(_num(r.get("count")))} for r in rows]


def fetch_establishment_trend(db: Session) -> list[dict]:
    try:
        rows = call_function(db, "get_bank_establishment_trend", ("year", "count"))
    except Exception as e:
        log.error("Error fetching bank establishment trend: %s", e)
        return []
    return [{"year": str(r.get("year") or "Unknown"), "count": int(_num(r.get("count")))} for r in rows]


def fetch_market_share(db: Session, metric: str) -> list[dict]:
    fn_name = MARKET_SHARE_FUNCTIONS[metric]
    try:
        rows = call_function(db, fn_name, _MARKET_SHARE_COLUMNS)
    except Exception as e:
        log.error("Error fetching %s: %s", fn_name, e)
        return []
    return [
        {
            "group_name": str(r.get("group_name") or ""),
            "percentage_of_total": _num(r.get("percentage_of_total")),
            "bank_count": int(_num(r.get("bank_count"))),
        }
        for r in rows
    ]


def fetch_category_counts(db: Session, column: str) -> dict[str, int]:
    """Institution counts grouped by one column; NULL groups become 'unknown'."""
    col = Institution.__table__.c[column]
    try:
        rows = db.execute(select(col, func.count()).group_by(col)).all()
    except Exception as e:
        db.rollback()
        log.error("Error fetching %s breakdown: %s", column, e)
        return {}
    counts: dict[str, int] = {}
    for key, count in rows:
        label = "unknown" if key is None or key == "" else str(key)
        counts[label] = counts.get(label, 0) + int(count)
    return counts


# ---------------------------------------------------------------------------
# Cached getters
# ---------------------------------------------------------------------------

def _cached(cache, name: str, fetch, ttl: int, tags: tuple[str, ...], default):
    cache = cache if cache is not None else NullCache()
    try:
        return cached_call(cache, name, None, fetch, ttl=ttl, tags=tags)
    except Exception as e:
        log.error("Error executing cached %s: %s", name, e)
        return default


def get_key_statistics(db: Session, cache: TTLCache | NullCache | None = None) -> KeyStatistics:
    return _cached(cache, "key_statistics", lambda: fetch_key_statistics(db),
                   3600, ("statistics", "institutions"), KeyStatistics())


def get_age_distribution(db: Session, cache: TTLCache | NullCache | None = None) -> list[dict]:
    return _cached(cache, "bank_age_distribution", lambda: fetch_age_distribution(db),
                   3600, ("statistics", "institutions", "ageDistribution"), [])


def get_establishment_trend(db: Session, cache: TTLCache | NullCache | None = None) -> list[dict]:
    return _cached(cache, "bank_establishment_trend", lambda: fetch_establishment_trend(db),
                   10, ("statistics", "institutions", "establishmentTrend"), [])


def get_market_share(db: Session, metric: str, cache: TTLCache | NullCache | None = None) -> list[dict]:
    return _cached(cache, f"market_share_{metric}", lambda: fetch_market_share(db, metric),
                   3600, ("statistics", "institutions", "marketShare"), [])


def get_category_counts(db: Session, column: str, cache: TTLCache | NullCache | None = None) -> dict[str, int]:
    tag, _title = CATEGORY_BREAKDOWNS[column]
    return _cached(cache, f"category_{column}", lambda: fetch_category_counts(db, column),
                   3600, ("statistics", "institutions", tag), {})


# ---------------------------------------------------------------------------
# Chart shaping
# ---------------------------------------------------------------------------

def group_by_decade(trend: list[dict]) -> list[dict]:
    """[{year, count}] -> [{year: '1980-1989', count}] sorted by decade."""
    if not trend:
        return []
    df = pd.DataFrame(trend)
    df["year_num"] = pd.to_numeric(df["year"], errors="coerce")
    df = df.dropna(subset=["year_num"])
    if df.empty:
        return []
    df["decade"] = (df["year_num"] // 10 * 10).astype(int)
    grouped = df.groupby("decade", sort=True)["count"].sum()
    return [{"year": f"{start}-{start + 9}", "count": int(total)} for start, total in grouped.items()]


def to_column_chart(counts: dict[str, int], labels: dict[str, str] | None = None, top_n: int | None = 10) -> list[dict]:
    """{category: count} -> [{category, value, code}] sorted by value descending."""
    if not counts:
        return []
    df = pd.DataFrame({"code": list(counts.keys()), "value": list(counts.values())})
    df["category"] = df["code"].map(lambda c: (labels or {}).get(c, c))
    df = df.sort_values("value", ascending=False, kind="stable")
    if top_n:
        df = df.head(top_n)
    return [
        {"category": r.category, "value": int(r.value), "code": r.code}
        for r in df.itertuples(index=False)
    ]


def format_number(num: float | int | None) -> str:
    if num is None or pd.isna(num):
        return "0"
    return f"{num:,.0f}"


def format_millions_currency(thousands: float | int | None) -> str:
    """Amount in thousands of USD -> '$1,234' (millions)."""
    if not thousands:
        return "$0"
    return f"${thousands / 1000:,.0f}"


def get_dashboard(db: Session, cache: TTLCache | NullCache | None = None) -> dict:
    """Everything the dashboard page renders, as plain data."""
    stats = get_key_statistics(db, cache)

    breakdowns = {}
    for column, (_tag, title) in CATEGORY_BREAKDOWNS.items():
        if column in ("fedchrtr", "stchrtr"):
            continue
        labels = BANK_CLASS_DESCRIPTIONS if column == "bkclass" else None
        top_n = None if column == "bkclass" else 10
        breakdowns[column] = {
            "title": title,
            "data": to_column_chart(get_category_counts(db, column, cache), labels=labels, top_n=top_n),
        }
    federal = get_category_counts(db, "fedchrtr", cache)
    state = get_category_counts(db, "stchrtr", cache)
    breakdowns["charter_types"] = {
        "title": "Charter Types",
        "data": to_column_chart({"Federal Charter": federal.get("1", 0), "State Charter": state.get("1", 0)}),
    }

    return {
        "stats": asdict(stats),
        "cards": [
            {"title": format_number(stats.total_institutions), "description": "Total Insured Institutions",
             "footer": "Total Institutions"},
            {"title": format_number(stats.total_branches), "description": "Total Insured Branch Offices",
             "footer": "Total Branches"},
            {"title": format_millions_currency(stats.total_assets), "description": "Total Assets",
             "footer": "Millions $USD"},
            {"title": format_millions_currency(stats.total_deposits), "description": "Total Deposits",
             "footer": "Millions $USD"},
        ],
        "age_distribution": get_age_distribution(db, cache),
        "establishment_by_decade": group_by_decade(get_establishment_trend(db, cache)),
        "breakdowns": breakdowns,
        "market_share": {metric: get_market_share(db, metric, cache) for metric in MARKET_SHARE_FUNCTIONS},
    }

"""Tests for dashboard statistics shaping and degraded fallbacks."""
from webapp.services import statistics
from webapp.services.cache import TTLCache
from webapp.services.statistics import (
    BANK_CLASS_DESCRIPTIONS,
    KeyStatistics,
    fetch_category_counts,
    format_millions_currency,
    format_number,
    get_age_distribution,
    get_category_counts,
    get_dashboard,
    get_key_statistics,
    group_by_decade,
    to_column_chart,
)


# ---------------------------------------------------------------------------
# Shaping
# ---------------------------------------------------------------------------

def test_group_by_decade():
    trend = [
        {"year": "1991", "count": 2},
        {"year": "2005", "count": 4},
        {"year": "1999", "count": 1},
        {"year": "Unknown", "count": 3},
    ]
    assert group_by_decade(trend) == [
        {"year": "1990-1999", "count": 3},
        {"year": "2000-2009", "count": 4},
    ]
    assert group_by_decade([]) == []


def test_column_chart_sorted_and_labelled():
    chart = to_column_chart({"N": 2, "SM": 5, "unknown": 1}, labels=BANK_CLASS_DESCRIPTIONS)
    assert chart[0] == {"category": "State Charter, Fed Member (FRB)", "value": 5, "code": "SM"}
    assert [c["code"] for c in chart] == ["SM", "N", "unknown"]
    assert len(to_column_chart({str(i): i for i in range(20)}, top_n=10)) == 10
    assert to_column_chart({}) == []


def test_number_formatting():
    assert format_number(12345) == "12,345"
    assert format_number(None) == "0"
    assert format_millions_currency(0) == "$0"
    assert format_millions_currency(None) == "$0"
    assert format_millions_currency(1_234_000) == "$1,234"


# ---------------------------------------------------------------------------
# Datastore reads
# ---------------------------------------------------------------------------

def test_category_counts(db):
    assert fetch_category_counts(db, "bkclass") == {"N": 1, "NM": 1, "SM": 1, "SB": 1, "unknown": 1}
    assert fetch_category_counts(db, "specgrpn") == {
        "Commercial Lending": 2,
        "Mortgage Lending": 1,
        "Agricultural Lending": 1,
        "unknown": 1,
    }


def test_missing_database_functions_degrade_to_defaults(db):
    # SQLite has no set-returning functions, so every aggregate call fails
    assert get_key_statistics(db) == KeyStatistics()
    data = get_dashboard(db)
    assert data["stats"]["total_institutions"] == 0
    assert [c["title"] for c in data["cards"]] == ["0", "0", "$0", "$0"]
    assert data["age_distribution"] == []
    assert data["establishment_by_decade"] == []
    assert all(rows == [] for rows in data["market_share"].values())
    # grouped counts still come from the institutions table
    charters = data["breakdowns"]["charter_types"]["data"]
    assert charters == [
        {"category": "State Charter", "value": 3, "code": "State Charter"},
        {"category": "Federal Charter", "value": 2, "code": "Federal Charter"},
    ]


def test_dashboard_with_function_results(db, monkeypatch):
    canned = {
        "get_key_statistics": [{"total_institutions": 4500, "total_assets": 23_500_000_000,
                                "total_deposits": 18_000_000_000, "total_branches": 78000}],
        "get_bank_age_distribution": [{"age_range": "0-10", "count": 120}],
        "get_bank_establishment_trend": [{"year": 1901, "count": 3}, {"year": 1905, "count": 2}],
        "get_market_share_of_top_assets": [{"group_name": "Top 10", "percentage_of_total": 52.5, "bank_count": 10}],
    }

    def fake_call(session, name, columns):
        if name not in canned:
            raise RuntimeError(f"no function {name}")
        return canned[name]

    monkeypatch.setattr(statistics, "call_function", fake_call)
    data = get_dashboard(db)
    assert [c["title"] for c in data["cards"]] == ["4,500", "78,000", "$23,500,000", "$18,000,000"]
    assert data["age_distribution"] == [{"age_range": "0-10", "count": 120}]
    assert data["establishment_by_decade"] == [{"year": "1900-1909", "count": 5}]
    assert data["market_share"]["assets"][0]["percentage_of_total"] == 52.5
    assert data["market_share"]["deposits"] == []


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

def test_category_counts_are_served_from_cache(db, monkeypatch):
    calls = []
    real_fetch = statistics.fetch_category_counts

    def counting_fetch(session, column):
        calls.append(column)
        return real_fetch(session, column)

    monkeypatch.setattr(statistics, "fetch_category_counts", counting_fetch)
    cache = TTLCache(default_ttl=60)

    first = get_category_counts(db, "bkclass", cache)
    assert get_category_counts(db, "bkclass", cache) == first
    assert calls == ["bkclass"]
    assert len(cache) == 1

    get_category_counts(db, "cb", cache)
    assert calls == ["bkclass", "cb"]

    cache.invalidate_tag("institutions")
    get_category_counts(db, "bkclass", cache)
    assert calls == ["bkclass", "cb", "bkclass"]


def test_function_results_are_served_from_cache(db, monkeypatch):
    calls = []

    def fake_call(session, name, columns):
        calls.append(name)
        return [{"age_range": "0-10", "count": 7}]

    monkeypatch.setattr(statistics, "call_function", fake_call)
    cache = TTLCache(default_ttl=60)
    assert get_age_distribution(db, cache) == [{"age_range": "0-10", "count": 7}]
    assert get_age_distribution(db, cache) == [{"age_range": "0-10", "count": 7}]
    assert calls == ["get_bank_age_distribution"]

    cache.invalidate_tag("ageDistribution")
    get_age_distribution(db, cache)
    assert len(calls) == 2

"""Tests for the comparison pivot: enrichment, dedup and the value matrix."""
from webapp.services import comparison
from webapp.services.cache import TTLCache
from webapp.services.comparison import (
    FieldMeta,
    SelectedPair,
    build_comparison,
    build_selected_pairs,
    get_field_by_name,
    get_institution_options,
    get_report_periods,
    get_reported_value,
    include_selected_institutions,
)

SECTION = "Assets, Liabilities, and Capital"

PAIRS = [
    SelectedPair(institution_id=1, report_period_id=1),
    SelectedPair(institution_id=3, report_period_id=2),
    SelectedPair(institution_id=None, report_period_id=1),
]


# ---------------------------------------------------------------------------
# Single lookups
# ---------------------------------------------------------------------------

def test_field_lookup(db):
    meta = get_field_by_name(db, "LNLSNET")
    assert meta.field_id == 2
    assert meta.label == "Loans, net"
    assert get_field_by_name(db, "NOPE") is None


def test_field_label_and_help_fallbacks():
    bare = FieldMeta(field_id=9, field_name="XYZ")
    assert bare.label == "XYZ"
    assert bare.help_text == "No description available."
    full = FieldMeta(field_id=9, field_name="XYZ", title="T", description="D", description_alt="D2")
    assert full.label == "T"
    assert full.help_text == "D2"


def test_reported_value_lookup(db):
    assert get_reported_value(db, 1, 1, 1) == 500.0
    assert get_reported_value(db, 2, 1, 1) is None


def test_selector_options(db):
    options = get_institution_options(db)
    assert [o["name"] for o in options] == ["Gamma Bank", "Alpha Bank", "Beta Bank", "Epsilon Trust"]
    periods = get_report_periods(db)
    assert [p["report_date"] for p in periods] == ["2024-12-31", "2024-09-30"]


def test_build_selected_pairs_zips_to_longer_list(db):
    pairs = build_selected_pairs([1, 3], [1], get_institution_options(db), get_report_periods(db))
    assert len(pairs) == 2
    assert pairs[0].institution_name == "Alpha Bank"
    assert pairs[0].report_date == "2024-12-31"
    assert pairs[0].is_complete
    assert pairs[1].report_period_id is None
    assert not pairs[1].is_complete


# ---------------------------------------------------------------------------
# Pivot
# ---------------------------------------------------------------------------

def test_rows_enriched_deduplicated_and_aligned(session_factory, taxonomy):
    result = build_comparison(session_factory, taxonomy, SECTION, PAIRS, max_workers=4)

    assert [r.code for r in result.rows] == ["ASSET", "LNLSNET", "LNRE", "DEP"]
    assert result.dropped_rows == 1
    assert result.duplicate_rows == 1
    assert result.failed_cells == 0

    assert result.values == [
        [500.0, 850.0, None],
        [320.0, None, None],
        [150.5, None, None],
        [None, None, None],
    ]


def test_dedup_keeps_first_occurrence_in_preorder(session_factory, taxonomy):
    result = build_comparison(session_factory, taxonomy, SECTION, PAIRS, max_workers=2)
    asset = result.rows[0]
    assert asset.depth == 0
    assert asset.path == ("ASSET",)
    assert asset.has_children
    assert len({r.field.field_id for r in result.rows}) == len(result.rows)


def test_matrix_shape_with_no_pairs(session_factory, taxonomy):
    result = build_comparison(session_factory, taxonomy, SECTION, [])
    assert len(result.values) == len(result.rows) == 4
    assert all(row == [] for row in result.values)


def test_unknown_section_yields_empty_result(session_factory, taxonomy):
    result = build_comparison(session_factory, taxonomy, "No Such Section", PAIRS)
    assert result.rows == []
    assert result.values == []
    assert result.pairs == PAIRS


def test_failed_value_lookups_become_empty_cells(session_factory, taxonomy, monkeypatch):
    def boom(*args):
        raise RuntimeError("timeout")

    monkeypatch.setattr(comparison, "fetch_reported_value", boom)
    pairs = [SelectedPair(institution_id=1, report_period_id=1), SelectedPair()]
    result = build_comparison(session_factory, taxonomy, SECTION, pairs)
    assert len(result.rows) == 4
    assert result.values == [[None, None]] * 4
    # duplicate ASSET row was looked up too before dedup
    assert result.failed_cells == 5


def test_failed_metadata_lookups_drop_rows(session_factory, taxonomy, monkeypatch):
    real = comparison.fetch_field_by_name

    def flaky(db, code):
        if code == "LNRE":
            raise RuntimeError("timeout")
        return real(db, code)

    monkeypatch.setattr(comparison, "fetch_field_by_name", flaky)
    result = build_comparison(session_factory, taxonomy, SECTION, PAIRS)
    assert [r.code for r in result.rows] == ["ASSET", "LNLSNET", "DEP"]
    assert result.dropped_rows == 2


def test_lookups_are_cached(session_factory, taxonomy, monkeypatch):
    cache = TTLCache(default_ttl=60)
    first = build_comparison(session_factory, taxonomy, SECTION, PAIRS, cache=cache)

    def boom(*args):
        raise AssertionError("should be served from cache")

    monkeypatch.setattr(comparison, "fetch_field_by_name", boom)
    monkeypatch.setattr(comparison, "fetch_reported_value", boom)
    second = build_comparison(session_factory, taxonomy, SECTION, PAIRS, cache=cache)
    assert second.values == first.values
    assert [r.code for r in second.rows] == [r.code for r in first.rows]


def test_selector_options_are_served_from_cache(db, monkeypatch):
    cache = TTLCache(default_ttl=60)
    first = get_institution_options(db, cache)
    periods = get_report_periods(db, cache)
    assert len(cache) == 2

    def boom(*args, **kwargs):
        raise RuntimeError("datastore down")

    monkeypatch.setattr(db, "execute", boom)
    assert get_institution_options(db, cache) == first
    assert get_report_periods(db, cache) == periods

    cache.invalidate_tag("institutions")
    assert get_institution_options(db, cache) == []


def test_selected_institution_outside_options_is_included(db):
    options = get_institution_options(db, limit=2)
    assert [o["id"] for o in options] == [3, 1]
    merged = include_selected_institutions(db, options, [4, None, 1])
    assert [o["id"] for o in merged] == [3, 1, 4]
    assert merged[-1]["name"] == "Delta Savings"
    assert include_selected_institutions(db, options, [1, None]) is options

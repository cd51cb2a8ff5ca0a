from datetime import datetime, timedelta

import pytest

from conftest import SALES_MAPPING, load_cleaned
from salesight.analytics_engine.aggregates import (
    calendar_boundaries,
    compute_aggregates,
    compute_calendar_growth,
    get_anomalies,
    get_channels,
    get_geo,
    get_products,
    get_summary,
    get_timeseries,
)


@pytest.fixture
def sales_db(db, sales_rows):
    load_cleaned(db, sales_rows, SALES_MAPPING)
    return db


def _daily_series(db, revenues, start=datetime(2024, 3, 1)):
    rows = [
        {"day": (start + timedelta(days=i)).strftime("%Y-%m-%d"), "amount": float(rev)}
        for i, rev in enumerate(revenues)
    ]
    load_cleaned(db, rows, {"timestamp": "day", "revenue": "amount"})


# =============================================================================
# Summary & growth
# =============================================================================

def test_summary_totals(sales_db):
    summary = get_summary(sales_db, now=datetime(2030, 6, 15))
    assert summary["total_revenue"] == pytest.approx(120.0)
    assert summary["total_quantity"] == pytest.approx(11.0)
    assert summary["min_date"] == "2024-01-01T00:00:00"
    assert summary["max_date"] == "2024-02-15T00:00:00"
    assert summary["has_date"] is True
    # Calendar growth is anchored to `now`, far from this dataset
    assert summary["mom_growth_pct"] is None
    assert summary["yoy_growth_pct"] is None


def test_summary_on_empty_view(db):
    load_cleaned(db, [{"name": "x"}], {"product": "name"})
    db.execute("DELETE FROM data")
    summary = get_summary(db)
    assert summary == {
        "total_revenue": None,
        "total_quantity": None,
        "min_date": None,
        "max_date": None,
        "mom_growth_pct": None,
        "yoy_growth_pct": None,
        "has_date": False,
    }


def test_calendar_growth_against_fixed_now(sales_db):
    # In March 2024: this month 0, previous month (Feb) 50; this year 120, 2023 nothing
    growth = compute_calendar_growth(sales_db, now=datetime(2024, 3, 10))
    assert growth["mom_growth_pct"] == pytest.approx(-1.0)
    assert growth["yoy_growth_pct"] is None


def test_calendar_growth_month_over_month(sales_db):
    # In February 2024: this month 50, January 70
    growth = compute_calendar_growth(sales_db, now=datetime(2024, 2, 20))
    assert growth["mom_growth_pct"] == pytest.approx((50.0 - 70.0) / 70.0)


def test_calendar_boundaries_cross_year():
    bounds = calendar_boundaries(datetime(2024, 1, 15, 12, 30))
    assert bounds["month_start"] == datetime(2024, 1, 1)
    assert bounds["prev_month_start"] == datetime(2023, 12, 1)
    assert bounds["year_start"] == datetime(2024, 1, 1)
    assert bounds["prev_year_start"] == datetime(2023, 1, 1)


# =============================================================================
# Time series
# =============================================================================

def test_timeseries_daily_and_monthly(sales_db):
    ts = get_timeseries(sales_db)
    assert ts["daily"] == [
        {"date": "2024-01-01T00:00:00", "revenue": 70.0, "quantity": 3.0},
        {"date": "2024-02-01T00:00:00", "revenue": 30.0, "quantity": 3.0},
        {"date": "2024-02-15T00:00:00", "revenue": 20.0, "quantity": 5.0},
    ]
    assert ts["monthly"] == [
        {"month": "2024-01-01T00:00:00", "revenue": 70.0, "quantity": 3.0},
        {"month": "2024-02-01T00:00:00", "revenue": 50.0, "quantity": 8.0},
    ]


def test_timeseries_buckets_same_day_rows(db):
    load_cleaned(
        db,
        [{"d": "2024-01-01", "r": 10}, {"d": "2024-01-01 18:30:00", "r": 5}, {"d": "2024-02-01", "r": 7}],
        {"timestamp": "d", "revenue": "r"},
    )
    ts = get_timeseries(db)
    assert [p["date"] for p in ts["daily"]] == ["2024-01-01T00:00:00", "2024-02-01T00:00:00"]
    assert [p["revenue"] for p in ts["daily"]] == [15.0, 7.0]
    assert [p["month"] for p in ts["monthly"]] == ["2024-01-01T00:00:00", "2024-02-01T00:00:00"]


def test_timeseries_without_timestamp_is_empty(db):
    load_cleaned(db, [{"r": 10}], {"revenue": "r"})
    assert get_timeseries(db) == {"daily": [], "monthly": []}


def test_timeseries_skips_out_of_range_years(db):
    load_cleaned(
        db,
        [{"d": "1850-06-01", "r": 1}, {"d": "2024-03-05", "r": 10}, {"d": "2150-01-01", "r": 2}],
        {"timestamp": "d", "revenue": "r"},
    )
    ts = get_timeseries(db)
    assert ts["daily"] == [{"date": "2024-03-05T00:00:00", "revenue": 10.0, "quantity": None}]
    assert ts["monthly"] == [{"month": "2024-03-01T00:00:00", "revenue": 10.0, "quantity": None}]

    summary = get_summary(db, now=datetime(2024, 6, 1))
    assert summary["has_date"] is True
    assert summary["min_date"] is None
    assert summary["max_date"] is None


# =============================================================================
# Breakdowns
# =============================================================================

def test_products_ranked_with_name_tiebreak(sales_db):
    products = get_products(sales_db)
    assert [p["product"] for p in products] == ["Gadget", "Widget", "Gizmo"]
    assert products[1] == {"product": "Widget", "revenue": 50.0, "quantity": 5.0}


def test_products_paging_and_order(sales_db):
    assert [p["product"] for p in get_products(sales_db, limit=1, offset=1)] == ["Widget"]
    assert [p["product"] for p in get_products(sales_db, order="asc")] == ["Gizmo", "Gadget", "Widget"]
    assert get_products(sales_db, limit=0) == []


def test_products_rejects_bad_arguments(sales_db):
    with pytest.raises(ValueError):
        get_products(sales_db, order="sideways")
    with pytest.raises(ValueError):
        get_products(sales_db, limit=-1)


def test_channels_skip_null(sales_db):
    channels = get_channels(sales_db)
    assert channels == [
        {"channel": "store", "revenue": 50.0, "quantity": 1.0},
        {"channel": "web", "revenue": 50.0, "quantity": 5.0},
    ]


def test_geo_skips_rows_without_location(sales_db):
    geo = get_geo(sales_db)
    assert [(g["state"], g["city"], g["revenue"]) for g in geo] == [
        ("TX", "Dallas", 50.0),
        ("CO", "Denver", 30.0),
        ("TX", "Austin", 20.0),
    ]


def test_geo_keeps_partial_locations(db):
    load_cleaned(db, [{"c": "Reno", "r": 5}, {"c": None, "r": 9}], {"city": "c", "revenue": "r"})
    assert get_geo(db) == [{"state": None, "city": "Reno", "revenue": 5.0, "quantity": None}]


# =============================================================================
# Anomalies
# =============================================================================

def test_anomalies_flag_spike_in_long_series(db):
    _daily_series(db, [100] * 11 + [1000])
    anomalies = get_anomalies(db)
    assert len(anomalies) == 1
    assert anomalies[0]["date"] == "2024-03-12T00:00:00"
    assert anomalies[0]["revenue"] == 1000.0
    assert anomalies[0]["zscore"] > 2


def test_anomalies_empty_for_zero_variance(db):
    _daily_series(db, [100, 100, 100, 100])
    assert get_anomalies(db) == []


def test_anomalies_empty_for_single_day(db):
    _daily_series(db, [100])
    assert get_anomalies(db) == []


def test_five_point_spike_stays_under_default_threshold(db):
    # Sample stddev caps |z| at (n-1)/sqrt(n) ~= 1.79 for five days
    _daily_series(db, [100, 100, 100, 100, 1000])
    assert get_anomalies(db) == []
    lowered = get_anomalies(db, threshold=1.5)
    assert [a["date"] for a in lowered] == ["2024-03-05T00:00:00"]
    assert lowered[0]["zscore"] == pytest.approx(4 / 5 ** 0.5)


# =============================================================================
# Bundle
# =============================================================================

def test_compute_aggregates_is_idempotent(sales_db):
    now = datetime(2024, 3, 10)
    first = compute_aggregates(sales_db, now=now).to_dict()
    second = compute_aggregates(sales_db, now=now).to_dict()
    assert first == second
    assert set(first) == {"summary", "timeseries", "products", "geo", "channels", "anomalies"}


def test_compute_aggregates_respects_product_limit(sales_db):
    result = compute_aggregates(sales_db, product_limit=2)
    assert len(result.products) == 2
    assert len(result.limited(1).geo) == 1
    assert len(result.limited(1).timeseries["daily"]) == 3

from datetime import datetime, timedelta

import pytest

from conftest import SALES_MAPPING, load_cleaned
from salesight.planning_layer.chat_router import (
    CHAT_TEMPLATES,
    ChatTemplate,
    classify_question,
    contains_any,
    route_question,
)


@pytest.fixture
def sales_db(db, sales_rows):
    load_cleaned(db, sales_rows, SALES_MAPPING)
    return db


@pytest.mark.parametrize("question, expected", [
    ("What are my TOP products?", "top_products"),
    ("what are my top products by channel", "top_products"),
    ("Which channel sells most?", "channels"),
    ("Revenue by state", "geo"),
    ("best city", "geo"),
    ("show geo split", "geo"),
    ("any anomaly lately?", "anomalies"),
    ("find outliers", "anomalies"),
    ("month over month", "mom_growth"),
    ("how is growth", "mom_growth"),
    ("MoM numbers", "mom_growth"),
    ("yoy please", "yoy_growth"),
    ("compare to last year", "yoy_growth"),
])
def test_classify_question(question, expected):
    assert classify_question(question).name == expected


def test_unmatched_question_has_no_template():
    assert classify_question("how are we doing?") is None


def test_summary_fallback_uses_given_summary(sales_db):
    summary = {"total_revenue": 120.0}
    result = route_question(sales_db, "how are we doing?", summary=summary)
    assert result.template == "summary"
    assert result.table == [{"total_revenue": 120.0}]
    # The caller's dict is not shared with the result
    assert result.table[0] is not summary


def test_summary_fallback_without_summary_is_empty(sales_db):
    result = route_question(sales_db, "hello")
    assert result.to_dict() == {"template": "summary", "table": []}


def test_top_products_table(sales_db):
    result = route_question(sales_db, "top products")
    assert result.template == "top_products"
    assert [r["product"] for r in result.table] == ["Gadget", "Widget", "Gizmo"]


def test_channels_table_keeps_null_group(sales_db):
    table = route_question(sales_db, "channel split").table
    assert [r["channel"] for r in table] == ["store", "web", None]


def test_geo_table_columns(sales_db):
    table = route_question(sales_db, "sales by state").table
    assert set(table[0]) == {"state", "city", "revenue", "quantity"}
    assert (table[0]["state"], table[0]["city"]) == ("TX", "Dallas")
    assert len(table) <= 5


def test_anomalies_rank_spike_first_on_five_days(db):
    start = datetime(2024, 3, 1)
    rows = [
        {"day": (start + timedelta(days=i)).strftime("%Y-%m-%d"), "amount": rev}
        for i, rev in enumerate([100.0, 100.0, 100.0, 100.0, 1000.0])
    ]
    load_cleaned(db, rows, {"timestamp": "day", "revenue": "amount"})

    result = route_question(db, "any outliers?")
    assert result.template == "anomalies"
    assert result.table[0]["date"] == "2024-03-05T00:00:00"
    assert result.table[0]["zscore"] > 0
    assert len(result.table) == 5


def test_anomalies_empty_for_zero_variance(db):
    rows = [{"day": f"2024-03-0{i}", "amount": 100.0} for i in range(1, 5)]
    load_cleaned(db, rows, {"timestamp": "day", "revenue": "amount"})
    assert route_question(db, "anomaly?").table == []


def test_growth_tables_newest_first(sales_db):
    mom = route_question(sales_db, "monthly growth").table
    assert mom == [
        {"month": "2024-02-01T00:00:00", "rev": 50.0},
        {"month": "2024-01-01T00:00:00", "rev": 70.0},
    ]
    yoy = route_question(sales_db, "this year vs last").table
    assert yoy == [{"year": "2024-01-01T00:00:00", "rev": 120.0}]


def test_growth_tables_skip_out_of_range_years(db):
    load_cleaned(
        db,
        [{"d": "2150-01-01", "r": 2}, {"d": "2024-02-01", "r": 5}, {"d": "2024-01-01", "r": 3}],
        {"timestamp": "d", "revenue": "r"},
    )
    assert route_question(db, "monthly growth").table == [
        {"month": "2024-02-01T00:00:00", "rev": 5.0},
        {"month": "2024-01-01T00:00:00", "rev": 3.0},
    ]


def test_custom_template_list(sales_db):
    templates = [ChatTemplate("ping", contains_any("ping"), lambda db: [{"pong": True}])]
    assert route_question(sales_db, "ping", templates=templates).table == [{"pong": True}]
    assert route_question(sales_db, "top products", templates=templates).template == "summary"


def test_default_template_order():
    assert [t.name for t in CHAT_TEMPLATES] == [
        "top_products", "channels", "geo", "anomalies", "mom_growth", "yoy_growth",
    ]

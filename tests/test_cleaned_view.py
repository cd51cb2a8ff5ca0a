import pytest

from conftest import load_cleaned, load_rows
from salesight.analytics_engine.cleaned_view import (
    CLEANED_COLUMNS,
    build_cleaned_view_sql,
    materialize_cleaned_view,
    revenue_expression,
)


def test_view_has_all_columns_even_when_unmapped(db):
    load_cleaned(db, [{"anything": "x"}], {})

    assert db.column_names("cleaned") == list(CLEANED_COLUMNS)
    row = db.query_one("SELECT * FROM cleaned")
    assert all(row[col] is None for col in CLEANED_COLUMNS)


def test_unmapped_columns_are_typed_nulls(db):
    load_cleaned(db, [{"anything": "x"}], {})
    types = db.column_types("cleaned")
    assert types["ts"] == "TIMESTAMP"
    assert types["quantity"] == "DOUBLE"
    assert types["price"] == "DOUBLE"
    assert types["revenue"] == "DOUBLE"
    assert types["product"] == "VARCHAR"


def test_revenue_prefers_mapped_revenue_column(db):
    load_cleaned(
        db,
        [{"p": "2", "q": "3", "r": "100"}],
        {"price": "p", "quantity": "q", "revenue": "r"},
    )
    assert db.query_one("SELECT revenue FROM cleaned")["revenue"] == 100.0


def test_revenue_falls_back_to_price_times_quantity(db):
    load_cleaned(db, [{"p": 2.5, "q": 4}], {"price": "p", "quantity": "q"})
    assert db.query_one("SELECT revenue FROM cleaned")["revenue"] == 10.0


def test_revenue_null_without_price_and_quantity(db):
    load_cleaned(db, [{"p": 2.5}], {"price": "p"})
    assert db.query_one("SELECT revenue FROM cleaned")["revenue"] is None
    assert revenue_expression({"price": "p"}) == "NULL::DOUBLE"


def test_bad_values_become_null_without_failing(db):
    load_cleaned(
        db,
        [
            {"d": "2024-01-05", "q": "3", "p": "1.5"},
            {"d": "not a date", "q": "three", "p": "n/a"},
        ],
        {"timestamp": "d", "quantity": "q", "price": "p"},
    )
    rows = db.query_records("SELECT ts, quantity, price, revenue FROM cleaned ORDER BY quantity NULLS LAST")
    assert rows[0]["ts"].startswith("2024-01-05")
    assert rows[0]["revenue"] == 4.5
    assert rows[1] == {"ts": None, "quantity": None, "price": None, "revenue": None}


def test_odd_column_names_are_quoted(db):
    load_cleaned(
        db,
        [{'Order "No"': "A1", "unit price": 3, "select": 2}],
        {"order_id": 'Order "No"', "price": "unit price", "quantity": "select"},
    )
    row = db.query_one("SELECT order_id, revenue FROM cleaned")
    assert row == {"order_id": "A1", "revenue": 6.0}


def test_unknown_mapped_column_is_rejected(db):
    load_rows(db, [{"a": 1}])
    with pytest.raises(ValueError, match="unknown columns"):
        materialize_cleaned_view(db, {"product": "missing"})


def test_non_canonical_field_is_rejected(db):
    load_rows(db, [{"when": "2024-01-05", "amt": 3}])
    with pytest.raises(ValueError, match="unknown canonical fields: date"):
        materialize_cleaned_view(db, {"date": "when", "revenue": "amt"})
    assert not db.has_table("cleaned")


def test_original_column_feeds_timestamp(db):
    load_cleaned(db, [{"when": "2024-01-05", "amt": 3}], {"original_column": "when", "revenue": "amt"})
    assert db.query_one("SELECT ts FROM cleaned")["ts"].startswith("2024-01-05")


def test_timestamp_wins_over_original_column(db):
    load_cleaned(
        db,
        [{"sold": "2024-03-01", "raw": "2020-01-01"}],
        {"timestamp": "sold", "original_column": "raw"},
    )
    assert db.query_one("SELECT ts FROM cleaned")["ts"].startswith("2024-03-01")


def test_rebuild_is_idempotent(db):
    mapping = {"product": "name", "quantity": "n", "price": "p"}
    load_cleaned(db, [{"name": "A", "n": 1, "p": 2}], mapping)
    first = db.query_records("SELECT * FROM cleaned")
    materialize_cleaned_view(db, mapping)
    assert db.query_records("SELECT * FROM cleaned") == first


def test_sql_reads_from_raw_table():
    sql = build_cleaned_view_sql({"product": "Item"})
    assert sql.startswith("CREATE OR REPLACE VIEW cleaned AS")
    assert 'SELECT\n      NULL::VARCHAR AS order_id,\n      "Item" AS product' in sql
    assert sql.rstrip().endswith("FROM data")

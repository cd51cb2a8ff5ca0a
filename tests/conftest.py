import os

import pandas as pd
import pytest

# Tests never talk to Gemini; individual tests inject a fake model.
os.environ.setdefault("SALESIGHT_ENABLE_LLM", "false")

from salesight.analytics_engine.cleaned_view import materialize_cleaned_view
from salesight.analytics_engine.duckdb_manager import DuckDBManager
from salesight.utils.config_loader import Config, _parse_config


@pytest.fixture
def db():
    manager = DuckDBManager(":memory:")
    yield manager
    manager.close()


@pytest.fixture
def config() -> Config:
    return _parse_config({"llm": {"enabled": False}})


def load_rows(db: DuckDBManager, rows, columns=None):
    """Load a list of dicts (or tuples with `columns`) as the raw table."""
    df = pd.DataFrame(rows, columns=columns)
    db.load_dataframe(df)
    return df


def load_cleaned(db: DuckDBManager, rows, mapping, columns=None):
    """Load rows and build the cleaned view over them."""
    load_rows(db, rows, columns=columns)
    materialize_cleaned_view(db, mapping)


SALES_MAPPING = {
    "order_id": "order_id",
    "product": "product",
    "timestamp": "order_ts",
    "quantity": "qty",
    "price": "price",
    "channel": "channel",
    "city": "city",
    "state": "state",
}


@pytest.fixture
def sales_rows():
    return [
        {"order_id": "A1", "product": "Widget", "order_ts": "2024-01-01", "qty": 2, "price": 10.0,
         "channel": "web", "city": "Austin", "state": "TX"},
        {"order_id": "A2", "product": "Gadget", "order_ts": "2024-01-01", "qty": 1, "price": 50.0,
         "channel": "store", "city": "Dallas", "state": "TX"},
        {"order_id": "A3", "product": "Widget", "order_ts": "2024-02-01", "qty": 3, "price": 10.0,
         "channel": "web", "city": "Denver", "state": "CO"},
        {"order_id": "A4", "product": "Gizmo", "order_ts": "2024-02-15", "qty": 5, "price": 4.0,
         "channel": None, "city": None, "state": None},
    ]

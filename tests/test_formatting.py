import math
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

from salesight.utils.formatting import safe_to_iso, sanitize_for_json, truncate_string
from salesight.utils.sql_utils import quote_identifier, quote_literal


@pytest.mark.parametrize("value, expected", [
    ("2024-01-05", "2024-01-05T00:00:00"),
    (datetime(2024, 1, 5, 13, 45), "2024-01-05T13:45:00"),
    (pd.Timestamp("2024-01-05T10:00:00+02:00"), "2024-01-05T08:00:00"),
    (0, "1970-01-01T00:00:00"),
    (1704067200000, "2024-01-01T00:00:00"),
])
def test_safe_to_iso(value, expected):
    assert safe_to_iso(value) == expected


@pytest.mark.parametrize("value", [None, "", "not a date", "1850-01-01", "2150-06-01", float("nan"), pd.NaT])
def test_safe_to_iso_unavailable(value):
    assert safe_to_iso(value) is None


def test_truncate_string():
    assert truncate_string("abc", 5) == "abc"
    assert truncate_string("abcdef", 3) == "abc…"


def test_sanitize_for_json():
    data = {
        "i": np.int64(3),
        "f": np.float64(1.5),
        "nan": float("nan"),
        "inf": np.float64(math.inf),
        "ts": pd.Timestamp("2024-01-05"),
        "nat": pd.NaT,
        "d": date(2024, 1, 5),
        "arr": np.array([1, 2]),
        "flag": np.bool_(True),
        "nested": [{"x": np.float32(0.5)}],
    }
    assert sanitize_for_json(data) == {
        "i": 3,
        "f": 1.5,
        "nan": None,
        "inf": None,
        "ts": "2024-01-05T00:00:00",
        "nat": None,
        "d": "2024-01-05",
        "arr": [1, 2],
        "flag": True,
        "nested": [{"x": 0.5}],
    }


def test_quote_identifier_escapes_quotes():
    assert quote_identifier("Order Date") == '"Order Date"'
    assert quote_identifier('say "hi"') == '"say ""hi"""'
    assert quote_identifier('a"b') == '"a""b"'


def test_quote_literal():
    assert quote_literal("it's") == "'it''s'"

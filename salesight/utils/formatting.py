"""
Centralized formatting utilities.
Consolidates date normalisation and JSON-safe conversion of query results.
"""

import math
from datetime import date, datetime
from typing import Any, Optional

import numpy as np
import pandas as pd

# Dates outside this calendar range are treated as unavailable.
MIN_DISPLAY_YEAR = 1900
MAX_DISPLAY_YEAR = 2100

ELLIPSIS = "…"


def safe_to_iso(value: Any) -> Optional[str]:
    """
    Normalize a date-like value to an ISO-8601 string.

    Numbers are read as epoch milliseconds. Anything unparseable, missing,
    or outside years 1900-2100 becomes None.

    Examples:
        >>> safe_to_iso("2024-01-05")
        '2024-01-05T00:00:00'
        >>> safe_to_iso("not a date") is None
        True
        >>> safe_to_iso("1850-01-01") is None
        True
    """
    if value is None:
        return None
    try:
        if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
            if math.isnan(float(value)):
                return None
            ts = pd.Timestamp(float(value), unit="ms")
        else:
            ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None

    if pd.isna(ts):
        return None
    if ts.year < MIN_DISPLAY_YEAR or ts.year > MAX_DISPLAY_YEAR:
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.isoformat()


def truncate_string(value: str, max_length: int) -> str:
    """Cut long strings for display, marking the cut with an ellipsis."""
    if len(value) > max_length:
        return value[:max_length] + ELLIPSIS
    return value


def sanitize_for_json(data):
    """
    Convert numpy/pandas types to native Python types for JSON serialization.
    Pydantic/FastAPI can't serialize numpy.float64, numpy.int64, pandas.Timestamp, etc.
    Also handles NaN/Inf which aren't valid JSON.
    """
    if data is None:
        return None
    if isinstance(data, dict):
        return {k: sanitize_for_json(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize_for_json(item) for item in data]
    if isinstance(data, (bool, np.bool_)):
        return bool(data)
    if isinstance(data, np.integer):
        return int(data)
    if isinstance(data, (float, np.floating)):
        val = float(data)
        if math.isnan(val) or math.isinf(val):
            return None
        return val
    if isinstance(data, np.ndarray):
        return sanitize_for_json(data.tolist())
    if data is pd.NaT or data is pd.NA:
        return None
    if isinstance(data, (pd.Timestamp, datetime, date)):
        return data.isoformat()
    # Generic numpy scalar with .item() method
    if isinstance(data, np.generic):
        return sanitize_for_json(data.item())
    return data

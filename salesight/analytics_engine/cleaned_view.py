"""
Cleaned View Builder.

Defines the "cleaned" view over the raw "data" table from a canonical
field -> raw column map. The view is replaced wholesale every time; it has
no state of its own, so rebuilding with the same map is idempotent.
"""

import logging
from typing import Mapping, Optional

from salesight.analytics_engine.duckdb_manager import CLEANED_VIEW, RAW_TABLE, DuckDBManager
from salesight.schema_intelligence.column_mapper import CANONICAL_FIELDS
from salesight.utils.sql_utils import quote_identifier

logger = logging.getLogger(__name__)

CLEANED_COLUMNS = (
    "order_id", "product", "ts", "quantity", "price",
    "channel", "city", "state", "zip", "revenue",
)


def _try_double(column: str) -> str:
    # Going through VARCHAR lets TRY_CAST accept any raw type without a binder error.
    return f"TRY_CAST(CAST({quote_identifier(column)} AS VARCHAR) AS DOUBLE)"


def _try_timestamp(column: str) -> str:
    return f"TRY_CAST(CAST({quote_identifier(column)} AS VARCHAR) AS TIMESTAMP)"


def _passthrough(column: Optional[str]) -> str:
    return quote_identifier(column) if column else "NULL::VARCHAR"


def revenue_expression(mapping: Mapping[str, str]) -> str:
    """
    Revenue is the mapped revenue column when there is one, otherwise
    price * quantity when both are mapped, otherwise NULL.
    """
    if mapping.get("revenue"):
        return _try_double(mapping["revenue"])
    if mapping.get("price") and mapping.get("quantity"):
        return f"{_try_double(mapping['price'])} * {_try_double(mapping['quantity'])}"
    return "NULL::DOUBLE"


def build_cleaned_view_sql(mapping: Mapping[str, str]) -> str:
    """Render the CREATE OR REPLACE VIEW statement for a column map."""
    # original_column stands in for the timestamp when nothing else is mapped
    ts_col = mapping.get("timestamp") or mapping.get("original_column")
    qty_col = mapping.get("quantity")
    price_col = mapping.get("price")

    select = {
        "order_id": _passthrough(mapping.get("order_id")),
        "product": _passthrough(mapping.get("product")),
        "ts": _try_timestamp(ts_col) if ts_col else "NULL::TIMESTAMP",
        "quantity": _try_double(qty_col) if qty_col else "NULL::DOUBLE",
        "price": _try_double(price_col) if price_col else "NULL::DOUBLE",
        "channel": _passthrough(mapping.get("channel")),
        "city": _passthrough(mapping.get("city")),
        "state": _passthrough(mapping.get("state")),
        "zip": _passthrough(mapping.get("zip")),
        "revenue": revenue_expression(mapping),
    }
    projection = ",\n      ".join(f"{select[name]} AS {name}" for name in CLEANED_COLUMNS)
    return (
        f"CREATE OR REPLACE VIEW {CLEANED_VIEW} AS\n"
        f"    SELECT\n      {projection}\n"
        f"    FROM {RAW_TABLE}"
    )


def materialize_cleaned_view(db: DuckDBManager, mapping: Mapping[str, str]) -> None:
    """
    Replace the cleaned view for the current raw table.

    Raises:
        ValueError: If the map has a key that is not a canonical field, or
            names a column the raw table does not have
    """
    unknown = sorted(field for field in mapping if field not in CANONICAL_FIELDS)
    if unknown:
        raise ValueError(
            f"Column map has unknown canonical fields: {', '.join(unknown)} "
            f"(expected one of {', '.join(CANONICAL_FIELDS)})"
        )

    available = set(db.column_names(RAW_TABLE))
    missing = sorted(
        f"{field}={column}" for field, column in mapping.items()
        if column and column not in available
    )
    if missing:
        raise ValueError(f"Column map references unknown columns: {', '.join(missing)}")

    db.execute(build_cleaned_view_sql(mapping))
    logger.debug("cleaned view rebuilt from %s", dict(mapping))

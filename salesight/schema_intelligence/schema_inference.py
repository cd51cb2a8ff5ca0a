"""
Schema Inference - one immutable snapshot per upload.

Classifies every raw column, then profiles only the mapped ones: row count,
timestamp range (when a timestamp column was mapped), distinct and null
counts. Mapping conflicts are surfaced as warnings instead of being dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from salesight.analytics_engine.duckdb_manager import RAW_TABLE, DuckDBManager
from salesight.schema_intelligence.column_mapper import (
    ColumnInference,
    ColumnMap,
    build_column_map,
    describe_conflicts,
    find_mapping_conflicts,
    infer_columns,
)
from salesight.utils.formatting import safe_to_iso, sanitize_for_json, truncate_string
from salesight.utils.sql_utils import quote_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaInferenceResult:
    columns: List[ColumnInference]
    row_count: int
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    distinct_counts: Dict[str, int] = field(default_factory=dict)
    null_counts: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def column_map(self) -> ColumnMap:
        return build_column_map(self.columns)

    def timestamp_column(self) -> Optional[str]:
        for col in self.columns:
            if col.canonical_name == "timestamp":
                return col.original_name
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [c.to_dict() for c in self.columns],
            "row_count": self.row_count,
            "min_date": self.min_date,
            "max_date": self.max_date,
            "distinct_counts": dict(self.distinct_counts),
            "null_counts": dict(self.null_counts),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaInferenceResult":
        return cls(
            columns=[ColumnInference(**c) for c in data.get("columns", [])],
            row_count=int(data.get("row_count", 0)),
            min_date=data.get("min_date"),
            max_date=data.get("max_date"),
            distinct_counts=dict(data.get("distinct_counts") or {}),
            null_counts=dict(data.get("null_counts") or {}),
            warnings=list(data.get("warnings") or []),
        )


def infer_schema(db: DuckDBManager) -> SchemaInferenceResult:
    """
    Build the schema snapshot for the raw table currently loaded.

    Args:
        db: Manager holding the raw "data" table

    Returns:
        SchemaInferenceResult
    """
    column_names = db.column_names(RAW_TABLE)
    columns = infer_columns(column_names)
    row_count = db.row_count(RAW_TABLE)

    # First mapped timestamp column, as a reader of the snapshot would expect.
    ts_column = next((c.original_name for c in columns if c.canonical_name == "timestamp"), None)
    min_date = max_date = None
    if ts_column:
        ident = quote_identifier(ts_column)
        row = db.query_one(f"SELECT MIN({ident}) AS min_date, MAX({ident}) AS max_date FROM {RAW_TABLE}")
        min_date = safe_to_iso(row.get("min_date"))
        max_date = safe_to_iso(row.get("max_date"))

    distinct_counts: Dict[str, int] = {}
    null_counts: Dict[str, int] = {}
    for col in columns:
        if not col.canonical_name:
            continue
        ident = quote_identifier(col.original_name)
        row = db.query_one(
            f"SELECT COUNT(DISTINCT {ident}) AS distinct_count, "
            f"COUNT(*) - COUNT({ident}) AS null_count FROM {RAW_TABLE}"
        )
        distinct_counts[col.original_name] = int(row.get("distinct_count") or 0)
        null_counts[col.original_name] = int(row.get("null_count") or 0)

    warnings = describe_conflicts(find_mapping_conflicts(columns))
    for warning in warnings:
        logger.warning("schema_inference: %s", warning)

    mapped = sum(1 for c in columns if c.canonical_name)
    logger.info(
        "schema inferred: %d rows, %d columns, %d mapped", row_count, len(columns), mapped,
    )
    return SchemaInferenceResult(
        columns=columns,
        row_count=row_count,
        min_date=min_date,
        max_date=max_date,
        distinct_counts=distinct_counts,
        null_counts=null_counts,
        warnings=warnings,
    )


def preview_rows(db: DuckDBManager, limit: int = 20, max_string_length: int = 120,
                 timestamp_column: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    First rows of the raw table, JSON-safe.

    The timestamp column is shown as ISO-8601 when it parses; other long
    strings are truncated.
    """
    rows = sanitize_for_json(
        db.query(f"SELECT * FROM {RAW_TABLE} LIMIT {int(limit)}").to_dict(orient="records")
    )
    preview = []
    for row in rows:
        shown = {}
        for key, value in row.items():
            if timestamp_column and key == timestamp_column and isinstance(value, (int, float, str)):
                shown[key] = safe_to_iso(value) or value
            elif isinstance(value, str):
                shown[key] = truncate_string(value, max_string_length)
            else:
                shown[key] = value
        preview.append(shown)
    return preview

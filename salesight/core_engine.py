"""
Core engine for Salesight.

Thin facade over the analytics pipeline for the API layer. It holds the
per-dataset state (schema snapshot, active column map, last aggregates) and
always rebuilds the cleaned view before reading from it:

1. load_csv()            - ingest an upload and infer its schema
2. compute_aggregates()  - rebuild the view and run every aggregate
3. route_chat()          - rebuild the view and answer with one template
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from salesight.analytics_engine.aggregates import AggregateResult, compute_aggregates, get_products
from salesight.analytics_engine.cleaned_view import materialize_cleaned_view
from salesight.analytics_engine.duckdb_manager import RAW_TABLE, DuckDBManager
from salesight.data_sources.csv_loader import load_csv_bytes
from salesight.planning_layer.chat_router import ChatRouteResult, route_question
from salesight.schema_intelligence.column_mapper import ColumnMap
from salesight.schema_intelligence.schema_inference import SchemaInferenceResult, infer_schema, preview_rows
from salesight.utils.config_loader import Config, get_config
from salesight.utils.errors import IngestRejectedError, InsufficientContextError
from salesight.utils.session_cache import content_hash

logger = logging.getLogger(__name__)


class SalesEngine:
    """
    One dataset at a time on one DuckDB connection.

    Args:
        db: Manager to run on (a fresh in-memory one by default)
        config: Configuration (the global singleton by default)
    """

    def __init__(self, db: Optional[DuckDBManager] = None, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db = db or DuckDBManager(self.config.duckdb.database_path)
        self.loaded_hash: Optional[str] = None
        self.schema: Optional[SchemaInferenceResult] = None
        self.column_map: ColumnMap = {}
        self.aggregates: Optional[AggregateResult] = None
        # Held across a view rebuild and the reads that depend on it
        self.lock = threading.RLock()

    @property
    def data_loaded(self) -> bool:
        return self.schema is not None

    def _require_data(self) -> None:
        if not self.data_loaded:
            raise InsufficientContextError("No dataset loaded. Upload a CSV first.")

    def _clear_state(self) -> None:
        self.loaded_hash = None
        self.schema = None
        self.column_map = {}
        self.aggregates = None

    def load_csv(self, content: bytes, filename: str = "upload.csv",
                 content_type: Optional[str] = None) -> SchemaInferenceResult:
        """
        Replace the current dataset with an uploaded CSV.

        A rejected upload leaves the previous dataset in place unless the raw
        table was already replaced, in which case the engine is emptied.
        """
        with self.lock:
            try:
                load_csv_bytes(self.db, content, self.config.ingest, filename=filename, content_type=content_type)
            except IngestRejectedError:
                if not self.db.has_table(RAW_TABLE):
                    self._clear_state()
                raise

            self.schema = infer_schema(self.db)
            self.column_map = self.schema.column_map
            self.aggregates = None
            self.loaded_hash = content_hash(content)
            return self.schema

    def infer_schema(self) -> SchemaInferenceResult:
        """Re-profile the loaded raw table."""
        with self.lock:
            self._require_data()
            self.schema = infer_schema(self.db)
            return self.schema

    def preview(self) -> List[Dict[str, Any]]:
        with self.lock:
            self._require_data()
            ingest = self.config.ingest
            return preview_rows(
                self.db,
                limit=ingest.preview_rows,
                max_string_length=ingest.max_string_length,
                timestamp_column=self.schema.timestamp_column(),
            )

    def refresh_cleaned_view(self, mapping: Optional[Mapping[str, str]] = None) -> ColumnMap:
        """
        Rebuild the cleaned view, optionally switching to a caller-supplied map.

        Returns:
            The column map now in effect
        """
        with self.lock:
            self._require_data()
            active = dict(mapping) if mapping is not None else dict(self.column_map)
            materialize_cleaned_view(self.db, active)
            if mapping is not None:
                logger.info("column map overridden: %s", active)
            self.column_map = active
            return active

    def compute_aggregates(self, mapping: Optional[Mapping[str, str]] = None,
                           now: Optional[datetime] = None) -> AggregateResult:
        with self.lock:
            self.refresh_cleaned_view(mapping)
            analytics = self.config.analytics
            self.aggregates = compute_aggregates(
                self.db,
                product_limit=analytics.default_product_limit,
                zscore_threshold=analytics.anomaly_zscore_threshold,
                now=now,
            )
            return self.aggregates

    def products(self, limit: Optional[int] = None, offset: int = 0, order: str = "desc") -> List[Dict[str, Any]]:
        with self.lock:
            self.refresh_cleaned_view()
            if limit is None:
                limit = self.config.analytics.default_product_limit
            return get_products(self.db, limit=limit, offset=offset, order=order)

    def route_chat(self, question: str) -> ChatRouteResult:
        """
        Route a question to a template and run it.

        Raises:
            InsufficientContextError: No dataset, or aggregates not computed yet
        """
        with self.lock:
            self._require_data()
            if self.aggregates is None:
                raise InsufficientContextError("No aggregates yet. Compute aggregates before chatting.")
            self.refresh_cleaned_view()
            return route_question(self.db, question, summary=self.aggregates.summary)

    def reset(self) -> None:
        """Drop the dataset and forget all per-dataset state."""
        with self.lock:
            self.db.drop_dataset()
            self._clear_state()
        logger.info("session reset")

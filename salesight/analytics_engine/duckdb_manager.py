import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import duckdb
import pandas as pd

from salesight.utils.formatting import sanitize_for_json

RAW_TABLE = "data"
CLEANED_VIEW = "cleaned"


class DuckDBManager:
    """
    Owns a single DuckDB connection.

    Statements are serialised through one re-entrant lock, so several
    callers may share a manager but never interleave on the connection.
    Create one manager per engine; nothing here is module-global.
    """

    def __init__(self, path: str = ":memory:"):
        if path != ":memory:":
            # Ensure directory exists before connecting
            db_path = Path(path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.conn = duckdb.connect(path)
        self.lock = threading.RLock()

    def list_tables(self) -> List[str]:
        with self.lock:
            return [row[0] for row in self.conn.execute("SHOW TABLES").fetchall()]

    def has_table(self, name: str) -> bool:
        return name in self.list_tables()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        with self.lock:
            self.conn.execute(sql, params)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        with self.lock:
            return self.conn.execute(sql, params).fetchdf()

    def query_records(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return JSON-safe row dicts (NaN/NaT become None)."""
        df = self.query(sql, params)
        return sanitize_for_json(df.to_dict(orient="records"))

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        rows = self.query_records(sql, params)
        return rows[0] if rows else {}

    def column_names(self, table: str = RAW_TABLE) -> List[str]:
        with self.lock:
            rows = self.conn.execute(f"PRAGMA table_info('{table}')").fetchall()
        # table_info rows are (cid, name, type, notnull, dflt_value, pk)
        return [row[1] for row in rows]

    def column_types(self, table: str = RAW_TABLE) -> Dict[str, str]:
        with self.lock:
            rows = self.conn.execute(f"PRAGMA table_info('{table}')").fetchall()
        return {row[1]: row[2] for row in rows}

    def row_count(self, table: str = RAW_TABLE) -> int:
        with self.lock:
            return int(self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])

    def load_dataframe(self, df: pd.DataFrame, table: str = RAW_TABLE) -> None:
        """Replace `table` with the contents of a DataFrame."""
        with self.lock:
            self.conn.register("_incoming_frame", df)
            try:
                self.conn.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM _incoming_frame")
            finally:
                self.conn.unregister("_incoming_frame")

    def drop_dataset(self) -> None:
        """Remove the raw table and the cleaned view."""
        with self.lock:
            self.conn.execute(f"DROP VIEW IF EXISTS {CLEANED_VIEW}")
            self.conn.execute(f"DROP TABLE IF EXISTS {RAW_TABLE}")

    def interrupt(self) -> None:
        """Abort the statement currently running on the connection."""
        self.conn.interrupt()

    def close(self) -> None:
        with self.lock:
            self.conn.close()

"""
CSV Loader

Loads an uploaded CSV into the raw "data" table with DuckDB's CSV sniffer.
This is the ingestion boundary: upload caps, column caps and the ingest
timeout are enforced here, never inside the analytics engine.
"""

import concurrent.futures
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import List, Optional

import duckdb

from salesight.analytics_engine.duckdb_manager import RAW_TABLE, DuckDBManager
from salesight.utils.config_loader import IngestConfig
from salesight.utils.errors import IngestRejectedError, IngestTimeoutError, UploadTooLargeError
from salesight.utils.sql_utils import quote_literal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawTableInfo:
    """What the ingestion step hands to schema inference."""
    columns: List[str]
    row_count: int


def validate_upload(content: bytes, content_type: Optional[str], config: IngestConfig) -> None:
    """
    Reject uploads that break the size cap. Unknown MIME types only warn,
    since browsers label CSVs inconsistently.
    """
    if not content:
        raise IngestRejectedError("file is empty")
    if len(content) > config.max_upload_bytes:
        raise UploadTooLargeError(
            f"file too large: {len(content)} bytes (max {config.max_upload_bytes})"
        )
    if content_type and config.supported_mime_types and content_type not in config.supported_mime_types:
        logger.warning("unrecognized MIME type: %s", content_type)


def _create_table_from_csv(db: DuckDBManager, path: str, sample_size: int) -> None:
    db.execute(
        f"CREATE OR REPLACE TABLE {RAW_TABLE} AS "
        f"SELECT * FROM read_csv_auto({quote_literal(path)}, sample_size={int(sample_size)}, ignore_errors=true)"
    )


def run_with_timeout(db: DuckDBManager, fn, timeout_seconds: float):
    """
    Run fn() on a worker thread and interrupt the connection if it overruns.

    Raises:
        IngestTimeoutError: If fn does not finish within timeout_seconds
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        db.interrupt()
        raise IngestTimeoutError(f"Ingestion timed out after {timeout_seconds} seconds")
    finally:
        executor.shutdown(wait=True)


def load_csv_bytes(db: DuckDBManager, content: bytes, config: IngestConfig,
                   filename: str = "upload.csv", content_type: Optional[str] = None) -> RawTableInfo:
    """
    Replace the raw table with the uploaded CSV.

    Args:
        db: Target manager
        content: Raw upload bytes
        config: Ingestion guardrails
        filename: Original file name (logging only)
        content_type: MIME type reported by the client

    Returns:
        RawTableInfo with column names and row count

    Raises:
        IngestRejectedError: Empty/oversized upload, unparseable CSV, or too many columns
        IngestTimeoutError: Loading exceeded config.ingest_timeout_seconds
    """
    validate_upload(content, content_type, config)

    fd, tmp_path = tempfile.mkstemp(prefix="upload_", suffix=".csv")
    try:
        with os.fdopen(fd, "wb") as tmp_file:
            tmp_file.write(content)
        try:
            run_with_timeout(
                db,
                lambda: _create_table_from_csv(db, tmp_path, config.sample_size),
                config.ingest_timeout_seconds,
            )
        except IngestTimeoutError:
            logger.error("ingest of %s timed out after %ss", filename, config.ingest_timeout_seconds)
            raise
        except duckdb.Error as e:
            raise IngestRejectedError(f"Failed to load CSV: {e}") from e
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            logger.debug("could not remove temp file %s", tmp_path)

    columns = db.column_names(RAW_TABLE)
    if len(columns) > config.max_columns:
        db.drop_dataset()
        raise IngestRejectedError(f"Too many columns: {len(columns)} (max {config.max_columns})")

    row_count = db.row_count(RAW_TABLE)
    logger.info("ingested %s: %d rows, %d columns", filename, row_count, len(columns))
    return RawTableInfo(columns=columns, row_count=row_count)

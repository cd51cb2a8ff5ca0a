"""
Error types shared by the engine and the API layer.

Cast failures are never errors (they become NULL in the cleaned view) and
engine-level query failures surface as duckdb.Error untouched, so only the
conditions the caller must render differently get their own type here.
"""


class IngestRejectedError(Exception):
    """Raised when an upload is refused at the ingestion boundary."""

    status_code = 400


class UploadTooLargeError(IngestRejectedError):
    """Raised when the upload exceeds the configured byte cap."""

    status_code = 413


class IngestTimeoutError(IngestRejectedError):
    """Raised when loading the CSV takes longer than the configured timeout."""

    status_code = 504


class InsufficientContextError(Exception):
    """Raised when an operation needs data that does not exist yet (no dataset, no summary, no revenue)."""

    status_code = 409


class LLMUnavailableError(Exception):
    """Raised when the text-generation backend is disabled or not configured."""

    status_code = 503

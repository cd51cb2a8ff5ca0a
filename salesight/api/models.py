"""
Pydantic models for API request/response validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Schema Models (matches schema_intelligence/schema_inference.py)
# ============================================================================

class ColumnInferenceModel(BaseModel):
    """Classification of one uploaded column"""
    original_name: str
    canonical_name: Optional[str] = None
    confidence: float = 0.0
    reason: str = ""


class SchemaModel(BaseModel):
    """Schema snapshot of the uploaded file"""
    columns: List[ColumnInferenceModel]
    row_count: int
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    distinct_counts: Dict[str, int] = Field(default_factory=dict)
    null_counts: Dict[str, int] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# API Request/Response Models
# ============================================================================

class UploadResponse(BaseModel):
    """Result of POST /api/upload, plus whatever the session cache held for this file"""
    hash: str
    title: str
    cached: bool = False
    row_count: int
    dataset_schema: SchemaModel
    column_map: Dict[str, str]
    preview_rows: List[Dict[str, Any]] = Field(default_factory=list)
    aggregates: Optional[Dict[str, Any]] = None
    insights: Optional[List[str]] = None
    chat_messages: List[Dict[str, Any]] = Field(default_factory=list)
    last_refreshed: Optional[str] = None


class AggregatesRequest(BaseModel):
    """Request to compute dashboard aggregates"""
    mapping: Optional[Dict[str, str]] = Field(
        default=None, description="Canonical field -> uploaded column; overrides the inferred map"
    )


class AggregatesResponse(BaseModel):
    hash: str
    column_map: Dict[str, str]
    last_refreshed: str
    summary: Dict[str, Any]
    timeseries: Dict[str, List[Dict[str, Any]]]
    products: List[Dict[str, Any]]
    geo: List[Dict[str, Any]]
    channels: List[Dict[str, Any]]
    anomalies: List[Dict[str, Any]]


class ProductsResponse(BaseModel):
    products: List[Dict[str, Any]]
    limit: int
    offset: int
    order: str


class ChatRequest(BaseModel):
    """Chat question about the loaded dataset"""
    question: str = Field(..., min_length=1)


class ChatRouteResponse(BaseModel):
    """Template chosen for a question and its result table"""
    template: str
    table: List[Dict[str, Any]]


class ChatResponse(BaseModel):
    answer: str
    template: str
    table: List[Dict[str, Any]]


class InsightsResponse(BaseModel):
    insights: List[str]
    note: Optional[str] = None


class HistoryEntry(BaseModel):
    hash: str
    title: str
    row_count: int
    last_refreshed: Optional[str] = None


class HistoryResponse(BaseModel):
    entries: List[HistoryEntry]


class RenameRequest(BaseModel):
    title: str = Field(..., min_length=1)

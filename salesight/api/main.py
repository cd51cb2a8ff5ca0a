"""
FastAPI application for Salesight.
Exposes REST endpoints for the dashboard frontend.

The app is built by create_app() so tests can hand in their own AppState;
the module-level `app` uses the global configuration.
"""

import logging
from typing import Optional

import duckdb
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from salesight import __version__
from salesight.api.models import (
    AggregatesRequest,
    AggregatesResponse,
    ChatRequest,
    ChatResponse,
    ChatRouteResponse,
    HistoryResponse,
    InsightsResponse,
    ProductsResponse,
    RenameRequest,
    UploadResponse,
)
from salesight.api.services import (
    AppState,
    aggregates_service,
    chat_service,
    clear_history_service,
    health_service,
    history_service,
    insights_service,
    products_service,
    rename_history_service,
    reset_session_service,
    route_chat_service,
    upload_service,
)
from salesight.utils.config_loader import Config, validate_config
from salesight.utils.errors import IngestRejectedError, InsufficientContextError, LLMUnavailableError

# Load environment variables (API keys, etc.)
load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter()


def get_state(request: Request) -> AppState:
    return request.app.state.salesight


def _to_http_exception(e: Exception, action: str) -> HTTPException:
    """Map engine errors onto status codes; anything unexpected is a 500."""
    if isinstance(e, (IngestRejectedError, InsufficientContextError, LLMUnavailableError)):
        logger.warning("[%s] %s: %s", action, type(e).__name__, e)
        return HTTPException(status_code=e.status_code, detail=str(e))
    if isinstance(e, duckdb.Error):
        logger.error("[%s] query failed: %s", action, e)
        return HTTPException(status_code=500, detail=f"Query failed: {e}")
    if isinstance(e, TimeoutError):
        logger.error("[%s] %s", action, e)
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("[%s] unexpected error", action)
    return HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Health
# =============================================================================

@router.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Salesight API", "version": __version__}


@router.get("/api/health")
async def health(state: AppState = Depends(get_state)):
    """Detailed health: config warnings, dataset, LLM and cache status."""
    return health_service(state)


# =============================================================================
# Core Endpoints
# =============================================================================

@router.post("/api/upload", response_model=UploadResponse)
def upload(file: UploadFile = File(...), title: Optional[str] = Form(None),
           state: AppState = Depends(get_state)):
    """
    Upload a CSV. Replaces the current dataset and returns its schema,
    inferred column map and a preview. Re-uploading identical bytes also
    returns the cached dashboard state for that file.
    """
    try:
        content = file.file.read()
        return upload_service(state, content, filename=file.filename,
                              content_type=file.content_type, title=title)
    except Exception as e:
        raise _to_http_exception(e, "upload")


@router.post("/api/aggregates", response_model=AggregatesResponse)
def aggregates(request: Optional[AggregatesRequest] = None, state: AppState = Depends(get_state)):
    """Rebuild the cleaned view (optionally with a new column map) and compute every aggregate."""
    try:
        mapping = request.mapping if request else None
        return aggregates_service(state, mapping)
    except Exception as e:
        raise _to_http_exception(e, "aggregates")


@router.get("/api/products", response_model=ProductsResponse)
def products(limit: Optional[int] = None, offset: int = 0, order: str = "desc",
             state: AppState = Depends(get_state)):
    """Paged product ranking by revenue."""
    try:
        return products_service(state, limit=limit, offset=offset, order=order)
    except Exception as e:
        raise _to_http_exception(e, "products")


@router.post("/api/chat/route", response_model=ChatRouteResponse)
def chat_route(request: ChatRequest, state: AppState = Depends(get_state)):
    """Which template answers the question, and its table. No LLM involved."""
    try:
        return route_chat_service(state, request.question)
    except Exception as e:
        raise _to_http_exception(e, "chat_route")


@router.post("/api/chat", response_model=ChatResponse)
def chat(request: ChatRequest, state: AppState = Depends(get_state)):
    try:
        return chat_service(state, request.question)
    except Exception as e:
        raise _to_http_exception(e, "chat")


@router.post("/api/insights", response_model=InsightsResponse)
def insights(state: AppState = Depends(get_state)):
    """3-5 bullet insights over the last computed aggregates."""
    try:
        return insights_service(state)
    except Exception as e:
        raise _to_http_exception(e, "insights")


# =============================================================================
# History & Session
# =============================================================================

@router.get("/api/history", response_model=HistoryResponse)
async def history(state: AppState = Depends(get_state)):
    return history_service(state)


@router.patch("/api/history/{session_hash}")
async def rename_history(session_hash: str, request: RenameRequest, state: AppState = Depends(get_state)):
    if not rename_history_service(state, session_hash, request.title):
        raise HTTPException(status_code=404, detail=f"No session {session_hash}")
    return {"success": True, "hash": session_hash, "title": request.title.strip()}


@router.delete("/api/history")
async def clear_history(state: AppState = Depends(get_state)):
    clear_history_service(state)
    return {"success": True}


@router.post("/api/session/reset")
def reset_session(state: AppState = Depends(get_state)):
    """Drop the loaded dataset. Cached history is kept."""
    try:
        reset_session_service(state)
        return {"success": True}
    except Exception as e:
        raise _to_http_exception(e, "reset")


# =============================================================================
# App factory
# =============================================================================

def configure_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(state: Optional[AppState] = None) -> FastAPI:
    """
    Build the FastAPI app around an AppState.

    Args:
        state: Pre-built state (tests); a default one from settings.yaml otherwise
    """
    state = state or AppState()
    configure_logging(state.config)

    app = FastAPI(
        title="Salesight API",
        description="CSV sales analytics: schema mapping, aggregates and chat over DuckDB",
        version=__version__,
    )
    app.state.salesight = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=state.config.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    for warning in validate_config(state.config):
        logger.warning("config: %s", warning)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("salesight.api.main:app", host="0.0.0.0", port=8000)

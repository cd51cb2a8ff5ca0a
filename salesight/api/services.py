"""
Service layer for API endpoints.

Each service takes the AppState explicitly, calls the engine, keeps the
session cache in step and returns JSON-safe dicts for the response models.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from salesight.core_engine import SalesEngine
from salesight.explanation_layer.explainer_client import ExplainerClient
from salesight.utils.config_loader import Config, get_config, validate_config
from salesight.utils.errors import InsufficientContextError
from salesight.utils.formatting import sanitize_for_json
from salesight.utils.session_cache import SessionCache

logger = logging.getLogger(__name__)


class AppState:
    """
    Application state: one engine, one session cache, one LLM client.

    Tests build their own AppState with an in-memory engine and a fake
    explainer; the API module builds one from the global configuration.
    """

    def __init__(self, config: Optional[Config] = None, engine: Optional[SalesEngine] = None,
                 cache: Optional[SessionCache] = None, explainer: Optional[ExplainerClient] = None):
        self.config = config or get_config()
        self.engine = engine or SalesEngine(config=self.config)
        self.cache = cache or SessionCache(
            max_size=self.config.cache.session_cache_max_size,
            ttl_seconds=self.config.cache.session_cache_ttl_seconds,
        )
        self.explainer = explainer or ExplainerClient(self.config.llm)

    @property
    def data_loaded(self) -> bool:
        return self.engine.data_loaded

    def require_session(self) -> str:
        if not self.engine.loaded_hash:
            raise InsufficientContextError("No dataset loaded. Upload a CSV first.")
        return self.engine.loaded_hash


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# =============================================================================
# Upload & aggregates
# =============================================================================

def upload_service(state: AppState, content: bytes, filename: Optional[str] = None,
                   content_type: Optional[str] = None, title: Optional[str] = None) -> Dict[str, Any]:
    """
    Load an uploaded CSV and return its schema and preview.

    When the same bytes were uploaded before, the cached aggregates,
    insights and chat history come back with the response so the client
    can restore its view. The engine itself always starts fresh.
    """
    filename = filename or "upload.csv"
    with state.engine.lock:
        schema = state.engine.load_csv(content, filename=filename, content_type=content_type)
        session_hash = state.engine.loaded_hash
        preview = state.engine.preview()
        column_map = dict(state.engine.column_map)

    cached, previous = state.cache.get(session_hash)
    previous = previous or {}
    snapshot = state.cache.update(
        session_hash,
        title=title or previous.get("title") or filename,
        row_count=schema.row_count,
        schema=schema.to_dict(),
        preview_rows=preview,
    )
    logger.info("upload %s (%s): cached=%s", filename, session_hash[:12], cached)

    return sanitize_for_json({
        "hash": session_hash,
        "title": snapshot["title"],
        "cached": cached,
        "row_count": schema.row_count,
        "dataset_schema": schema.to_dict(),
        "column_map": column_map,
        "preview_rows": preview,
        "aggregates": snapshot.get("aggregates"),
        "insights": snapshot.get("insights"),
        "chat_messages": snapshot.get("chat_messages") or [],
        "last_refreshed": snapshot.get("last_refreshed"),
    })


def aggregates_service(state: AppState, mapping: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    with state.engine.lock:
        session_hash = state.require_session()
        result = state.engine.compute_aggregates(mapping)
        column_map = dict(state.engine.column_map)
    payload = result.limited(state.config.analytics.dashboard_row_limit).to_dict()

    refreshed = _now_iso()
    state.cache.update(session_hash, aggregates=payload, last_refreshed=refreshed)

    return sanitize_for_json({
        "hash": session_hash,
        "column_map": column_map,
        "last_refreshed": refreshed,
        **payload,
    })


def products_service(state: AppState, limit: Optional[int] = None, offset: int = 0,
                     order: str = "desc") -> Dict[str, Any]:
    state.require_session()
    effective_limit = state.config.analytics.default_product_limit if limit is None else limit
    products = state.engine.products(limit=effective_limit, offset=offset, order=order)
    return sanitize_for_json({
        "products": products,
        "limit": effective_limit,
        "offset": offset,
        "order": order.lower(),
    })


# =============================================================================
# Chat & insights
# =============================================================================

def route_chat_service(state: AppState, question: str) -> Dict[str, Any]:
    """Template routing only, no LLM."""
    return sanitize_for_json(state.engine.route_chat(question).to_dict())


def chat_service(state: AppState, question: str) -> Dict[str, Any]:
    """
    Route the question, then have the LLM phrase an answer from the
    template table. The exchange is appended to the session's chat history.
    """
    with state.engine.lock:
        session_hash = state.require_session()
        routed = state.engine.route_chat(question)
        summary = state.engine.aggregates.summary
    table = sanitize_for_json(routed.table)
    answer = state.explainer.answer_question(question, routed.template, summary, table)

    _, snapshot = state.cache.get(session_hash)
    messages: List[Dict[str, Any]] = list((snapshot or {}).get("chat_messages") or [])
    messages.append({"role": "user", "content": question})
    messages.append({"role": "assistant", "content": answer, "template": routed.template})
    state.cache.update(session_hash, chat_messages=messages)

    return {"answer": answer, "template": routed.template, "table": table}


def insights_service(state: AppState) -> Dict[str, Any]:
    with state.engine.lock:
        session_hash = state.require_session()
        aggregates = state.engine.aggregates
    if aggregates is None:
        raise InsufficientContextError("No aggregates yet. Compute aggregates before requesting insights.")

    result = state.explainer.generate_insights(aggregates)
    if result.insights:
        state.cache.update(session_hash, insights=result.insights)
    return result.to_dict()


# =============================================================================
# History & session
# =============================================================================

def history_service(state: AppState) -> Dict[str, Any]:
    return {"entries": state.cache.history()}


def rename_history_service(state: AppState, session_hash: str, title: str) -> bool:
    return state.cache.rename(session_hash, title.strip())


def clear_history_service(state: AppState) -> None:
    state.cache.clear()
    logger.info("session history cleared")


def reset_session_service(state: AppState) -> None:
    state.engine.reset()


def health_service(state: AppState) -> Dict[str, Any]:
    """Configuration warnings plus dataset and LLM status."""
    warnings = validate_config(state.config)

    checks = {
        "config": {"status": "warning" if warnings else "ok", "warnings": warnings},
        "data": {
            "status": "ok" if state.data_loaded else "warning",
            "loaded": state.data_loaded,
            "row_count": state.engine.schema.row_count if state.data_loaded else 0,
        },
        "llm": {"status": "ok" if state.config.llm.enabled else "warning", "enabled": state.config.llm.enabled},
        "cache": state.cache.get_stats(),
    }
    statuses = [c.get("status") for c in checks.values() if "status" in c]
    return {"status": "degraded" if "warning" in statuses else "healthy", "checks": checks}

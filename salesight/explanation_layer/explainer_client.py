"""
Explainer client - turns routed chat results and dashboard aggregates into
text with Gemini.

The model never sees raw rows: chat answers get the routed template table
plus the summary, insights get a flattened context of at most five rows per
category.
"""

import concurrent.futures
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import google.generativeai as genai

from salesight.analytics_engine.aggregates import AggregateResult
from salesight.explanation_layer.explanation_prompt import (
    CHAT_SYSTEM_PROMPT,
    INSIGHTS_SYSTEM_PROMPT,
    build_chat_prompt,
    build_insights_prompt,
    serialize_context,
)
from salesight.utils.config_loader import LLMConfig
from salesight.utils.errors import InsufficientContextError, LLMUnavailableError

logger = logging.getLogger(__name__)

CONTEXT_ROWS = 5
CONTEXT_DAILY_POINTS = 7
CONTEXT_ANOMALIES = 3

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*")


@dataclass
class InsightsResult:
    insights: List[str] = field(default_factory=list)
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"insights": list(self.insights), "note": self.note}


# =============================================================================
# Context building and response parsing
# =============================================================================

def build_insight_context(aggregates: AggregateResult) -> Dict[str, Any]:
    """
    Flatten the aggregate bundle for the insights prompt.

    Raises:
        InsufficientContextError: If there is no summary or no revenue total
    """
    summary = aggregates.summary if aggregates else None
    if not summary or summary.get("total_revenue") is None:
        raise InsufficientContextError("summary.total_revenue is required for insights")

    return {
        "summary": summary,
        "top_products": [
            {"product": p.get("product"), "revenue": p.get("revenue"), "quantity": p.get("quantity")}
            for p in aggregates.products[:CONTEXT_ROWS]
        ],
        "top_channels": [
            {"channel": c.get("channel"), "revenue": c.get("revenue"), "quantity": c.get("quantity")}
            for c in aggregates.channels[:CONTEXT_ROWS]
        ],
        "top_geo": [
            {"city": g.get("city"), "state": g.get("state"), "revenue": g.get("revenue"), "quantity": g.get("quantity")}
            for g in aggregates.geo[:CONTEXT_ROWS]
        ],
        "timeseries": [
            {"date": d.get("date"), "revenue": d.get("revenue"), "quantity": d.get("quantity")}
            for d in aggregates.timeseries.get("daily", [])[:CONTEXT_DAILY_POINTS]
        ],
        "anomalies": aggregates.anomalies[:CONTEXT_ANOMALIES],
    }


def strip_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    out = text.strip()
    if out.startswith("```"):
        out = _FENCE_RE.sub("", out)
        if out.endswith("```"):
            out = out[:-3]
        out = out.strip()
    return out


def parse_insights_response(raw: Any) -> List[str]:
    """
    Normalise whatever the model returned into a flat list of bullets.

    Accepts a JSON array (optionally fenced), a list of such strings, or
    plain text (kept as a single bullet). Empty bullets are dropped.

    Examples:
        >>> parse_insights_response('["a", "b"]')
        ['a', 'b']
        >>> parse_insights_response("Revenue is flat.")
        ['Revenue is flat.']
    """
    if not raw:
        return []
    items = raw if isinstance(raw, list) else [raw]
    flat: List[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        stripped = strip_fence(item)
        if stripped.startswith("[") or stripped.startswith("{"):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                flat.extend(v if isinstance(v, str) else json.dumps(v) for v in parsed)
                continue
        flat.append(stripped)
    return [s for s in flat if s]


# =============================================================================
# Gemini client
# =============================================================================

class ExplainerClient:
    """
    Gemini-backed text generation for chat answers and insights.

    Args:
        config: LLM section of the configuration
        model_factory: Builds a model from (system_prompt, max_output_tokens).
            Defaults to a google.generativeai.GenerativeModel; tests pass a fake.
    """

    def __init__(self, config: LLMConfig,
                 model_factory: Optional[Callable[[str, int], Any]] = None):
        self.config = config
        self._model_factory = model_factory or self._gemini_model
        self._models: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _gemini_model(self, system_prompt: str, max_output_tokens: int):
        api_key = os.getenv(self.config.api_key_env)
        if not api_key:
            raise LLMUnavailableError(f"{self.config.api_key_env} not set")

        genai.configure(api_key=api_key)
        return genai.GenerativeModel(
            model_name=self.config.model,
            generation_config={
                "temperature": self.config.temperature,
                "max_output_tokens": max_output_tokens,
            },
            system_instruction=system_prompt,
        )

    def _ensure_enabled(self) -> None:
        if not self.config.enabled:
            raise LLMUnavailableError("LLM disabled (set SALESIGHT_ENABLE_LLM=true to enable)")

    def _model(self, kind: str, system_prompt: str, max_output_tokens: int):
        with self._lock:
            if kind not in self._models:
                self._models[kind] = self._model_factory(system_prompt, max_output_tokens)
            return self._models[kind]

    def _generate(self, model, prompt: str) -> str:
        """Call the model with a timeout to prevent hanging."""
        timeout_seconds = self.config.request_timeout_seconds
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(model.generate_content, prompt)
            response = future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"LLM request timed out after {timeout_seconds} seconds")
        finally:
            executor.shutdown(wait=False)

        try:
            return (response.text or "").strip()
        except ValueError:
            # Gemini raises on .text when the candidate was blocked or empty
            logger.warning("LLM returned no text candidate")
            return ""

    def answer_question(self, question: str, template: str, summary: Optional[Dict[str, Any]],
                        table: List[Dict[str, Any]]) -> str:
        """Natural-language answer for a routed chat question."""
        self._ensure_enabled()
        model = self._model("chat", CHAT_SYSTEM_PROMPT, self.config.chat_max_output_tokens)
        answer = self._generate(model, build_chat_prompt(question, template, summary, table))
        return answer or "No answer"

    def generate_insights(self, aggregates: AggregateResult) -> InsightsResult:
        """
        3-5 bullet insights for the dashboard.

        Oversized contexts are skipped (empty list plus a note) rather than
        sent to the model.
        """
        self._ensure_enabled()
        context = build_insight_context(aggregates)
        if len(serialize_context(context)) > self.config.max_insight_context_chars:
            logger.info("insights skipped: context exceeds %d chars", self.config.max_insight_context_chars)
            return InsightsResult(note="Context too large, skipped insights to save tokens.")

        model = self._model("insights", INSIGHTS_SYSTEM_PROMPT, self.config.insights_max_output_tokens)
        content = self._generate(model, build_insights_prompt(context))
        return InsightsResult(insights=parse_insights_response(content or "[]"))

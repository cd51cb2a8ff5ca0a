"""
Chat Query Router - maps a free-text question to one fixed query template.

Classification is a first-match-wins cascade of substring tests over the
lowercased question. Each template runs its own query against the
"cleaned" view; templates share nothing. The cascade is an ordered list of
ChatTemplate entries, so new templates slot in without touching callers.

    "what are my top products by channel" -> top_products  (rule 1 beats rule 2)
    "sales by city"                       -> geo
    "how are we doing?"                   -> summary
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from salesight.analytics_engine.aggregates import DAILY_ZSCORE_SQL, zscore_rows
from salesight.analytics_engine.duckdb_manager import DuckDBManager
from salesight.utils.formatting import MAX_DISPLAY_YEAR, MIN_DISPLAY_YEAR, safe_to_iso

logger = logging.getLogger(__name__)

TOP_N = 5
SUMMARY_TEMPLATE = "summary"

Row = Dict[str, Any]
TableBuilder = Callable[[DuckDBManager], List[Row]]


@dataclass(frozen=True)
class ChatTemplate:
    name: str
    matches: Callable[[str], bool]
    build: TableBuilder


@dataclass(frozen=True)
class ChatRouteResult:
    template: str
    table: List[Row]

    def to_dict(self) -> Dict[str, Any]:
        return {"template": self.template, "table": self.table}


def contains_all(*words: str) -> Callable[[str], bool]:
    return lambda text: all(w in text for w in words)


def contains_any(*words: str) -> Callable[[str], bool]:
    return lambda text: any(w in text for w in words)


# =============================================================================
# Template queries
# =============================================================================

def top_products_table(db: DuckDBManager) -> List[Row]:
    return db.query_records(f"""
        SELECT product, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        GROUP BY 1
        ORDER BY revenue DESC NULLS LAST, product NULLS LAST
        LIMIT {TOP_N}
    """)


def channels_table(db: DuckDBManager) -> List[Row]:
    return db.query_records(f"""
        SELECT channel, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        GROUP BY 1
        ORDER BY revenue DESC NULLS LAST, channel NULLS LAST
        LIMIT {TOP_N}
    """)


def geo_table(db: DuckDBManager) -> List[Row]:
    return db.query_records(f"""
        SELECT state, city, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        GROUP BY 1, 2
        ORDER BY revenue DESC NULLS LAST, state NULLS LAST, city NULLS LAST
        LIMIT {TOP_N}
    """)


def anomalies_table(db: DuckDBManager) -> List[Row]:
    """Strongest daily deviations by |z|; unlike the dashboard list there is no threshold."""
    rows = db.query_records(
        f"SELECT * FROM ({DAILY_ZSCORE_SQL}) ORDER BY ABS(zscore) DESC, date LIMIT {TOP_N}"
    )
    return zscore_rows(rows)


def _latest_buckets(db: DuckDBManager, part: str, key: str) -> List[Row]:
    rows = db.query_records(f"""
        SELECT DATE_TRUNC('{part}', ts) AS bucket, SUM(revenue) AS rev
        FROM cleaned
        WHERE ts IS NOT NULL AND YEAR(ts) BETWEEN {MIN_DISPLAY_YEAR} AND {MAX_DISPLAY_YEAR}
        GROUP BY 1
        ORDER BY 1 DESC
        LIMIT 2
    """)
    return [{key: safe_to_iso(r["bucket"]), "rev": r["rev"]} for r in rows]


def mom_growth_table(db: DuckDBManager) -> List[Row]:
    return _latest_buckets(db, "month", "month")


def yoy_growth_table(db: DuckDBManager) -> List[Row]:
    return _latest_buckets(db, "year", "year")


CHAT_TEMPLATES: List[ChatTemplate] = [
    ChatTemplate("top_products", contains_all("top", "product"), top_products_table),
    ChatTemplate("channels", contains_any("channel"), channels_table),
    ChatTemplate("geo", contains_any("state", "city", "geo"), geo_table),
    ChatTemplate("anomalies", contains_any("anomaly", "outlier"), anomalies_table),
    ChatTemplate("mom_growth", contains_any("mom", "month", "growth"), mom_growth_table),
    ChatTemplate("yoy_growth", contains_any("yoy", "year"), yoy_growth_table),
]


def classify_question(question: str, templates: Sequence[ChatTemplate] = CHAT_TEMPLATES) -> Optional[ChatTemplate]:
    """First template whose predicate accepts the lowercased question, else None."""
    text = question.lower()
    for template in templates:
        if template.matches(text):
            return template
    return None


def route_question(db: DuckDBManager, question: str, summary: Optional[Dict[str, Any]] = None,
                   templates: Sequence[ChatTemplate] = CHAT_TEMPLATES) -> ChatRouteResult:
    """
    Pick a template for the question and run its query.

    Args:
        db: Manager whose "cleaned" view is already materialised
        question: Free-text question
        summary: Current summary aggregate, used by the fallback template
        templates: Ordered template list (first match wins)

    Returns:
        ChatRouteResult(template, table). The fallback is a one-row table
        holding the summary, or empty when no summary exists.
    """
    template = classify_question(question, templates)
    if template is None:
        logger.info("router_decision: %s (no template matched)", SUMMARY_TEMPLATE)
        return ChatRouteResult(SUMMARY_TEMPLATE, [dict(summary)] if summary else [])

    logger.info("router_decision: %s", template.name)
    return ChatRouteResult(template.name, template.build(db))

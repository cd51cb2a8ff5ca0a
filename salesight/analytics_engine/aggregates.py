"""
Aggregation Engine - read-only business aggregates over the "cleaned" view.

Every function here is a pure read: it issues its own queries against the
current view and returns plain dicts/lists with ISO-8601 dates. Nothing is
cached. An empty or all-NULL view yields empty lists and None totals.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from salesight.analytics_engine.duckdb_manager import DuckDBManager
from salesight.utils.formatting import safe_to_iso

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_LIMIT = 10
DEFAULT_ZSCORE_THRESHOLD = 2.0

# Per-day revenue with its z-score against all days (sample stddev).
# Days are only scored when the stddev exists and is non-zero.
DAILY_ZSCORE_SQL = """
    WITH daily AS (
      SELECT DATE_TRUNC('day', ts) AS d, SUM(revenue) AS revenue
      FROM cleaned
      WHERE ts IS NOT NULL
      GROUP BY 1
    ),
    stats AS (
      SELECT AVG(revenue) AS avg_rev, STDDEV_SAMP(revenue) AS sd_rev FROM daily
    )
    SELECT d AS date, revenue, (revenue - stats.avg_rev) / stats.sd_rev AS zscore
    FROM daily, stats
    WHERE stats.sd_rev IS NOT NULL AND stats.sd_rev > 0 AND revenue IS NOT NULL
"""

GROWTH_SQL = """
    WITH daily AS (
      SELECT DATE_TRUNC('day', ts) AS d, SUM(revenue) AS rev
      FROM cleaned
      WHERE ts IS NOT NULL
      GROUP BY 1
    )
    SELECT
      SUM(CASE WHEN d >= ? THEN rev ELSE 0 END) AS this_month,
      SUM(CASE WHEN d >= ? AND d < ? THEN rev ELSE 0 END) AS prev_month,
      SUM(CASE WHEN d >= ? THEN rev ELSE 0 END) AS this_year,
      SUM(CASE WHEN d >= ? AND d < ? THEN rev ELSE 0 END) AS prev_year
    FROM daily
"""


@dataclass
class AggregateResult:
    """Dashboard bundle: every projection of the cleaned view in one place."""
    summary: Dict[str, Any]
    timeseries: Dict[str, List[Dict[str, Any]]]
    products: List[Dict[str, Any]] = field(default_factory=list)
    geo: List[Dict[str, Any]] = field(default_factory=list)
    channels: List[Dict[str, Any]] = field(default_factory=list)
    anomalies: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def limited(self, max_rows: int) -> "AggregateResult":
        """Copy with breakdown lists cut to max_rows (time series kept whole)."""
        return AggregateResult(
            summary=dict(self.summary),
            timeseries={k: list(v) for k, v in self.timeseries.items()},
            products=self.products[:max_rows],
            geo=self.geo[:max_rows],
            channels=self.channels[:max_rows],
            anomalies=self.anomalies[:max_rows],
        )


def _growth_pct(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if not previous:
        return None
    return ((current or 0.0) - previous) / previous


def calendar_boundaries(now: datetime) -> Dict[str, datetime]:
    """Start of this/previous calendar month and year relative to `now`."""
    month_start = datetime(now.year, now.month, 1)
    return {
        "month_start": month_start,
        "prev_month_start": (month_start - timedelta(days=1)).replace(day=1),
        "year_start": datetime(now.year, 1, 1),
        "prev_year_start": datetime(now.year - 1, 1, 1),
    }


def compute_calendar_growth(db: DuckDBManager, now: Optional[datetime] = None) -> Dict[str, Optional[float]]:
    """
    Month-over-month and year-over-year revenue growth anchored to evaluation time.

    The buckets are calendar months/years relative to `now` (wall clock by
    default), not to the dataset's own date range, so a historical dataset
    usually gets None for both. Swap this function out for data-anchored
    growth; get_summary() only relies on its return keys.

    Returns:
        dict with mom_growth_pct and yoy_growth_pct (None when the previous
        bucket is zero or empty)
    """
    bounds = calendar_boundaries(now or datetime.now())
    row = db.query_one(GROWTH_SQL, [
        bounds["month_start"],
        bounds["prev_month_start"], bounds["month_start"],
        bounds["year_start"],
        bounds["prev_year_start"], bounds["year_start"],
    ])
    return {
        "mom_growth_pct": _growth_pct(row.get("this_month"), row.get("prev_month")),
        "yoy_growth_pct": _growth_pct(row.get("this_year"), row.get("prev_year")),
    }


def get_summary(db: DuckDBManager, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Totals, date range and growth for the cleaned view.

    Returns:
        dict with total_revenue, total_quantity, min_date, max_date,
        mom_growth_pct, yoy_growth_pct, has_date
    """
    row = db.query_one("""
        SELECT
          SUM(revenue) AS total_revenue,
          SUM(quantity) AS total_quantity,
          MIN(ts) AS min_ts,
          MAX(ts) AS max_ts
        FROM cleaned
    """)

    has_date = row.get("min_ts") is not None
    growth = {"mom_growth_pct": None, "yoy_growth_pct": None}
    if has_date:
        growth = compute_calendar_growth(db, now)

    return {
        "total_revenue": row.get("total_revenue"),
        "total_quantity": row.get("total_quantity"),
        "min_date": safe_to_iso(row.get("min_ts")),
        "max_date": safe_to_iso(row.get("max_ts")),
        "mom_growth_pct": growth["mom_growth_pct"],
        "yoy_growth_pct": growth["yoy_growth_pct"],
        "has_date": has_date,
    }


def _bucketed(db: DuckDBManager, part: str, key: str) -> List[Dict[str, Any]]:
    rows = db.query_records(f"""
        SELECT DATE_TRUNC('{part}', ts) AS bucket, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        WHERE ts IS NOT NULL
        GROUP BY 1
        ORDER BY 1
    """)
    series = []
    for r in rows:
        bucket = safe_to_iso(r["bucket"])
        # Buckets outside the displayable calendar range are left out
        if bucket is not None:
            series.append({key: bucket, "revenue": r["revenue"], "quantity": r["quantity"]})
    return series


def zscore_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Format daily z-score rows, dropping days outside the displayable range."""
    result = []
    for r in rows:
        day = safe_to_iso(r["date"])
        if day is not None:
            result.append({"date": day, "revenue": r["revenue"], "zscore": r["zscore"]})
    return result


def get_timeseries(db: DuckDBManager) -> Dict[str, List[Dict[str, Any]]]:
    """Daily and monthly revenue/quantity sums over rows with a timestamp, ascending."""
    return {
        "daily": _bucketed(db, "day", "date"),
        "monthly": _bucketed(db, "month", "month"),
    }


def get_products(db: DuckDBManager, limit: int = DEFAULT_PRODUCT_LIMIT, offset: int = 0,
                 order: str = "desc") -> List[Dict[str, Any]]:
    """
    Products ranked by revenue.

    Args:
        limit: Page size
        offset: Rows to skip
        order: "desc" (best sellers first) or "asc"
    """
    direction = order.lower()
    if direction not in ("asc", "desc"):
        raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")
    limit, offset = int(limit), int(offset)
    if limit < 0 or offset < 0:
        raise ValueError("limit and offset must be non-negative")

    return db.query_records(f"""
        SELECT product, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        WHERE product IS NOT NULL
        GROUP BY 1
        ORDER BY revenue {direction.upper()} NULLS LAST, product
        LIMIT {limit} OFFSET {offset}
    """)


def get_geo(db: DuckDBManager) -> List[Dict[str, Any]]:
    """Revenue per (state, city) pair; a row counts if either part is present."""
    return db.query_records("""
        SELECT state, city, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        WHERE state IS NOT NULL OR city IS NOT NULL
        GROUP BY 1, 2
        ORDER BY revenue DESC NULLS LAST, state NULLS LAST, city NULLS LAST
    """)


def get_channels(db: DuckDBManager) -> List[Dict[str, Any]]:
    return db.query_records("""
        SELECT channel, SUM(revenue) AS revenue, SUM(quantity) AS quantity
        FROM cleaned
        WHERE channel IS NOT NULL
        GROUP BY 1
        ORDER BY revenue DESC NULLS LAST, channel
    """)


def get_anomalies(db: DuckDBManager, threshold: float = DEFAULT_ZSCORE_THRESHOLD) -> List[Dict[str, Any]]:
    """
    Days whose revenue is more than `threshold` sample standard deviations
    from the mean daily revenue, strongest first.

    Empty with fewer than two days or zero variance.
    """
    rows = db.query_records(
        f"SELECT * FROM ({DAILY_ZSCORE_SQL}) WHERE ABS(zscore) > ? ORDER BY ABS(zscore) DESC, date",
        [float(threshold)],
    )
    return zscore_rows(rows)


def compute_aggregates(db: DuckDBManager, product_limit: int = DEFAULT_PRODUCT_LIMIT,
                       zscore_threshold: float = DEFAULT_ZSCORE_THRESHOLD,
                       now: Optional[datetime] = None) -> AggregateResult:
    """
    Run every aggregate against the current cleaned view.

    A failure in any query propagates; no partial bundle is returned.
    """
    result = AggregateResult(
        summary=get_summary(db, now=now),
        timeseries=get_timeseries(db),
        products=get_products(db, limit=product_limit),
        geo=get_geo(db),
        channels=get_channels(db),
        anomalies=get_anomalies(db, threshold=zscore_threshold),
    )
    logger.info(
        "aggregates computed: %d daily points, %d products, %d geo rows, %d channels, %d anomalies",
        len(result.timeseries["daily"]), len(result.products), len(result.geo),
        len(result.channels), len(result.anomalies),
    )
    return result

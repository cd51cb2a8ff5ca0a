"""
Canonical Field Mapper - classifies raw CSV headers into canonical sales fields.

Each column is classified on its own name only, by an ordered table of
regex rules. The first rule that matches wins; later rules are not tried.
Two raw columns may therefore land on the same canonical field; that
ambiguity is reported by find_mapping_conflicts() instead of being resolved
here.
"""

import logging
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)


class CanonicalField(str, Enum):
    ORDER_ID = "order_id"
    PRODUCT = "product"
    TIMESTAMP = "timestamp"
    QUANTITY = "quantity"
    PRICE = "price"
    REVENUE = "revenue"
    CHANNEL = "channel"
    CITY = "city"
    STATE = "state"
    ZIP = "zip"
    SOURCE_FILE = "source_file"
    ORIGINAL_COLUMN = "original_column"


CANONICAL_FIELDS: List[str] = [f.value for f in CanonicalField]

BASE_CONFIDENCE = 0.5
MATCH_BUMP = 0.4


@dataclass(frozen=True)
class MappingRule:
    field: CanonicalField
    pattern: Pattern
    reason: str


# Precedence order matters: "order_date" is an order_id, "product_id" is an order_id too.
MAPPING_RULES: List[MappingRule] = [
    MappingRule(CanonicalField.ORDER_ID, re.compile(r"order|id|^id$"), "matches order/id"),
    MappingRule(CanonicalField.PRODUCT, re.compile(r"product|item|sku"), "matches product/item/sku"),
    MappingRule(CanonicalField.TIMESTAMP, re.compile(r"date|time"), "matches date/time"),
    MappingRule(CanonicalField.QUANTITY, re.compile(r"qty|quantity|units?"), "matches quantity"),
    MappingRule(CanonicalField.PRICE, re.compile(r"price|amount|cost"), "matches price/amount"),
    MappingRule(CanonicalField.REVENUE, re.compile(r"revenue|sales|total"), "matches revenue/total"),
    MappingRule(CanonicalField.CHANNEL, re.compile(r"channel|market|source"), "matches channel/market/source"),
    MappingRule(CanonicalField.CITY, re.compile(r"city"), "matches city"),
    MappingRule(CanonicalField.STATE, re.compile(r"\bstate\b|province"), "matches state/province"),
    MappingRule(CanonicalField.ZIP, re.compile(r"\bzip\b|postal"), "matches zip/postal"),
]


@dataclass(frozen=True)
class ColumnInference:
    """Classification of one raw column."""
    original_name: str
    canonical_name: Optional[str] = None
    confidence: float = 0.0
    reason: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


# canonical field name -> raw column name
ColumnMap = Dict[str, str]


def infer_canonical(column_name: str, rules: Iterable[MappingRule] = MAPPING_RULES) -> ColumnInference:
    """
    Classify a raw column name.

    Args:
        column_name: Header as it appears in the upload
        rules: Ordered rule table (first match wins)

    Returns:
        ColumnInference with canonical_name None and confidence 0 when no rule matches

    Examples:
        >>> infer_canonical("Order Date").canonical_name
        'order_id'
        >>> infer_canonical("Units Sold").canonical_name
        'quantity'
    """
    lower = column_name.lower().strip()
    for rule in rules:
        if rule.pattern.search(lower):
            return ColumnInference(
                original_name=column_name,
                canonical_name=rule.field.value,
                confidence=min(1.0, BASE_CONFIDENCE + MATCH_BUMP),
                reason=rule.reason,
            )
    return ColumnInference(original_name=column_name)


def infer_columns(column_names: Iterable[str]) -> List[ColumnInference]:
    return [infer_canonical(name) for name in column_names]


def find_mapping_conflicts(columns: Iterable[ColumnInference]) -> Dict[str, List[str]]:
    """Canonical fields claimed by more than one raw column, in column order."""
    claims: Dict[str, List[str]] = {}
    for col in columns:
        if col.canonical_name:
            claims.setdefault(col.canonical_name, []).append(col.original_name)
    return {name: cols for name, cols in claims.items() if len(cols) > 1}


def describe_conflicts(conflicts: Dict[str, List[str]]) -> List[str]:
    """Human-readable warning per conflicting canonical field."""
    return [
        f"{field} matched {len(cols)} columns ({', '.join(cols)}); using '{cols[-1]}'"
        for field, cols in conflicts.items()
    ]


def build_column_map(columns: Iterable[ColumnInference]) -> ColumnMap:
    """
    Fold inferences into canonical field -> raw column.

    A later column overwrites an earlier one for the same field; every such
    overwrite is logged so the dropped column is not lost silently.
    """
    mapping: ColumnMap = {}
    for col in columns:
        if not col.canonical_name:
            continue
        previous = mapping.get(col.canonical_name)
        if previous is not None:
            logger.warning(
                "mapping_conflict: %s claimed by '%s' and '%s'; keeping '%s'",
                col.canonical_name, previous, col.original_name, col.original_name,
            )
        mapping[col.canonical_name] = col.original_name
    return mapping

"""
Prompt text for the two LLM calls: answering a routed chat question and
writing dashboard insights. Only precomputed aggregates ever reach the model.
"""

import json
from typing import Any, Dict, List, Optional

CHAT_SYSTEM_PROMPT = """
You are a sales data analyst. Answer concisely (2-4 sentences).

Rules:
- Only use the provided fields; cite the numbers you use.
- Do not invent columns, products, channels or dates.
- If the table is empty, say there is insufficient data.
- Mention assumptions (for example, that dates come from the column ts).
- Respond as plain text (no JSON, no bullets).
""".strip()

INSIGHTS_SYSTEM_PROMPT = """
You are a sales data analyst. Produce 3-5 concise bullet insights.

Rules:
- Only use the provided fields; cite numbers with units.
- Be honest about gaps; never invent fields.
- Keep the whole answer under 120 words.
- If revenue is missing or zero, say 'Insufficient data to generate insights.'
- Include caveats if geo or channel data is absent.

Respond as a JSON array of strings. Each string is one bullet.
""".strip()


def _to_json(payload: Any, indent: Optional[int] = None) -> str:
    return json.dumps(payload, indent=indent, default=str)


def build_chat_prompt(question: str, template: str, summary: Optional[Dict[str, Any]],
                      table: List[Dict[str, Any]]) -> str:
    """User prompt for a chat answer: question plus the routed template result."""
    lines = [
        f"Question: {question}",
        "Context:",
        _to_json({"summary": summary, "template": template, "table": table}, indent=2),
    ]
    return "\n".join(lines)


def build_insights_prompt(context: Dict[str, Any]) -> str:
    """User prompt for dashboard insights from an already-flattened context."""
    return "Context JSON:\n" + serialize_context(context)


def serialize_context(context: Dict[str, Any]) -> str:
    """Compact JSON used both in the prompt and for the context size check."""
    return _to_json(context)

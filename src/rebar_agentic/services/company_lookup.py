"""Resolve an ambiguous company term into a short list of candidates."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from rebar_agentic.agents import research_prompts as prompts
from rebar_agentic.config.settings import get_settings
from rebar_agentic.services.errors import ApiError
from rebar_agentic.services.openai_provider import collect_response_text

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5


def parse_candidates(text: str) -> List[Dict[str, Any]]:
    """Pull ``items`` out of the outermost JSON object in ``text``."""

    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return []
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        logger.warning("Company lookup returned unparseable JSON")
        return []
    items = parsed.get("items") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        return []

    candidates = []
    for item in items[:MAX_CANDIDATES]:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        confidence = item.get("confidence")
        candidates.append(
            {
                "name": str(item["name"]),
                "industry": item.get("industry") or None,
                "website": item.get("website") or None,
                "confidence": confidence if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else None,
            }
        )
    return candidates


async def resolve_company(term: Optional[str], user_id: str, client=None) -> Dict[str, Any]:
    term = (term or "").strip()
    if len(term) < 2:
        raise ApiError("term is required", 400)
    text = await collect_response_text(
        client,
        model=get_settings().default_model,
        instructions=prompts.COMPANY_LOOKUP_INSTRUCTIONS,
        input=f"term: {term}",
        tools=[{"type": "web_search"}],
        text={"format": {"type": "text"}, "verbosity": "low"},
        store=False,
        metadata={"route": "companies/resolve", "user_id": user_id},
    )
    return {"items": parse_candidates(text), "term": term}

"""Score a research report against the user's custom qualifying criteria.

Returns one assessment per criterion (``status`` met / not_met / unknown
with a value, confidence and explanation). When the report is a stored
research output the assessment is written back onto it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from rebar_agentic.agents import research_prompts as prompts
from rebar_agentic.config.settings import get_settings
from rebar_agentic.services import supabase_client
from rebar_agentic.services.errors import ApiError
from rebar_agentic.services.openai_provider import collect_response_text

logger = logging.getLogger(__name__)


def criteria_for_prompt(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": row.get("id"),
            "name": row.get("field_name"),
            "type": row.get("field_type"),
            "importance": row.get("importance"),
            "hints": row.get("hints") or [],
        }
        for row in rows
    ]


def build_evaluation_prompt(criteria: List[Dict[str, Any]], content: str) -> str:
    return "\n".join(
        [
            "CUSTOM CRITERIA:",
            json.dumps(criteria, indent=2),
            f"\nRESEARCH CONTENT (Markdown):\n---\n{content}\n---",
            "\nRespond with JSON array only.",
        ]
    )


def parse_assessment(text: str) -> List[Any]:
    try:
        parsed = json.loads(text or "[]")
    except json.JSONDecodeError:
        logger.warning("Criteria evaluation returned unparseable JSON")
        return []
    return parsed if isinstance(parsed, list) else []


async def evaluate_research(
    user_id: str,
    *,
    research_id: Optional[str] = None,
    markdown: Optional[str] = None,
    client=None,
) -> List[Any]:
    if not research_id and not markdown:
        raise ApiError("research_id or markdown is required", 400)
    content = markdown or ""
    if not content and research_id:
        content = await asyncio.to_thread(supabase_client.get_research_markdown, user_id, research_id)
    if not content:
        raise ApiError("No content to evaluate", 400)

    rows = await asyncio.to_thread(supabase_client.list_custom_criteria, user_id)
    text = await collect_response_text(
        client,
        model=get_settings().default_model,
        instructions=prompts.CRITERIA_EVALUATION_INSTRUCTIONS,
        input=build_evaluation_prompt(criteria_for_prompt(rows), content),
        text={"format": {"type": "text"}, "verbosity": "low"},
        store=False,
    )
    assessment = parse_assessment(text)
    if research_id and assessment:
        await asyncio.to_thread(
            supabase_client.update_research_output,
            user_id,
            research_id,
            {"custom_criteria_assessment": assessment},
        )
    return assessment

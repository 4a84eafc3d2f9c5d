"""Health, credit estimates and prompt debugging."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from rebar_agentic import __version__
from rebar_agentic.agents.research_prompts import build_system_prompt
from rebar_agentic.api.deps import get_current_user
from rebar_agentic.config.settings import get_settings
from rebar_agentic.services import memory, supabase_client
from rebar_agentic.services.credit_estimation import estimate_credits, format_credit_range
from rebar_agentic.services.errors import ApiError

router = APIRouter()


class EstimateBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = ""


class BuildPromptBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    agent_type: str = "company_research"
    research_type: Optional[str] = None


@router.get("/health", summary="Health check")
def health():
    return {"status": "ok", "version": __version__}


@router.post("/credits/estimate", summary="Estimate the credit cost of a query")
def credits_estimate(body: EstimateBody):
    estimate = estimate_credits(body.query)
    return {
        "min": estimate.min,
        "max": estimate.max,
        "description": estimate.description,
        "label": format_credit_range(estimate),
    }


@router.post("/debug/build-prompt", summary="Render the system prompt for the caller")
def debug_build_prompt(body: BuildPromptBody, user: Dict[str, Any] = Depends(get_current_user)):
    if not get_settings().enable_prompt_debug:
        raise ApiError("Not found", 404)
    context = supabase_client.get_user_context(user["id"])
    prompt = build_system_prompt(context, body.agent_type, body.research_type)
    block = memory.build_memory_block(user["id"], body.agent_type)
    return {"prompt": f"{block}\n\n{prompt}" if block else prompt, "memory": block}

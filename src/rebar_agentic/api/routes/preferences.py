"""User preferences, implicit preference memory and alias follow-ups."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from rebar_agentic.api.deps import get_current_user, require_service_key
from rebar_agentic.services import aliases, memory, open_questions, preferences
from rebar_agentic.services.access import assert_email_allowed
from rebar_agentic.services.errors import ApiError

router = APIRouter()

DEFAULT_AGENT = "company_research"


class PreferencesBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    preferences: List[Dict[str, Any]] = Field(default_factory=list)


class PreferenceSignalBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    agent: str = ""
    key: str = ""
    observed: Any = None
    weight: float = 1.0


class AliasConfirmBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    alias: str = ""
    canonical: Optional[str] = None
    question_id: Optional[str] = None
    action: str = ""


@router.get("/preferences", summary="Stored and resolved preferences")
def get_preferences(user: Dict[str, Any] = Depends(get_current_user)):
    resolved, rows, prompt_config = preferences.get_resolved_preferences(user["id"])
    return {"preferences": rows, "promptConfig": prompt_config, "resolved": resolved}


@router.post("/preferences", summary="Upsert preferences")
def save_preferences(body: PreferencesBody, user: Dict[str, Any] = Depends(get_current_user)):
    if not body.preferences:
        raise ApiError("preferences array is required", 400)
    preferences.upsert_preferences(user["id"], body.preferences)
    resolved, rows, _ = preferences.get_resolved_preferences(user["id"])
    return {"preferences": rows, "resolved": resolved}


@router.post("/aliases/confirm", summary="Confirm or reject a learned company alias")
def confirm_alias(body: AliasConfirmBody, user: Dict[str, Any] = Depends(get_current_user)):
    aliases.confirm_alias(user["id"], body.alias, body.canonical, body.action, body.question_id)
    return {"success": True}


@router.post("/agent/signal", summary="Record an implicit preference observation")
def record_signal(body: PreferenceSignalBody, user: Dict[str, Any] = Depends(get_current_user)):
    assert_email_allowed(user.get("email"))
    key = body.key.strip()
    if not key:
        raise ApiError("Preference key is required", 400)
    if not isinstance(body.observed, dict) or not body.observed:
        raise ApiError("Observed payload must be an object", 400)
    agent = body.agent.strip() or DEFAULT_AGENT
    value = memory.record_preference_signal(user["id"], agent, key, body.observed, body.weight)
    return {"ok": True, "key": key, "agent": agent, "value": value}


@router.get("/followups", summary="Unresolved follow-up questions")
def list_followups(limit: int = 10, user: Dict[str, Any] = Depends(get_current_user)):
    return {"questions": open_questions.list_open_questions(user["id"], limit=max(1, min(limit, 50)))}


@router.post("/memory/rollup", summary="Decay implicit preferences and queue knowledge suggestions")
def memory_rollup(authorization: Optional[str] = Header(None)):
    require_service_key(authorization, "Service authorization required")
    return memory.rollup_implicit_preferences()

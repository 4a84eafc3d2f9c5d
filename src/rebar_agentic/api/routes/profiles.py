"""Company profile saves and company-name lookup."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ConfigDict

from rebar_agentic.api.deps import get_current_user
from rebar_agentic.services import company_lookup, profiles
from rebar_agentic.services.access import assert_email_allowed
from rebar_agentic.services.errors import ApiError

router = APIRouter()


class ResolveBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    term: Optional[str] = None


@router.post("/profiles/update", summary="Save profile, criteria, signal preferences and prompt config")
def update_profile(
    body: Optional[Dict[str, Any]] = Body(None),
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Accepts one save payload, or several under ``payloads`` applied in order."""

    body = body or {}
    payloads = body.get("payloads")
    if payloads is None:
        payloads = [body]
    if not isinstance(payloads, list) or not all(isinstance(p, dict) for p in payloads):
        raise ApiError("payloads must be a list of objects", 400)
    result = profiles.apply_profile_saves(user["id"], payloads)
    return {"success": True, "data": result.to_payload()}


@router.get("/companies/resolve", summary="Candidate companies for an ambiguous term")
async def resolve_company_get(term: Optional[str] = None, user: Dict[str, Any] = Depends(get_current_user)):
    assert_email_allowed(user.get("email"))
    return await company_lookup.resolve_company(term, user["id"])


@router.post("/companies/resolve", summary="Candidate companies for an ambiguous term")
async def resolve_company_post(body: ResolveBody, user: Dict[str, Any] = Depends(get_current_user)):
    assert_email_allowed(user.get("email"))
    return await company_lookup.resolve_company(body.term, user["id"])

"""Bulk research jobs, plus scoring a report against custom criteria."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from rebar_agentic.api.deps import get_current_user, require_service_key
from rebar_agentic.services import bulk_research, criteria_evaluation
from rebar_agentic.services.access import assert_email_allowed
from rebar_agentic.services.errors import ApiError

router = APIRouter()


class BulkResearchBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    companies: List[Any] = Field(default_factory=list)
    research_type: str = "quick"


class BulkRunnerBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job_id: str = ""
    concurrency: Optional[int] = None


class CancelBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job_id: str = ""


class EvaluateBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    research_id: Optional[str] = None
    markdown: Optional[str] = None


@router.post("/research/bulk", summary="Start a bulk research job")
def start_bulk_research(body: BulkResearchBody, user: Dict[str, Any] = Depends(get_current_user)):
    return bulk_research.create_bulk_job(user["id"], body.companies, body.research_type)


@router.post("/research/bulk-runner", summary="Process one batch of a bulk research job")
def run_bulk_batch(body: BulkRunnerBody, authorization: Optional[str] = Header(None)):
    """Service-only: callers must present the service-role key."""

    require_service_key(authorization)
    if not body.job_id:
        raise ApiError("job_id is required", 400)
    return bulk_research.process_job_batch(body.job_id, body.concurrency)


@router.post("/research/cancel", summary="Cancel a bulk research job")
def cancel_bulk_research(body: CancelBody, user: Dict[str, Any] = Depends(get_current_user)):
    return bulk_research.cancel_bulk_job(user["id"], body.job_id)


@router.post("/research/evaluate", summary="Assess a research report against custom criteria")
async def evaluate_research(body: EvaluateBody, user: Dict[str, Any] = Depends(get_current_user)):
    assert_email_allowed(user.get("email"))
    assessment = await criteria_evaluation.evaluate_research(
        user["id"], research_id=body.research_id, markdown=body.markdown
    )
    return {"assessment": assessment}

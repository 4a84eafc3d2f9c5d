"""On-demand signal detection for the caller's tracked accounts."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from rebar_agentic.api.deps import get_current_user
from rebar_agentic.services import signal_monitor

router = APIRouter()


class TriggerDetectionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: Optional[str] = None


@router.post("/signals/trigger-detection", summary="Run signal detectors for the caller's accounts")
def trigger_detection(
    body: Optional[TriggerDetectionBody] = None,
    user: Dict[str, Any] = Depends(get_current_user),
):
    account_id = body.account_id if body else None
    summary = signal_monitor.detect_signals_for_user(user["id"], account_id=account_id)
    return dict(summary, success=True)

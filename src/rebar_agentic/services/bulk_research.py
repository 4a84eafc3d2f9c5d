"""Bulk company research: job creation, batch processing and cancellation.

A job holds one task per company. Each ``process_job_batch`` call claims a
few pending tasks, runs them through the streaming chat endpoint as the
job owner and records the outcome. Tasks are retried until their third
attempt.
"""

from __future__ import annotations

import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests

from rebar_agentic.config.settings import get_settings
from rebar_agentic.services import supabase_client
from rebar_agentic.services.errors import ApiError, get_user_friendly_error, normalize_api_error
from rebar_agentic.services.notifications import send_bulk_complete_notification
from rebar_agentic.services.research_output import build_research_draft
from rebar_agentic.services.sse import collect_streamed_content

logger = logging.getLogger(__name__)

RESEARCH_TYPES = ("quick", "deep")
MAX_ATTEMPTS = 3
MAX_PARALLEL = 3
STALE_TASK_SECONDS = 15 * 60
CHAT_TIMEOUT_SECONDS = 600
CANCELLED_MESSAGE = "Cancelled by user"
FINISHED_STATUSES = ("completed", "failed")


def resolve_chat_endpoint() -> str:
    direct = get_settings().chat_api_url or os.getenv("VERCEL_CHAT_URL")
    if direct and direct.strip():
        trimmed = direct.strip()
        return trimmed if trimmed.endswith("/api/ai/chat") else f"{trimmed.rstrip('/')}/api/ai/chat"
    base = os.getenv("API_BASE_URL") or os.getenv("VERCEL_API_BASE_URL") or os.getenv("VERCEL_URL")
    if base and base.strip():
        normalized = base.strip() if base.strip().startswith("http") else f"https://{base.strip()}"
        return f"{normalized.rstrip('/')}/api/ai/chat"
    raise RuntimeError("Missing chat API endpoint. Set CHAT_API_URL or API_BASE_URL.")


def parallelism(research_type: str, concurrency: Optional[int] = None) -> int:
    try:
        requested = int(concurrency or 0)
    except (TypeError, ValueError):
        requested = 0
    if requested <= 0:
        requested = 2 if research_type == "deep" else 3
    return max(1, min(MAX_PARALLEL, requested))


def create_bulk_job(user_id: str, companies: Sequence[str], research_type: str) -> Dict[str, Any]:
    names = [c.strip() for c in companies or [] if isinstance(c, str) and c.strip()]
    if not names:
        raise ApiError("Companies array is required", 400)
    if research_type not in RESEARCH_TYPES:
        raise ApiError('Research type must be "quick" or "deep"', 400)

    job_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    supabase_client.insert_bulk_job(
        {
            "id": job_id,
            "user_id": user_id,
            "companies": names,
            "research_type": research_type,
            "status": "pending",
            "total_count": len(names),
            "completed_count": 0,
            "created_at": now.isoformat(),
        }
    )
    supabase_client.insert_bulk_tasks(
        [
            {"job_id": job_id, "user_id": user_id, "company": name, "status": "pending", "attempt_count": 0}
            for name in names
        ]
    )
    minutes_per_company = 8 if research_type == "deep" else 3
    logger.info("Created bulk job %s (%s) for %d companies", job_id, research_type, len(names))
    return {
        "success": True,
        "job_id": job_id,
        "message": f"Started {research_type} research for {len(names)} companies",
        "estimated_completion": (now + timedelta(minutes=len(names) * minutes_per_company)).isoformat(),
    }


def invoke_chat_endpoint(body: Dict[str, Any], subject: str) -> str:
    """POST a research request to the chat endpoint and collect its content."""

    endpoint = resolve_chat_endpoint()
    headers = {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "Authorization": f"Bearer {supabase_client.service_role_key()}",
        "X-Rebar-Origin": "bulk-runner",
    }
    with requests.post(endpoint, json=body, headers=headers, stream=True, timeout=CHAT_TIMEOUT_SECONDS) as resp:
        if resp.status_code >= 400:
            err = normalize_api_error(resp)
            raise RuntimeError(f"Chat endpoint error {resp.status_code}: {err.message[:500]}")
        return collect_streamed_content(resp.iter_content(chunk_size=None), subject)


def _save_output(user_id: str, company: str, report: str) -> None:
    draft = build_research_draft(report, user_message=f"Research {company}")
    row = draft.model_dump()
    row.update(user_id=user_id, subject=company, research_type="company")
    row["sources"] = [s.model_dump() for s in draft.sources]
    try:
        supabase_client.insert_research_output(row)
    except supabase_client.SupabaseError as exc:
        logger.error("Saving research output for %s failed: %s", company, exc)


def process_task(job: Dict[str, Any], task: Dict[str, Any]) -> str:
    """Run one claimed task; returns its resulting status.

    A task whose status could not be written back is reported as
    ``"error"`` and stays claimed until the stale-task reclaim frees it.
    """

    try:
        return _run_task(job, task)
    except Exception:
        logger.exception("Error while recording bulk task %s (%s)", task.get("id"), task.get("company"))
        return "error"


def _run_task(job: Dict[str, Any], task: Dict[str, Any]) -> str:
    company = task["company"]
    attempt = int(task.get("attempt_count") or 1)
    payload = {
        "messages": [{"role": "user", "content": f"Research {company}"}],
        "stream": True,
        "system_run": True,
        "impersonate_user_id": job["user_id"],
        "user_id": job["user_id"],
        "bulk_research_job_id": job["id"],
        "bulk_task_id": task["id"],
        "bulk_subject": company,
        "research_type": job.get("research_type"),
        "active_subject": company,
    }
    try:
        report = invoke_chat_endpoint(payload, company)
    except Exception as exc:
        logger.warning("Bulk task %s (%s) attempt %d failed: %s", task["id"], company, attempt, exc)
        if attempt < MAX_ATTEMPTS:
            supabase_client.update_bulk_task(task["id"], {"status": "pending", "started_at": None})
            return "pending"
        supabase_client.update_bulk_task(
            task["id"],
            {
                "status": "failed",
                "error": f"Research failed: {get_user_friendly_error(exc)}",
                "completed_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return "failed"

    _save_output(job["user_id"], company, report)
    supabase_client.update_bulk_task(
        task["id"],
        {"status": "completed", "result": report, "completed_at": datetime.now(timezone.utc).isoformat()},
    )
    return "completed"


def _finish_job(job: Dict[str, Any], finished: List[Dict[str, Any]]) -> None:
    supabase_client.update_bulk_job(
        job["id"], {"status": "completed", "completed_at": datetime.now(timezone.utc).isoformat()}
    )
    logger.info("Bulk job %s completed (%d tasks)", job["id"], len(finished))
    if not get_settings().enable_bulk_email:
        return
    recipient = None
    try:
        owner = supabase_client.get_auth_user_by_id(job["user_id"])
    except supabase_client.SupabaseError as exc:
        logger.warning("Could not load owner of bulk job %s: %s", job["id"], exc)
        owner = None
    if owner:
        recipient = owner.get("email")
    send_bulk_complete_notification(
        job_id=job["id"],
        companies=[t["company"] for t in finished if t.get("company")],
        research_type=job.get("research_type") or "quick",
        to_email=recipient,
    )


def process_job_batch(job_id: str, concurrency: Optional[int] = None) -> Dict[str, Any]:
    job = supabase_client.get_bulk_job(job_id)
    if not job:
        raise ApiError("job not found", 404)
    if job.get("status") in FINISHED_STATUSES:
        return {"message": "job already complete", "processed": 0, "remaining": 0}

    if job.get("status") == "pending":
        supabase_client.update_bulk_job(
            job_id, {"status": "running", "started_at": datetime.now(timezone.utc).isoformat()}
        )

    reclaimed = supabase_client.reclaim_stale_bulk_tasks(job_id, STALE_TASK_SECONDS)
    if reclaimed:
        logger.info("Reclaimed %d stale tasks for bulk job %s", reclaimed, job_id)

    parallel = parallelism(job.get("research_type") or "quick", concurrency)
    claimed = supabase_client.claim_bulk_tasks(job_id, parallel)

    statuses: List[str] = []
    if claimed:
        with ThreadPoolExecutor(max_workers=parallel) as pool:
            statuses = list(pool.map(lambda t: process_task(job, t), claimed))

    finished = [
        t
        for t in supabase_client.list_bulk_tasks(job_id)
        if t.get("status") in ("completed", "failed")
    ]
    finished.sort(key=lambda t: t.get("completed_at") or "")
    total = int(job.get("total_count") or len(job.get("companies") or []))
    supabase_client.update_bulk_job(
        job_id,
        {
            "completed_count": len(finished),
            "results": [
                {k: t.get(k) for k in ("company", "status", "result", "error", "completed_at")} for t in finished
            ],
            "updated_at": datetime.now(timezone.utc).isoformat(),
        },
    )

    if len(finished) >= total:
        _finish_job(job, finished)
    return {
        "processed": len(claimed),
        "completed": statuses.count("completed"),
        "failed": statuses.count("failed"),
        "errored": statuses.count("error"),
        "remaining": max(0, total - len(finished)),
    }


def cancel_bulk_job(user_id: str, job_id: str) -> Dict[str, Any]:
    """Fail every open task of the user's job and mark the job failed."""

    if not job_id or not isinstance(job_id, str):
        raise ApiError("job_id is required", 400)
    job = supabase_client.get_bulk_job(job_id)
    if not job:
        raise ApiError("Job not found", 404)
    if job.get("user_id") != user_id:
        raise ApiError("Forbidden", 403)
    if job.get("status") in FINISHED_STATUSES:
        return {"ok": True, "message": "Job already finished"}

    now = datetime.now(timezone.utc).isoformat()
    supabase_client.fail_open_bulk_tasks(job_id, CANCELLED_MESSAGE)
    supabase_client.update_bulk_job(job_id, {"status": "failed", "completed_at": now, "updated_at": now})
    logger.info("User %s cancelled bulk job %s", user_id, job_id)
    return {"ok": True}

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psycopg
import requests
from psycopg.rows import dict_row


class SupabaseError(Exception):
    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _env_first(*keys: str) -> str:
    for k in keys:
        val = os.getenv(k)
        if val and str(val).strip():
            return str(val).strip()
    return ""


def _project_url() -> str:
    url = _env_first("SUPABASE_URL", "VITE_SUPABASE_URL", "PUBLIC_SUPABASE_URL").rstrip("/")
    if not url:
        raise SupabaseError("Supabase URL is not set (tried SUPABASE_URL, VITE_SUPABASE_URL, PUBLIC_SUPABASE_URL)")
    return url


def _base_url() -> str:
    return f"{_project_url()}/rest/v1"


def service_role_key() -> str:
    return _env_first("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_SECRET_KEY")


def _anon_key() -> str:
    return _env_first("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY")


def _pg_conn():
    dsn = os.getenv("POSTGRES_URL") or os.getenv("SUPABASE_POSTGRES_URL")
    if not dsn:
        raise SupabaseError("POSTGRES_URL is not set for direct Postgres access")
    return psycopg.connect(dsn, autocommit=True)


def _headers(prefer: Optional[str] = None) -> Dict[str, str]:
    token = service_role_key()
    if not token:
        raise SupabaseError("Supabase service role key is not set (tried SERVICE_ROLE/SERVICE/SECRET variants)")
    headers = {
        "apikey": token,
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer
    return headers


def _timeout() -> float:
    return float(os.getenv("HTTP_TIMEOUT", "20"))


def _raise_for(method: str, url: str, r: requests.Response) -> None:
    code = None
    message = r.text[:400]
    try:
        body = r.json()
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
    except ValueError:
        pass
    raise SupabaseError(f"{method} {url} failed: {r.status_code} {message}", status_code=r.status_code, code=code)


def _json(r: requests.Response) -> Any:
    if not r.content:
        return []
    try:
        return r.json()
    except ValueError as e:
        raise SupabaseError(f"Invalid JSON from Supabase: {r.text[:500]}") from e


def _send(method: str, url: str, **kwargs: Any) -> requests.Response:
    try:
        return requests.request(method, url, timeout=_timeout(), **kwargs)
    except requests.RequestException as e:
        raise SupabaseError(f"{method} {url} failed: network error: {e}") from e


def _get(path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    url = f"{_base_url()}/{path.lstrip('/')}"
    r = _send("GET", url, headers=_headers(), params=params or {})
    if not r.ok:
        _raise_for("GET", url, r)
    return _json(r)


def _post(
    path: str,
    json_body: Any,
    *,
    params: Optional[Dict[str, Any]] = None,
    upsert: bool = False,
) -> List[Dict[str, Any]]:
    url = f"{_base_url()}/{path.lstrip('/')}"
    prefer = "return=representation"
    if upsert:
        prefer = "resolution=merge-duplicates,return=representation"
    r = _send("POST", url, headers=_headers(prefer), params=params or {}, json=json_body)
    if not r.ok:
        _raise_for("POST", url, r)
    return _json(r)


def _patch(path: str, match_params: Dict[str, Any], json_body: Dict[str, Any]) -> List[Dict[str, Any]]:
    url = f"{_base_url()}/{path.lstrip('/')}"
    r = _send("PATCH", url, headers=_headers("return=representation"), params=match_params, json=json_body)
    if not r.ok:
        _raise_for("PATCH", url, r)
    return _json(r)


def _delete(path: str, match_params: Dict[str, Any]) -> List[Dict[str, Any]]:
    url = f"{_base_url()}/{path.lstrip('/')}"
    r = _send("DELETE", url, headers=_headers("return=representation"), params=match_params)
    if not r.ok:
        _raise_for("DELETE", url, r)
    return _json(r)


def rpc(function: str, args: Dict[str, Any]) -> Any:
    return _post(f"rpc/{function}", args)


def _first(rows: Any) -> Optional[Dict[str, Any]]:
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def get_auth_user(access_token: str) -> Optional[Dict[str, Any]]:
    """Resolve a user JWT through Supabase auth; None when the token is rejected."""

    url = f"{_project_url()}/auth/v1/user"
    apikey = _anon_key() or service_role_key()
    r = _send("GET", url, headers={"apikey": apikey, "Authorization": f"Bearer {access_token}"})
    if r.status_code in (401, 403):
        return None
    if not r.ok:
        _raise_for("GET", url, r)
    data = _json(r)
    return data if isinstance(data, dict) and data.get("id") else None


def get_auth_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    url = f"{_project_url()}/auth/v1/admin/users/{user_id}"
    r = _send("GET", url, headers=_headers())
    if r.status_code == 404:
        return None
    if not r.ok:
        _raise_for("GET", url, r)
    data = _json(r)
    return data if isinstance(data, dict) and data.get("id") else None


# ---------------------------------------------------------------------------
# Users, credits and usage
# ---------------------------------------------------------------------------


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    rows = _get(
        "users",
        {
            "select": "id,email,credits_remaining,credits_total_used,approval_status",
            "id": f"eq.{user_id}",
            "limit": "1",
        },
    )
    return _first(rows)


def create_user(user_id: str, *, credits: int, email: Optional[str] = None) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": user_id,
        "credits_remaining": credits,
        "credits_total_used": 0,
        "approval_status": "approved",
    }
    if email:
        row["email"] = email
    return _first(_post("users", row, params={"on_conflict": "id"}, upsert=True)) or row


def list_users_with_credits() -> List[Dict[str, Any]]:
    return _get("users", {"select": "id,email,credits_remaining", "credits_remaining": "gt.0"})


def insert_usage_log(row: Dict[str, Any]) -> None:
    _post("usage_logs", row)


def deduct_user_credits(user_id: str, credits: int) -> Any:
    return rpc("deduct_user_credits", {"p_user_id": user_id, "p_credits": credits})


# ---------------------------------------------------------------------------
# Profile context and chats
# ---------------------------------------------------------------------------


def get_user_context(user_id: str) -> Dict[str, Any]:
    data = rpc("get_user_context", {"p_user": user_id})
    if isinstance(data, list):
        data = data[0] if data else {}
    return data or {}


def get_prompt_config(user_id: str) -> Optional[Dict[str, Any]]:
    return _first(_get("user_prompt_config", {"select": "*", "user_id": f"eq.{user_id}", "limit": "1"}))


def update_chat_summary(chat_id: str, summary: str) -> None:
    _patch("chats", {"id": f"eq.{chat_id}"}, {"summary": summary, "updated_at": _now_iso()})


def get_company_profile(user_id: str) -> Optional[Dict[str, Any]]:
    return _first(_get("company_profiles", {"select": "*", "user_id": f"eq.{user_id}", "limit": "1"}))


def insert_company_profile(row: Dict[str, Any]) -> Dict[str, Any]:
    inserted = _first(_post("company_profiles", row))
    if not inserted:
        raise SupabaseError("Supabase returned no rows for insert_company_profile")
    return inserted


def update_company_profile(user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _first(_patch("company_profiles", {"user_id": f"eq.{user_id}"}, fields))


def replace_user_rows(table: str, user_id: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Delete every row the user owns in ``table`` and insert ``rows`` in their place."""

    _delete(table, {"user_id": f"eq.{user_id}"})
    if not rows:
        return []
    return _post(table, rows)


def list_custom_criteria(user_id: str) -> List[Dict[str, Any]]:
    return _get(
        "user_custom_criteria", {"select": "*", "user_id": f"eq.{user_id}", "order": "display_order.asc"}
    )


def update_prompt_config(user_id: str, fields: Dict[str, Any]) -> None:
    _patch("user_prompt_config", {"user_id": f"eq.{user_id}"}, dict(fields, updated_at=_now_iso()))


def insert_prompt_config(row: Dict[str, Any]) -> None:
    _post("user_prompt_config", row)


# ---------------------------------------------------------------------------
# Research outputs
# ---------------------------------------------------------------------------


def find_latest_research_output(user_id: str, subject: str) -> Optional[Dict[str, Any]]:
    rows = _get(
        "research_outputs",
        {
            "select": "subject,executive_summary,created_at",
            "user_id": f"eq.{user_id}",
            "subject": f"ilike.*{subject}*",
            "order": "created_at.desc",
            "limit": "1",
        },
    )
    return _first(rows)


def insert_research_output(row: Dict[str, Any]) -> Dict[str, Any]:
    inserted = _first(_post("research_outputs", row))
    if not inserted:
        raise SupabaseError("Supabase returned no rows for insert_research_output")
    return inserted


def get_research_markdown(user_id: str, research_id: str) -> str:
    row = _first(
        _get(
            "research_outputs",
            {"select": "markdown_report", "id": f"eq.{research_id}", "user_id": f"eq.{user_id}", "limit": "1"},
        )
    )
    return (row or {}).get("markdown_report") or ""


def update_research_output(user_id: str, research_id: str, fields: Dict[str, Any]) -> None:
    _patch("research_outputs", {"id": f"eq.{research_id}", "user_id": f"eq.{user_id}"}, fields)


def list_research_outputs(
    user_id: str,
    *,
    research_type: Optional[str] = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "select": "id,subject,research_type,created_at,executive_summary,markdown_report,icp_fit_score,"
        "signal_score,composite_score,priority_level,confidence_level,company_data,sources",
        "user_id": f"eq.{user_id}",
        "order": "created_at.desc",
        "limit": str(limit),
    }
    if research_type:
        params["research_type"] = f"eq.{research_type}"
    return _get("research_outputs", params)


# ---------------------------------------------------------------------------
# Preferences, implicit memory and knowledge
# ---------------------------------------------------------------------------


def fetch_user_preferences(user_id: str, keys: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"select": "*", "user_id": f"eq.{user_id}"}
    if keys:
        params["key"] = "in.(" + ",".join(f'"{k}"' for k in keys) + ")"
    return _get("user_preferences", params)


def upsert_user_preferences(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _post("user_preferences", rows, params={"on_conflict": "user_id,key"}, upsert=True)


def fetch_knowledge_entries(user_id: str, agent: str, *, limit: int = 8) -> List[Dict[str, Any]]:
    return _get(
        "knowledge_entries",
        {
            "select": "title,content",
            "user_id": f"eq.{user_id}",
            "agent": f"eq.{agent}",
            "enabled": "eq.true",
            "order": "created_at.desc",
            "limit": str(limit),
        },
    )


def fetch_implicit_preferences(
    user_id: str,
    agent: str,
    *,
    key: Optional[str] = None,
    limit: int = 24,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "select": "key,value_json",
        "user_id": f"eq.{user_id}",
        "agent": f"eq.{agent}",
        "order": "updated_at.desc",
        "limit": str(limit),
    }
    if key:
        params["key"] = f"eq.{key}"
    return _get("implicit_preferences", params)


def upsert_implicit_preference(row: Dict[str, Any]) -> None:
    _post("implicit_preferences", row, params={"on_conflict": "user_id,agent,key"}, upsert=True)


def insert_preference_event(row: Dict[str, Any]) -> None:
    _post("preference_events", row)


def list_all_implicit_preferences() -> List[Dict[str, Any]]:
    return _get("implicit_preferences", {"select": "user_id,agent,key,value_json"})


def upsert_implicit_preferences(rows: List[Dict[str, Any]]) -> None:
    _post("implicit_preferences", rows, params={"on_conflict": "user_id,agent,key"}, upsert=True)


def fetch_knowledge_suggestions(user_id: str, agent: str) -> List[Dict[str, Any]]:
    return _get("knowledge_suggestions", {"select": "title", "user_id": f"eq.{user_id}", "agent": f"eq.{agent}"})


def insert_knowledge_suggestions(rows: List[Dict[str, Any]]) -> None:
    _post("knowledge_suggestions", rows)


# ---------------------------------------------------------------------------
# Entity aliases
# ---------------------------------------------------------------------------


def fetch_entity_aliases() -> List[Dict[str, Any]]:
    return _get("entity_aliases", {"select": "id,canonical,aliases,type,metadata,source"})


def find_entity_alias(canonical: str) -> Optional[Dict[str, Any]]:
    return _first(
        _get(
            "entity_aliases",
            {"select": "id,canonical,aliases,type,metadata,source", "canonical": f"eq.{canonical}", "limit": "1"},
        )
    )


def insert_entity_alias(row: Dict[str, Any]) -> None:
    _post("entity_aliases", row)


def update_entity_alias(alias_id: Any, fields: Dict[str, Any]) -> None:
    _patch("entity_aliases", {"id": f"eq.{alias_id}"}, fields)


def fetch_user_entity_aliases(user_id: str) -> List[Dict[str, Any]]:
    return _get(
        "user_entity_aliases",
        {"select": "id,alias,alias_normalized,canonical,type,metadata,source", "user_id": f"eq.{user_id}"},
    )


def find_user_entity_alias(user_id: str, alias_normalized: str) -> Optional[Dict[str, Any]]:
    return _first(
        _get(
            "user_entity_aliases",
            {
                "select": "id,type,metadata,source",
                "user_id": f"eq.{user_id}",
                "alias_normalized": f"eq.{alias_normalized}",
                "limit": "1",
            },
        )
    )


def insert_user_entity_alias(row: Dict[str, Any]) -> None:
    _post("user_entity_aliases", row)


def update_user_entity_alias(alias_id: Any, fields: Dict[str, Any]) -> None:
    _patch("user_entity_aliases", {"id": f"eq.{alias_id}"}, fields)


# ---------------------------------------------------------------------------
# Open questions
# ---------------------------------------------------------------------------


def fetch_open_questions(user_id: str, *, limit: int) -> List[Dict[str, Any]]:
    return _get(
        "open_questions",
        {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "resolved_at": "is.null",
            "order": "asked_at.asc",
            "limit": str(limit),
        },
    )


def insert_open_question(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _first(_post("open_questions", row))


def update_open_question(question_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _first(_patch("open_questions", {"id": f"eq.{question_id}"}, fields))


# ---------------------------------------------------------------------------
# Tracked accounts and signals
# ---------------------------------------------------------------------------


def list_tracked_accounts(
    user_id: str,
    *,
    monitoring_only: bool = False,
    account_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "select": "*",
        "user_id": f"eq.{user_id}",
        "order": "added_at.desc",
    }
    if monitoring_only:
        params["monitoring_enabled"] = "eq.true"
    if account_id:
        params["id"] = f"eq.{account_id}"
    return _get("tracked_accounts", params)


def find_tracked_account(user_id: str, company_name: str) -> Optional[Dict[str, Any]]:
    return _first(
        _get(
            "tracked_accounts",
            {
                "select": "id,company_name",
                "user_id": f"eq.{user_id}",
                "company_name": f"ilike.{company_name}",
                "limit": "1",
            },
        )
    )


def insert_tracked_account(row: Dict[str, Any]) -> Dict[str, Any]:
    inserted = _first(_post("tracked_accounts", row))
    if not inserted:
        raise SupabaseError("Supabase returned no rows for insert_tracked_account")
    return inserted


def update_tracked_account(user_id: str, account_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _first(_patch("tracked_accounts", {"id": f"eq.{account_id}", "user_id": f"eq.{user_id}"}, fields))


def delete_tracked_account(user_id: str, account_id: str) -> None:
    _delete("tracked_accounts", {"id": f"eq.{account_id}", "user_id": f"eq.{user_id}"})


def list_account_signals(user_id: str, *, account_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "select": "id,account_id,signal_type,severity,description,score,viewed,signal_date",
        "user_id": f"eq.{user_id}",
        "order": "signal_date.desc",
    }
    if account_ids:
        params["account_id"] = f"in.({','.join(account_ids)})"
    return _get("account_signals", params)


def insert_account_signals(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not rows:
        return []
    return _post("account_signals", rows)


def get_signal_preferences(user_id: str) -> List[Dict[str, Any]]:
    return _get("user_signal_preferences", {"select": "*", "user_id": f"eq.{user_id}"})


def insert_signal_activity(row: Dict[str, Any]) -> None:
    _post("signal_activity_log", row)


# ---------------------------------------------------------------------------
# Bulk research jobs
# ---------------------------------------------------------------------------


def insert_bulk_job(row: Dict[str, Any]) -> Dict[str, Any]:
    inserted = _first(_post("bulk_research_jobs", row))
    if not inserted:
        raise SupabaseError("Supabase returned no rows for insert_bulk_job")
    return inserted


def get_bulk_job(job_id: str) -> Optional[Dict[str, Any]]:
    return _first(_get("bulk_research_jobs", {"select": "*", "id": f"eq.{job_id}", "limit": "1"}))


def update_bulk_job(job_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _first(_patch("bulk_research_jobs", {"id": f"eq.{job_id}"}, fields))


def list_active_bulk_jobs(limit: int = 10) -> List[Dict[str, Any]]:
    return _get(
        "bulk_research_jobs",
        {
            "select": "id,user_id,research_type,status",
            "status": "in.(pending,running)",
            "order": "created_at.asc",
            "limit": str(limit),
        },
    )


def insert_bulk_tasks(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _post("bulk_research_tasks", rows)


def list_bulk_tasks(job_id: str, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"select": "*", "job_id": f"eq.{job_id}", "order": "created_at.asc"}
    if status:
        params["status"] = f"eq.{status}"
    return _get("bulk_research_tasks", params)


def update_bulk_task(task_id: str, fields: Dict[str, Any]) -> None:
    _patch("bulk_research_tasks", {"id": f"eq.{task_id}"}, dict(fields, updated_at=_now_iso()))


def fail_open_bulk_tasks(job_id: str, error: str) -> None:
    _patch(
        "bulk_research_tasks",
        {"job_id": f"eq.{job_id}", "status": "in.(pending,running)"},
        {"status": "failed", "error": error, "completed_at": _now_iso()},
    )


def claim_bulk_tasks(job_id: str, limit: int) -> List[Dict[str, Any]]:
    """Move up to ``limit`` pending tasks of a job to running and return them.

    Rows locked by a concurrent runner are skipped so two workers never
    claim the same task.
    """

    sql = """
WITH candidate AS (
    SELECT t.id
    FROM bulk_research_tasks t
    WHERE t.job_id = %s
      AND t.status = 'pending'
    ORDER BY t.created_at
    LIMIT %s
    FOR UPDATE SKIP LOCKED
)
UPDATE bulk_research_tasks AS t
SET status = 'running',
    started_at = now(),
    updated_at = now(),
    attempt_count = COALESCE(t.attempt_count, 0) + 1
FROM candidate
WHERE t.id = candidate.id
RETURNING t.id, t.job_id, t.company, t.attempt_count;
"""
    with _pg_conn() as conn, conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (job_id, int(limit)))
        return list(cur.fetchall())


def reclaim_stale_bulk_tasks(job_id: str, stale_seconds: int = 900) -> int:
    """Return long-running tasks of crashed runners to the pending pool."""

    sql = """
UPDATE bulk_research_tasks
SET status = 'pending',
    updated_at = now()
WHERE job_id = %s
  AND status = 'running'
  AND started_at < now() - %s::interval
"""
    with _pg_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, (job_id, f"{int(stale_seconds)} seconds"))
        return cur.rowcount or 0

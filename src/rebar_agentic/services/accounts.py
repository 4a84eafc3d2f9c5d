"""Tracked account management (add, bulk add, list, update, delete)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from rebar_agentic.services import supabase_client
from rebar_agentic.services.errors import ApiError

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(days=14)
MAX_HISTORY_PER_ACCOUNT = 6
MAX_UNTRACKED_RESEARCH = 30
RESEARCH_SCAN_LIMIT = 120
ACCOUNT_FILTERS = ("hot", "warm", "stale")
ACCOUNT_FIELDS = ("company_name", "company_url", "industry", "employee_count")


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_stale(account: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    researched = _parse_ts(account.get("last_researched_at"))
    now = now or datetime.now(timezone.utc)
    return researched is None or now - researched > STALE_AFTER


def add_account(user_id: str, account: Dict[str, Any]) -> Dict[str, Any]:
    company_name = (account.get("company_name") or "").strip()
    if not company_name:
        raise ApiError("company_name is required", 400)
    existing = supabase_client.find_tracked_account(user_id, company_name)
    if existing:
        raise ApiError("Account already tracked", 400, success=False, account_id=existing["id"])
    row = {k: account.get(k) for k in ACCOUNT_FIELDS}
    row.update(company_name=company_name, user_id=user_id, monitoring_enabled=True)
    created = supabase_client.insert_tracked_account(row)
    logger.info("User %s now tracking %s", user_id, company_name)
    return created


def bulk_add_accounts(user_id: str, accounts: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    added: List[Dict[str, Any]] = []
    skipped: List[str] = []
    errors: List[str] = []
    for acc in accounts or []:
        name = (acc.get("company_name") or "").strip() if isinstance(acc, dict) else ""
        if not name:
            errors.append("company_name is required")
            continue
        try:
            if supabase_client.find_tracked_account(user_id, name):
                skipped.append(name)
                continue
            row = {k: acc.get(k) for k in ACCOUNT_FIELDS if acc.get(k) is not None}
            row.update(company_name=name, user_id=user_id, monitoring_enabled=True)
            added.append(supabase_client.insert_tracked_account(row))
        except supabase_client.SupabaseError as exc:
            errors.append(f"{name}: {exc}")
    return {
        "added": added,
        "skipped": skipped,
        "errors": errors,
        "summary": {"added": len(added), "skipped": len(skipped), "errors": len(errors)},
    }


def list_accounts(user_id: str, account_filter: Optional[str] = None) -> Dict[str, Any]:
    """Accounts with signal counts, recent research history and stats.

    Company research for subjects that are not tracked comes back as
    ``untracked_research`` so the UI can offer to track them.
    """

    now = datetime.now(timezone.utc)
    accounts = supabase_client.list_tracked_accounts(user_id)
    if account_filter in ("hot", "warm"):
        accounts = [a for a in accounts if a.get("priority") == account_filter]
    elif account_filter == "stale":
        accounts = [a for a in accounts if is_stale(a, now)]

    signals_by_account: Dict[str, List[Dict[str, Any]]] = {}
    if accounts:
        for signal in supabase_client.list_account_signals(user_id, account_ids=[a["id"] for a in accounts]):
            signals_by_account.setdefault(signal.get("account_id"), []).append(signal)

    tracked_keys = {_normalize(a.get("company_name")) for a in accounts} - {""}
    history: Dict[str, List[Dict[str, Any]]] = {}
    untracked: Dict[str, Dict[str, Any]] = {}
    for row in supabase_client.list_research_outputs(user_id, research_type="company", limit=RESEARCH_SCAN_LIMIT):
        key = _normalize(row.get("subject"))
        if not key:
            continue
        if key in tracked_keys:
            history.setdefault(key, []).append(row)
        else:
            untracked.setdefault(key, row)

    enriched = []
    for account in accounts:
        signals = signals_by_account.get(account["id"], [])
        enriched.append(
            dict(
                account,
                recent_signals=signals,
                signal_count=len(signals),
                unviewed_signal_count=sum(1 for s in signals if not s.get("viewed")),
                research_history=history.get(_normalize(account.get("company_name")), [])[:MAX_HISTORY_PER_ACCOUNT],
            )
        )

    stats = {
        "total": len(enriched),
        "hot": sum(1 for a in enriched if a.get("priority") == "hot"),
        "warm": sum(1 for a in enriched if a.get("priority") == "warm"),
        "standard": sum(1 for a in enriched if a.get("priority") == "standard"),
        "with_signals": sum(1 for a in enriched if a["signal_count"] > 0),
        "stale": sum(1 for a in enriched if is_stale(a, now)),
    }
    return {
        "accounts": enriched,
        "stats": stats,
        "untracked_research": list(untracked.values())[:MAX_UNTRACKED_RESEARCH],
    }


def update_account(user_id: str, account_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    if not account_id:
        raise ApiError("account_id is required", 400)
    if not updates:
        raise ApiError("updates are required", 400)
    fields = {k: v for k, v in updates.items() if k not in ("id", "user_id")}
    updated = supabase_client.update_tracked_account(user_id, account_id, fields)
    if not updated:
        raise ApiError("Account not found", 404)
    return updated


def delete_account(user_id: str, account_id: str) -> None:
    if not account_id:
        raise ApiError("account_id is required", 400)
    supabase_client.delete_tracked_account(user_id, account_id)
    logger.info("User %s stopped tracking account %s", user_id, account_id)

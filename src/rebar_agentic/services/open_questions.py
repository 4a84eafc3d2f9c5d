"""Queue of follow-up questions the assistant still owes the user an answer to."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rebar_agentic.services import supabase_client

logger = logging.getLogger(__name__)

TABLE = "open_questions"

_table_available = True


def _is_missing_table(exc: supabase_client.SupabaseError) -> bool:
    return exc.code == "PGRST205" or f"'{TABLE}'" in str(exc)


def _disable(exc: supabase_client.SupabaseError) -> None:
    global _table_available
    _table_available = False
    logger.warning("%s table unavailable; disabling follow-up queue (%s)", TABLE, exc)


def reset_availability() -> None:
    global _table_available
    _table_available = True


def list_open_questions(user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    if not user_id or not _table_available:
        return []
    try:
        return supabase_client.fetch_open_questions(user_id, limit=max(1, int(limit or 10)))
    except supabase_client.SupabaseError as exc:
        if _is_missing_table(exc):
            _disable(exc)
            return []
        logger.error("Failed to list open questions for user %s: %s", user_id, exc)
        raise


def add_open_question(
    user_id: str,
    question: str,
    context: Any = None,
    asked_at: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    if not user_id or not (question or "").strip() or not _table_available:
        return None
    row = {
        "user_id": user_id,
        "question": question.strip(),
        "context": context,
        "asked_at": asked_at or datetime.now(timezone.utc).isoformat(),
    }
    try:
        return supabase_client.insert_open_question(row)
    except supabase_client.SupabaseError as exc:
        if _is_missing_table(exc):
            _disable(exc)
            return None
        logger.error("Failed to add open question for user %s: %s", user_id, exc)
        raise


def resolve_open_question(
    question_id: str,
    resolution: Optional[str] = None,
    context: Any = None,
) -> Optional[Dict[str, Any]]:
    if not question_id or not _table_available:
        return None
    fields: Dict[str, Any] = {"resolved_at": datetime.now(timezone.utc).isoformat()}
    if resolution is not None:
        fields["resolution"] = resolution
    if context is not None:
        fields["context"] = context
    try:
        return supabase_client.update_open_question(question_id, fields)
    except supabase_client.SupabaseError as exc:
        if _is_missing_table(exc):
            _disable(exc)
            return None
        logger.error("Failed to resolve open question %s: %s", question_id, exc)
        raise

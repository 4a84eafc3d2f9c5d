"""Explicit user preference store (``user_preferences``).

Preferences are dotted keys (``summary.brevity``, ``focus.eco``) with a
JSON value, a confidence in [0, 1] and a source. A stored value is only
replaced by an incoming one of equal or higher confidence.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rebar_agentic.services import supabase_client

logger = logging.getLogger(__name__)

PREFERENCE_SOURCES = ("setup", "followup", "implicit", "system")
DEFAULT_CONFIDENCE = 0.8


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        return DEFAULT_CONFIDENCE
    return round(min(1.0, max(0.0, float(value))), 3)


def normalize_key(key: str) -> str:
    return key.strip().lower()


def upsert_preferences(user_id: str, preferences: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Write preferences, skipping keys whose stored confidence is higher.

    Returns the rows that were written.
    """

    if not user_id:
        return []
    sanitized = []
    for pref in preferences or []:
        key = pref.get("key") if isinstance(pref, dict) else None
        if not isinstance(key, str) or not key.strip():
            continue
        source = pref.get("source") or "followup"
        if source not in PREFERENCE_SOURCES:
            source = "followup"
        sanitized.append(
            {
                "key": normalize_key(key),
                "value": pref.get("value"),
                "confidence": clamp_confidence(pref.get("confidence")),
                "source": source,
            }
        )
    if not sanitized:
        return []

    existing = supabase_client.fetch_user_preferences(user_id, [p["key"] for p in sanitized])
    existing_conf = {
        normalize_key(row["key"]): clamp_confidence(row.get("confidence"))
        for row in existing or []
        if isinstance(row.get("key"), str)
    }

    now = datetime.now(timezone.utc).isoformat()
    rows = [
        dict(p, user_id=user_id, updated_at=now)
        for p in sanitized
        if p["key"] not in existing_conf or p["confidence"] >= existing_conf[p["key"]]
    ]
    if not rows:
        logger.debug("No preference changes for user %s; stored values have higher confidence", user_id)
        return []
    supabase_client.upsert_user_preferences(rows)
    return rows


def _apply_nested(resolved: Dict[str, Any], key: str, value: Any) -> None:
    segments = [s.strip() for s in key.split(".") if s.strip()]
    if not segments:
        return
    cursor = resolved
    for segment in segments[:-1]:
        if not isinstance(cursor.get(segment), dict):
            cursor[segment] = {}
        cursor = cursor[segment]
    cursor[segments[-1]] = value


def _base_resolved(prompt_config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    resolved: Dict[str, Any] = {"focus": {}, "coverage": {}, "industry": {}, "summary": {}}
    if prompt_config:
        mode = prompt_config.get("preferred_research_type")
        if mode:
            resolved["coverage"]["mode"] = mode
            resolved["coverage"]["depth"] = {"deep": "deep", "quick": "shallow"}.get(mode, "standard")
        if prompt_config.get("default_output_brevity"):
            resolved["summary"]["brevity"] = prompt_config["default_output_brevity"]
        if prompt_config.get("default_tone"):
            resolved["tone"] = prompt_config["default_tone"]
    resolved["summary"].setdefault("brevity", "standard")
    resolved["coverage"].setdefault("depth", "deep")
    resolved.setdefault("tone", "balanced")
    return resolved


def build_resolved_preferences(
    prompt_config: Optional[Dict[str, Any]],
    rows: Optional[List[Dict[str, Any]]],
) -> Dict[str, Any]:
    """Merge prompt-config defaults with stored preferences.

    Rows are applied lowest confidence first (ties by ``updated_at``), so the
    most confident, most recent value for a key wins.
    """

    resolved = _base_resolved(prompt_config)
    ordered = sorted(
        (r for r in rows or [] if isinstance(r.get("key"), str)),
        key=lambda r: (clamp_confidence(r.get("confidence")), r.get("updated_at") or ""),
    )
    for row in ordered:
        _apply_nested(resolved, normalize_key(row["key"]), row.get("value"))
    return resolved


def get_resolved_preferences(
    user_id: str,
) -> Tuple[Dict[str, Any], List[Dict[str, Any]], Optional[Dict[str, Any]]]:
    if not user_id:
        raise ValueError("user_id is required")
    rows = supabase_client.fetch_user_preferences(user_id)
    prompt_config = supabase_client.get_prompt_config(user_id)
    return build_resolved_preferences(prompt_config, rows), rows, prompt_config

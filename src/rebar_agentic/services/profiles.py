"""Sanitize and persist a user's company profile and qualifying setup.

A save payload may carry any of ``profile``, ``custom_criteria``,
``signal_preferences``, ``disqualifying_criteria`` and ``prompt_config``.
A section that is absent is left alone; a list section that is present
replaces the stored rows wholesale, so ``[]`` or ``null`` clears it.
Profile fields accept the loose key spellings an assistant tends to emit
(``website`` for ``company_url``, ``watchList`` for ``indicator_choices``
and so on).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rebar_agentic.services import supabase_client

logger = logging.getLogger(__name__)

INDICATOR_LABEL_KEYS = (
    "indicator_label",
    "indicators_label",
    "signal_label",
    "signals_label",
    "indicatorTerminology",
    "signalTerminology",
    "buying_signal_label",
    "buyingSignalsLabel",
    "watch_label",
    "watchlist_label",
)
INDICATOR_CHOICE_KEYS = (
    "indicator_choices",
    "indicatorChoices",
    "watch_list",
    "watchList",
    "watchlist",
    "watch_items",
    "watchItems",
    "watchlist_items",
    "buying_signals",
    "buyingSignals",
)
TARGET_TITLE_KEYS = ("target_titles", "targetTitles", "targets", "target_roles", "targetRoles", "target_titles_list")
COMPETITOR_KEYS = ("competitors", "competitors_list", "competitor_list", "competitorsToWatch")
RESEARCH_FOCUS_KEYS = ("research_focus", "researchFocus", "focus_areas", "focusAreas", "focus")

# (stored column, accepted keys, summary label)
PROFILE_STRING_FIELDS = (
    ("company_name", ("company_name", "organization", "company", "org"), "Company"),
    ("company_url", ("company_url", "website", "site", "url"), "Website"),
    ("industry", ("industry", "sector"), "Industry"),
    ("icp_definition", ("icp_definition", "icp", "ideal_customer_profile"), "ICP"),
    ("user_role", ("user_role", "role"), "Role"),
    ("use_case", ("use_case", "primary_use_case", "usecase"), "Use case"),
)
PROFILE_LIST_FIELDS = (
    ("target_titles", TARGET_TITLE_KEYS, "Target titles"),
    ("competitors", COMPETITOR_KEYS, "Competitors"),
    ("research_focus", RESEARCH_FOCUS_KEYS, "Research focus"),
)

CRITERIA_IMPORTANCE = ("critical", "important", "optional")
SIGNAL_IMPORTANCE = ("critical", "important", "nice_to_have")
DEFAULT_LOOKBACK_DAYS = 90
PROMPT_CONFIG_KEYS = frozenset({"preferred_research_type", "default_output_brevity", "default_tone", "always_tldr"})
SECTIONS = ("custom_criteria", "signal_preferences", "disqualifying_criteria", "prompt_config")


@dataclass
class ProfileSaveResult:
    summary: List[str] = field(default_factory=list)
    profile: Optional[Dict[str, Any]] = None
    custom_criteria: List[Dict[str, Any]] = field(default_factory=list)
    signal_preferences: List[Dict[str, Any]] = field(default_factory=list)
    disqualifying_criteria: List[Dict[str, Any]] = field(default_factory=list)
    prompt_config: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "profile": self.profile,
            "custom_criteria": self.custom_criteria,
            "signal_preferences": self.signal_preferences,
            "disqualifying_criteria": self.disqualifying_criteria,
            "prompt_config": self.prompt_config,
            "summary": self.summary,
        }


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def coerce_string_array(value: Any) -> List[str]:
    """Lists keep their string/number items; strings split on newlines, commas and semicolons."""

    items: List[str] = []
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, (str, int, float)) and not isinstance(item, bool):
                items.append(str(item).strip())
    elif isinstance(value, str):
        items.extend(piece.strip() for piece in re.split(r"[\n,;]+", value))
    return _dedupe(" ".join(item.split()) for item in items)


def _string_field(raw: Mapping[str, Any], keys: Sequence[str]) -> Tuple[Optional[str], bool]:
    for key in keys:
        if key in raw and isinstance(raw[key], str):
            return raw[key].strip() or None, True
    return None, any(key in raw for key in keys)


def _preferred_terms(raw: Any) -> Optional[Dict[str, str]]:
    if not isinstance(raw, dict):
        return None
    terms = {str(k).strip(): v.strip() for k, v in raw.items() if isinstance(v, str) and v.strip()}
    return terms or None


def _indicator_label(raw: Mapping[str, Any]) -> Tuple[Optional[str], bool]:
    preferred = raw.get("preferred_terms")
    if isinstance(preferred, dict):
        for key in INDICATOR_LABEL_KEYS:
            if key in preferred and isinstance(preferred[key], str):
                label = preferred[key].strip() or None
                if label:
                    return label, True
                break
    for key in INDICATOR_LABEL_KEYS:
        if key in raw and isinstance(raw[key], str):
            return raw[key].strip() or None, True
    return None, False


def sanitize_profile(raw: Any) -> Tuple[Dict[str, Any], List[str]]:
    """Map loose profile keys onto stored columns; returns ``(values, summary)``.

    A recognised key holding a blank string clears the column (except
    ``company_name``, which is never blanked); a recognised list key
    holding nothing usable clears the list.
    """

    if not isinstance(raw, dict):
        return {}, []
    values: Dict[str, Any] = {}
    summary: List[str] = []

    for column, keys, label in PROFILE_STRING_FIELDS:
        value, touched = _string_field(raw, keys)
        if value:
            values[column] = value
            summary.append(f"{label} → {value}")
        elif touched and column != "company_name":
            values[column] = None

    if isinstance(raw.get("notes"), str):
        values["notes"] = raw["notes"].strip()
    if isinstance(raw.get("metadata"), dict):
        values["metadata"] = raw["metadata"]

    for column, keys, label in PROFILE_LIST_FIELDS:
        present = [key for key in keys if key in raw]
        if not present:
            continue
        merged = _dedupe(item for key in present for item in coerce_string_array(raw[key]))
        values[column] = merged
        summary.append(f"{label} → {', '.join(merged)}" if merged else f"{label} cleared")

    terms = _preferred_terms(raw.get("preferred_terms"))
    label, label_touched = _indicator_label(raw)
    if label:
        values["preferred_terms"] = dict(terms or {}, indicators_label=label)
        summary.append(f"Signals label → {label}")
    elif terms:
        values["preferred_terms"] = terms
    elif label_touched:
        values["preferred_terms"] = {"indicators_label": None}
        summary.append("Signals label cleared")

    choice_keys = [key for key in INDICATOR_CHOICE_KEYS if key in raw]
    if choice_keys:
        choices = _dedupe(item for key in choice_keys for item in coerce_string_array(raw[key]))
        values["indicator_choices"] = choices
        summary.append(f"Watch list → {', '.join(choices)}" if choices else "Watch list cleared")

    return values, summary


def _importance(raw: Any, allowed: Sequence[str]) -> str:
    value = raw.strip().lower() if isinstance(raw, str) else ""
    return value if value in allowed else "important"


def sanitize_custom_criteria(raw: Any) -> List[Dict[str, Any]]:
    rows = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        name = item.get("field_name") if isinstance(item.get("field_name"), str) else item.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            continue
        field_type = item.get("field_type").strip() if isinstance(item.get("field_type"), str) else ""
        rows.append(
            {
                "field_name": name,
                "field_type": field_type or "text",
                "importance": _importance(item.get("importance"), CRITERIA_IMPORTANCE),
                "hints": coerce_string_array(item.get("hints") or []),
            }
        )
    return rows


def _lookback_days(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        match = re.match(r"\s*[-+]?\d+", value)
        if match:
            return int(match.group(0))
    return DEFAULT_LOOKBACK_DAYS


def sanitize_signal_preferences(raw: Any) -> List[Dict[str, Any]]:
    rows = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        signal_type = item.get("signal_type") if isinstance(item.get("signal_type"), str) else item.get("type")
        signal_type = signal_type.strip() if isinstance(signal_type, str) else ""
        if not signal_type:
            continue
        rows.append(
            {
                "signal_type": signal_type,
                "importance": _importance(item.get("importance"), SIGNAL_IMPORTANCE),
                "lookback_days": _lookback_days(item.get("lookback_days")),
                "config": item["config"] if isinstance(item.get("config"), dict) else {},
            }
        )
    return rows


def sanitize_disqualifiers(raw: Any) -> List[Dict[str, str]]:
    rows = []
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, str):
            value = item.strip()
        elif isinstance(item, dict) and isinstance(item.get("criterion"), str):
            value = item["criterion"].strip()
        else:
            value = ""
        if value:
            rows.append({"criterion": value})
    return rows


def sanitize_prompt_config(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    config = {k: v for k, v in raw.items() if k in PROMPT_CONFIG_KEYS and v is not None}
    return config or None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _save_profile_row(user_id: str, raw_profile: Any, result: ProfileSaveResult) -> None:
    values, summary = sanitize_profile(raw_profile)
    existing = supabase_client.get_company_profile(user_id)
    if existing:
        choices = values.get("indicator_choices")
        if choices:
            stored = [c.strip() for c in existing.get("indicator_choices") or [] if isinstance(c, str)]
            values["indicator_choices"] = _dedupe(stored + choices)
        if values.get("preferred_terms"):
            stored_terms = existing.get("preferred_terms") if isinstance(existing.get("preferred_terms"), dict) else {}
            values["preferred_terms"] = dict(stored_terms, **values["preferred_terms"])
        values["updated_at"] = _now_iso()
        result.profile = supabase_client.update_company_profile(user_id, values)
    elif values:
        result.profile = supabase_client.insert_company_profile(dict(values, user_id=user_id, updated_at=_now_iso()))
    result.summary.extend(summary)


def _replace_rows(
    table: str,
    user_id: str,
    rows: List[Dict[str, Any]],
    label: str,
    describe: str,
    summary: List[str],
) -> List[Dict[str, Any]]:
    stored = supabase_client.replace_user_rows(table, user_id, [dict(row, user_id=user_id) for row in rows])
    if rows:
        summary.append(f"{label} → {', '.join(row[describe] for row in rows)}")
    else:
        summary.append(f"{label} cleared")
    return stored


def _save_prompt_config(user_id: str, config: Dict[str, Any]) -> None:
    if supabase_client.get_prompt_config(user_id):
        supabase_client.update_prompt_config(user_id, config)
    else:
        supabase_client.insert_prompt_config(dict(config, user_id=user_id))


def apply_profile_save(user_id: str, payload: Mapping[str, Any]) -> ProfileSaveResult:
    """Persist one save payload and describe what changed."""

    result = ProfileSaveResult()
    if isinstance(payload.get("profile"), dict):
        _save_profile_row(user_id, payload["profile"], result)

    if "custom_criteria" in payload:
        criteria = sanitize_custom_criteria(payload["custom_criteria"])
        ordered = [dict(row, display_order=i) for i, row in enumerate(criteria, start=1)]
        result.custom_criteria = _replace_rows(
            "user_custom_criteria", user_id, ordered, "Custom criteria", "field_name", result.summary
        )

    if "signal_preferences" in payload:
        result.signal_preferences = _replace_rows(
            "user_signal_preferences",
            user_id,
            sanitize_signal_preferences(payload["signal_preferences"]),
            "Signal alerts",
            "signal_type",
            result.summary,
        )

    if "disqualifying_criteria" in payload:
        result.disqualifying_criteria = _replace_rows(
            "user_disqualifying_criteria",
            user_id,
            sanitize_disqualifiers(payload["disqualifying_criteria"]),
            "Disqualifiers",
            "criterion",
            result.summary,
        )

    config = sanitize_prompt_config(payload.get("prompt_config"))
    if config:
        _save_prompt_config(user_id, config)
        result.prompt_config = config
        result.summary.append("Prompt configuration updated")

    logger.info("Saved profile for user %s: %s", user_id, "; ".join(result.summary) or "no changes")
    return result


def apply_profile_saves(user_id: str, payloads: Sequence[Mapping[str, Any]]) -> ProfileSaveResult:
    """Apply payloads in order; later sections win and summaries accumulate."""

    final = ProfileSaveResult()
    for payload in payloads:
        result = apply_profile_save(user_id, payload)
        final.summary.extend(result.summary)
        if result.profile:
            final.profile = result.profile
        for section in SECTIONS:
            if section in payload:
                setattr(final, section, getattr(result, section))
    return final

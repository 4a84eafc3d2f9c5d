"""Per-user memory block prepended to agent instructions.

The block is a small, byte-budgeted summary of confirmed knowledge
entries and implicit tendencies learned from interaction signals::

    <<memory v=1 agent=company_research>
    # confirmed knowledge
    - Sells zero-trust networking to defense primes

    # implicit tendencies
    tone: concise (conf 0.72)
    </memory>
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rebar_agentic.services import supabase_client

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_MAX_BYTES = 1800
MAX_KNOWLEDGE_LINES = 8
MAX_TENDENCY_LINES = 12
MIN_TENDENCY_CONFIDENCE = 0.6
CLOSING_TAG = "</memory>"


def _fits(candidate: str, max_bytes: int) -> bool:
    return len(candidate.encode("utf-8")) <= max_bytes


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_implicit_value(key: str, value_json: Any) -> Optional[str]:
    if not isinstance(value_json, dict) or not value_json:
        return None
    conf = value_json.get("confidence", value_json.get("conf"))
    if _is_number(conf) and conf < MIN_TENDENCY_CONFIDENCE:
        return None
    conf_suffix = f" (conf {conf:.2f})" if _is_number(conf) and conf else ""

    if _is_number(value_json.get("value")):
        return f"{key}: {value_json['value']:.2f}{conf_suffix}"
    if isinstance(value_json.get("choice"), str):
        return f"{key}: {value_json['choice']}{conf_suffix}"
    if isinstance(value_json.get("order"), list):
        return f"{key}: [{', '.join(str(v) for v in value_json['order'][:6])}]"
    if isinstance(value_json.get("map"), dict):
        top = sorted(value_json["map"].items(), key=lambda kv: float(kv[1]), reverse=True)[:5]
        return f"{key}: {{{', '.join(f'{k}:{float(v):.2f}' for k, v in top)}}}"
    return f"{key}: {json.dumps(value_json, separators=(',', ':'))[:120]}"


def build_memory_block_from_data(
    agent: str,
    knowledge_rows: Optional[List[Dict[str, Any]]] = None,
    implicit_rows: Optional[List[Dict[str, Any]]] = None,
    max_bytes: int = DEFAULT_MEMORY_MAX_BYTES,
) -> str:
    confirmed = []
    for entry in knowledge_rows or []:
        text = (entry.get("content") or entry.get("title") or "").strip()
        if text:
            confirmed.append(f"- {text}")
    confirmed = confirmed[:MAX_KNOWLEDGE_LINES]

    tendencies = [
        line
        for line in (format_implicit_value(row.get("key", ""), row.get("value_json")) for row in implicit_rows or [])
        if line
    ][:MAX_TENDENCY_LINES]

    if not confirmed and not tendencies:
        return ""

    header = f"<<memory v=1 agent={agent}>"
    block = header

    def append_line(line: str) -> bool:
        nonlocal block
        if line == "":
            candidate = f"{block}\n"
        else:
            prefix = "" if block.endswith("\n") else "\n"
            candidate = f"{block}{prefix}{line}"
        if _fits(f"{candidate}\n{CLOSING_TAG}", max_bytes):
            block = candidate
            return True
        return False

    if confirmed:
        append_line("# confirmed knowledge")
        for line in confirmed:
            if not append_line(line):
                break
    if tendencies:
        if confirmed:
            append_line("")
        append_line("# implicit tendencies")
        for line in tendencies:
            if not append_line(line):
                break

    if block.strip() == header:
        return ""

    if not block.endswith("\n") and _fits(f"{block}\n{CLOSING_TAG}", max_bytes):
        block = f"{block}\n"

    final = f"{block}{CLOSING_TAG}"
    if not _fits(final, max_bytes):
        cut = block.rfind("\n", 0, max(0, len(block) - 1)) + 1
        final = f"{block[:cut]}{CLOSING_TAG}"
        if not _fits(final, max_bytes):
            logger.warning("Memory block exceeded %s bytes even after trimming; dropping it", max_bytes)
            return ""
    return final


def build_memory_block(user_id: str, agent: str = "company_research") -> str:
    """Load the user's memory rows and render the block; empty on any failure."""

    try:
        knowledge = supabase_client.fetch_knowledge_entries(user_id, agent, limit=MAX_KNOWLEDGE_LINES)
        implicit = supabase_client.fetch_implicit_preferences(user_id, agent, limit=24)
    except supabase_client.SupabaseError as exc:
        logger.error("build_memory_block failed for user %s: %s", user_id, exc)
        return ""
    return build_memory_block_from_data(agent, knowledge, implicit, DEFAULT_MEMORY_MAX_BYTES)


def fold_observation(prev: Dict[str, Any], observed: Dict[str, Any], weight: float = 1) -> Dict[str, Any]:
    """Merge one observed signal into the stored implicit preference value.

    Scalars keep a weighted running mean, categorical choices gain
    confidence while stable and reset to 0.4 on change, maps decay by 0.9
    before adding the new weights.
    """

    prev = dict(prev or {})
    if observed.get("kind"):
        kind = observed["kind"]
    elif prev.get("kind"):
        kind = prev["kind"]
    elif _is_number(observed.get("value")):
        kind = "scalar"
    elif observed.get("choice"):
        kind = "categorical"
    elif observed.get("map"):
        kind = "map"
    else:
        kind = "generic"

    updated = dict(prev, kind=kind)
    step = float(weight) if _is_number(weight) and weight > 0 else 1.0

    if kind == "scalar" and _is_number(observed.get("value")):
        value = observed["value"]
        prev_value = prev["value"] if _is_number(prev.get("value")) else value
        prev_count = float(prev.get("count") or 0)
        total = prev_count + step
        updated["value"] = (prev_value * prev_count + value * step) / total
        updated["count"] = total
        updated["confidence"] = min(1.0, float(prev.get("confidence") or 0.5) + 0.05 * step)
    elif kind == "categorical" and isinstance(observed.get("choice"), str):
        prev_choice = prev.get("choice") or observed["choice"]
        if prev_choice == observed["choice"]:
            updated["confidence"] = min(1.0, float(prev.get("confidence") or 0.5) + 0.07 * step)
        else:
            updated["confidence"] = 0.4
        updated["choice"] = observed["choice"]
    elif isinstance(observed.get("map"), dict):
        merged = dict(prev.get("map") or {})
        for k, v in observed["map"].items():
            merged[k] = float(merged.get(k) or 0) * 0.9 + float(v)
        updated["map"] = merged
        updated["confidence"] = min(1.0, float(prev.get("confidence") or 0.6))
    else:
        updated.update(observed)
        if not _is_number(updated.get("confidence")):
            updated["confidence"] = 0.6

    updated["updated_at"] = datetime.now(timezone.utc).isoformat()
    return updated


def record_preference_signal(
    user_id: str,
    agent: str,
    key: str,
    observed: Dict[str, Any],
    weight: float = 1,
) -> Dict[str, Any]:
    """Log a ``preference_events`` row and fold it into ``implicit_preferences``."""

    supabase_client.insert_preference_event(
        {"user_id": user_id, "agent": agent, "key": key, "observed_json": observed, "weight": weight}
    )
    existing = supabase_client.fetch_implicit_preferences(user_id, agent, key=key, limit=1)
    prev = existing[0].get("value_json") if existing else {}
    updated = fold_observation(prev or {}, observed, weight)
    supabase_client.upsert_implicit_preference(
        {
            "user_id": user_id,
            "agent": agent,
            "key": key,
            "value_json": updated,
            "updated_at": updated["updated_at"],
        }
    )
    return updated


# ---------------------------------------------------------------------------
# Nightly rollup: decay tendencies and surface strong ones as suggestions
# ---------------------------------------------------------------------------

DEFAULT_DECAY = 0.03
MIN_CONF_FOR_SUGGESTION = 0.8
ROLLUP_KNOWLEDGE_LIMIT = 500

SCALAR_SUGGESTIONS = {
    "tone": (
        ("Prefer a direct tone", "Use a direct, punchy tone in research summaries and recommended actions."),
        ("Keep tone warm and relational", "Use a warm, relationship-forward tone in research summaries."),
        ("Use a balanced tone", "Maintain a balanced tone between directness and warmth in research outputs."),
    ),
    "evidence_density": (
        ("Lead with stats-heavy insights", "Emphasize metrics, stats, and benchmarks in the research output."),
        ("Reduce stat density", "Keep the research narrative-focused and avoid overloading with statistics."),
        ("Moderate evidence density", "Balance qualitative insights with quantitative evidence in research outputs."),
    ),
}
LENGTH_SUGGESTIONS = {
    "brief": (
        "Keep research briefs concise",
        "Default to brief, high-signal research summaries unless the user asks otherwise.",
    ),
    "long": (
        "Allow longer research writeups",
        "Default to longer, more detailed research outputs for this account.",
    ),
    "standard": (
        "Stick with standard-length responses",
        "Default to the standard research length for this agent unless overridden.",
    ),
}


def apply_decay(value: Dict[str, Any]) -> Dict[str, Any]:
    decayed = dict(value)
    if _is_number(decayed.get("confidence")):
        decayed["confidence"] = max(0.0, round(decayed["confidence"] - DEFAULT_DECAY, 4))
    if _is_number(decayed.get("count")):
        decayed["count"] = max(0.0, round(decayed["count"] * 0.97, 3))
    if isinstance(decayed.get("map"), dict):
        weights = {}
        for k, raw in decayed["map"].items():
            v = float(raw) * 0.9
            if abs(v) >= 0.05:
                weights[k] = round(v, 3)
        decayed["map"] = weights
    if isinstance(decayed.get("order"), list):
        decayed["order"] = decayed["order"][:6]
    return decayed


def value_confidence(value: Dict[str, Any]) -> float:
    for key in ("confidence", "conf"):
        if _is_number(value.get(key)):
            return float(value[key])
    return 0.0


def _scalar(value: Dict[str, Any]) -> Optional[float]:
    for key in ("value", "scale01"):
        if _is_number(value.get(key)):
            return float(value[key])
    return None


def infer_length_choice(value: Dict[str, Any]) -> Optional[str]:
    if isinstance(value.get("choice"), str):
        return value["choice"]
    scalar = _scalar(value)
    if scalar is None:
        return None
    if scalar <= 0.34:
        return "brief"
    if scalar >= 0.66:
        return "long"
    return "standard"


def build_suggestion(key: str, value: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Turn a confident tendency into a ``{title, content, reason}`` suggestion."""

    reason = f"confidence {value_confidence(value):.2f}"
    if _is_number(value.get("count")) and value["count"]:
        reason += f" from ~{round(value['count'])} signals"

    if key == "length":
        choice = infer_length_choice(value)
        if choice is None:
            return None
        title, content = LENGTH_SUGGESTIONS.get(choice, LENGTH_SUGGESTIONS["standard"])
    elif key in SCALAR_SUGGESTIONS:
        scalar = _scalar(value)
        if scalar is None:
            return None
        high, low, balanced = SCALAR_SUGGESTIONS[key]
        title, content = high if scalar >= 0.6 else low if scalar <= 0.4 else balanced
    elif key == "structure":
        order = value.get("order")
        if isinstance(order, list) and order:
            preview = " → ".join(str(section) for section in order[:4])
            title = "Lock preferred section order"
            content = f"Present research sections in this order by default: {preview}."
        elif isinstance(value.get("promote"), str):
            title = f"Highlight {value['promote']} early"
            content = f'Promote the "{value["promote"]}" section near the top of research outputs.'
        else:
            return None
    else:
        return None
    return {"title": title, "content": content, "reason": reason}


def rollup_implicit_preferences() -> Dict[str, Any]:
    """Decay every implicit preference and queue knowledge suggestions.

    A suggestion is skipped when an enabled knowledge entry already
    contains its content, or a suggestion with the same title is pending.
    """

    rows = supabase_client.list_all_implicit_preferences()
    if not rows:
        return {"ok": True, "updated": 0, "suggestions_created": 0}

    known: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        pair = (row["user_id"], row["agent"])
        if pair not in known:
            knowledge = supabase_client.fetch_knowledge_entries(*pair, limit=ROLLUP_KNOWLEDGE_LIMIT)
            pending = supabase_client.fetch_knowledge_suggestions(*pair)
            known[pair] = {
                "contents": [str(k.get("content") or "").strip().lower() for k in knowledge],
                "titles": {s.get("title") for s in pending},
            }

    now = datetime.now(timezone.utc).isoformat()
    updates = []
    suggestions = []
    for row in rows:
        value = apply_decay(row.get("value_json") or {})
        updates.append(
            {"user_id": row["user_id"], "agent": row["agent"], "key": row["key"], "value_json": value, "updated_at": now}
        )
        if value_confidence(value) < MIN_CONF_FOR_SUGGESTION:
            continue
        suggestion = build_suggestion(row["key"], value)
        if not suggestion:
            continue
        cache = known[(row["user_id"], row["agent"])]
        needle = suggestion["content"].strip().lower()
        if any(needle in content for content in cache["contents"]) or suggestion["title"] in cache["titles"]:
            continue
        suggestions.append(dict(suggestion, user_id=row["user_id"], agent=row["agent"]))
        cache["titles"].add(suggestion["title"])

    supabase_client.upsert_implicit_preferences(updates)
    if suggestions:
        supabase_client.insert_knowledge_suggestions(suggestions)
    logger.info("Memory rollup decayed %d preferences, queued %d suggestions", len(updates), len(suggestions))
    return {"ok": True, "updated": len(updates), "suggestions_created": len(suggestions)}

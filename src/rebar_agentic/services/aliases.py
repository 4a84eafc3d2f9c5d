"""Entity alias resolution with in-process caches over ``entity_aliases``.

Global aliases are cached for five minutes, per-user aliases for two.
Lookups try an exact normalized hit first and fall back to Jaro-Winkler
similarity with a 0.9 threshold.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from rebar_agentic.services import open_questions, supabase_client
from rebar_agentic.services.alias_detection import detect_alias_affirmations, extract_alias_candidates

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300
USER_CACHE_TTL_SECONDS = 120
FUZZY_THRESHOLD = 0.9

_lock = threading.Lock()
_alias_map: Dict[str, Dict[str, Any]] = {}
_canonical_map: Dict[str, Dict[str, Any]] = {}
_cache_loaded_at: Optional[float] = None
_user_cache: Dict[str, Tuple[Dict[str, Dict[str, Any]], Dict[str, Dict[str, Any]], float]] = {}


@dataclass
class ResolvedEntity:
    canonical: str
    type: str
    confidence: float
    matched: str
    aliases: List[str] = field(default_factory=list)
    metadata: Any = None
    source: Optional[str] = None


def normalise(term: str) -> str:
    return term.strip().lower()


def _clean_aliases(aliases: Any) -> List[str]:
    if not isinstance(aliases, list):
        return []
    return [a for a in aliases if isinstance(a, str) and a.strip()]


def jaro_distance(s1: str, s2: str) -> float:
    len1, len2 = len(s1), len(s2)
    if len1 == 0 and len2 == 0:
        return 1.0
    if len1 == 0 or len2 == 0:
        return 0.0

    match_distance = max(len1, len2) // 2 - 1
    s1_matches = [False] * len1
    s2_matches = [False] * len2
    matches = 0
    for i in range(len1):
        start = max(0, i - match_distance)
        end = min(i + match_distance + 1, len2)
        for j in range(start, end):
            if s2_matches[j] or s1[i] != s2[j]:
                continue
            s1_matches[i] = s2_matches[j] = True
            matches += 1
            break
    if matches == 0:
        return 0.0

    t = 0
    k = 0
    for i in range(len1):
        if not s1_matches[i]:
            continue
        while not s2_matches[k]:
            k += 1
        if s1[i] != s2[k]:
            t += 1
        k += 1
    transpositions = t / 2
    return (matches / len1 + matches / len2 + (matches - transpositions) / matches) / 3


def jaro_winkler(a: str, b: str, prefix_scale: float = 0.1, max_prefix: int = 4) -> float:
    distance = jaro_distance(a, b)
    prefix = 0
    for i in range(min(max_prefix, len(a), len(b))):
        if a[i] != b[i]:
            break
        prefix += 1
    return distance + prefix * prefix_scale * (1 - distance)


def _populate_cache(rows: List[Dict[str, Any]]) -> None:
    global _alias_map, _canonical_map, _cache_loaded_at
    alias_map: Dict[str, Dict[str, Any]] = {}
    canonical_map: Dict[str, Dict[str, Any]] = {}
    for row in rows or []:
        if not isinstance(row.get("canonical"), str):
            continue
        canonical_key = normalise(row["canonical"])
        canonical_map[canonical_key] = row
        for alias in _clean_aliases(row.get("aliases")):
            alias_map[normalise(alias)] = row
        alias_map[canonical_key] = row
    _alias_map, _canonical_map = alias_map, canonical_map
    _cache_loaded_at = time.monotonic()


def _ensure_cache_fresh() -> None:
    with _lock:
        expired = _cache_loaded_at is None or time.monotonic() - _cache_loaded_at > CACHE_TTL_SECONDS
        if _alias_map and not expired:
            return
        try:
            rows = supabase_client.fetch_entity_aliases()
        except supabase_client.SupabaseError as exc:
            logger.error("Failed to load alias cache: %s", exc)
            raise
        _populate_cache(rows)
        logger.debug("Loaded %d alias rows", len(rows))


def invalidate_alias_cache() -> None:
    global _cache_loaded_at
    _cache_loaded_at = None


def _to_entity(row: Dict[str, Any], confidence: float, matched: str) -> ResolvedEntity:
    return ResolvedEntity(
        canonical=row["canonical"],
        type=row.get("type") or "unknown",
        confidence=confidence,
        matched=matched,
        aliases=_clean_aliases(row.get("aliases")),
        metadata=row.get("metadata"),
        source=row.get("source"),
    )


def resolve_entity(term: Optional[str]) -> Optional[ResolvedEntity]:
    if not isinstance(term, str) or not term.strip():
        return None
    _ensure_cache_fresh()

    normalized = normalise(term)
    direct = _alias_map.get(normalized)
    if direct:
        return _to_entity(direct, 1.0, term)

    best: Optional[Tuple[Dict[str, Any], float]] = None
    for candidates in (_alias_map, _canonical_map):
        for candidate, row in candidates.items():
            if not candidate:
                continue
            score = jaro_winkler(candidate, normalized)
            if score >= FUZZY_THRESHOLD and (best is None or score > best[1]):
                best = (row, score)
        if best:
            break
    if not best:
        return None
    return _to_entity(best[0], round(best[1], 3), term)


def get_user_alias_maps(user_id: str) -> Tuple[Dict[str, Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    """Return ``(alias_map, canonical_map)`` for a user's personal aliases."""

    if not user_id:
        return {}, {}
    cached = _user_cache.get(user_id)
    if cached and time.monotonic() - cached[2] < USER_CACHE_TTL_SECONDS:
        return cached[0], cached[1]

    rows = supabase_client.fetch_user_entity_aliases(user_id)
    alias_map: Dict[str, Dict[str, Any]] = {}
    canonical_map: Dict[str, Dict[str, Any]] = {}
    for row in rows or []:
        alias_map[normalise(row.get("alias_normalized") or row.get("alias") or "")] = row
        canonical_map[normalise(row.get("canonical") or "")] = row
    _user_cache[user_id] = (alias_map, canonical_map, time.monotonic())
    return alias_map, canonical_map


def invalidate_user_alias_cache(user_id: Optional[str] = None) -> None:
    if user_id:
        _user_cache.pop(user_id, None)
    else:
        _user_cache.clear()


def learn_alias(
    canonical: str,
    alias: str,
    *,
    type: Optional[str] = None,
    metadata: Any = None,
    source: Optional[str] = None,
) -> None:
    canonical = (canonical or "").strip()
    alias = (alias or "").strip()
    if not canonical or not alias:
        return

    existing = supabase_client.find_entity_alias(canonical)
    now = supabase_client._now_iso()
    if existing:
        current = _clean_aliases(existing.get("aliases"))
        if not any(normalise(a) == normalise(alias) for a in current):
            supabase_client.update_entity_alias(
                existing["id"],
                {
                    "aliases": current + [alias],
                    "metadata": metadata if metadata is not None else existing.get("metadata"),
                    "source": source or existing.get("source") or "followup",
                    "updated_at": now,
                },
            )
            logger.info("Appended alias %r to %r", alias, canonical)
    else:
        supabase_client.insert_entity_alias(
            {
                "canonical": canonical,
                "aliases": [alias],
                "type": type or "unknown",
                "metadata": metadata,
                "source": source or "followup",
                "created_at": now,
                "updated_at": now,
            }
        )
        logger.info("Created alias entry %r -> %r", alias, canonical)
    invalidate_alias_cache()


def learn_user_alias(
    user_id: str,
    canonical: str,
    alias: str,
    *,
    type: Optional[str] = None,
    metadata: Any = None,
    source: Optional[str] = None,
) -> None:
    canonical = (canonical or "").strip()
    alias = (alias or "").strip()
    if not user_id or not canonical or not alias:
        return

    existing = supabase_client.find_user_entity_alias(user_id, normalise(alias))
    if existing:
        supabase_client.update_user_entity_alias(
            existing["id"],
            {
                "canonical": canonical,
                "type": type or existing.get("type") or "unknown",
                "metadata": metadata if metadata is not None else existing.get("metadata"),
                "source": source or existing.get("source") or "followup",
                "updated_at": supabase_client._now_iso(),
            },
        )
    else:
        supabase_client.insert_user_entity_alias(
            {
                "user_id": user_id,
                "alias": alias,
                "canonical": canonical,
                "type": type or "unknown",
                "metadata": metadata,
                "source": source or "followup",
            }
        )
    invalidate_user_alias_cache(user_id)


def confirm_alias(
    user_id: str,
    alias: str,
    canonical: Optional[str],
    action: str,
    question_id: Optional[str] = None,
) -> None:
    """Apply a user's answer to an alias follow-up question.

    ``confirm`` learns the alias globally and for the user; ``reject`` only
    closes the question. Raises ValueError on bad input.
    """

    alias = (alias or "").strip()
    if not alias:
        raise ValueError("alias is required")

    if action == "confirm":
        canonical = (canonical or "").strip()
        if not canonical:
            raise ValueError("canonical is required for confirmation")
        learn_alias(canonical, alias, source="user")
        learn_user_alias(user_id, canonical, alias, source="user")
        if question_id:
            open_questions.resolve_open_question(question_id, f"Alias {alias} confirmed as {canonical}.")
        return

    if action == "reject":
        if question_id:
            open_questions.resolve_open_question(question_id, f"Alias {alias} skipped by user.")
        return

    raise ValueError("Unsupported action")


def learn_from_message(user_id: str, text: Optional[str]) -> Dict[str, int]:
    """Learn "X is Y" statements and queue confirmations for near-miss aliases.

    A candidate token that only fuzzily matches a known entity becomes an
    open question the user can answer through ``confirm_alias``.
    """

    learned = asked = 0
    for pair in detect_alias_affirmations(text):
        learn_user_alias(user_id, pair["canonical"], pair["alias"], source="followup")
        learned += 1

    user_aliases, _ = get_user_alias_maps(user_id)
    for term in extract_alias_candidates(text):
        if normalise(term) in user_aliases:
            continue
        resolved = resolve_entity(term)
        if not resolved or resolved.confidence >= 1.0:
            continue
        open_questions.add_open_question(
            user_id,
            f"Is {term} the same as {resolved.canonical}?",
            context={"type": "alias_confirmation", "alias": term, "canonical": resolved.canonical},
        )
        asked += 1
    return {"learned": learned, "asked": asked}

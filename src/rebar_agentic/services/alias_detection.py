"""Detect product/company alias candidates and "X is Y" confirmations in chat text."""

from __future__ import annotations

import re
from typing import Dict, List, Optional

CANDIDATE_RE = re.compile(r"\b[0-9A-Za-z][0-9A-Za-z\-\+\._/]{1,}\b")
AFFIRMATION_RE = re.compile(
    r'"?([A-Za-z0-9][A-Za-z0-9\s\-\+/&]{1,})"?\s*(?:=|is|equals|means)\s*"?([A-Za-z0-9][A-Za-z0-9\s\-\+/&]{1,})"?',
    re.IGNORECASE,
)
CLIP_RE = re.compile(r"\s+(?:in|for|with|within|on|at|which|that)\b", re.IGNORECASE)
MAX_CANDIDATES = 12


def extract_alias_candidates(text: Optional[str]) -> List[str]:
    """Short tokens with digits or capitals (M365, AWS, GPT-4o) that may be aliases."""

    if not text:
        return []
    seen: Dict[str, None] = {}
    for match in CANDIDATE_RE.finditer(text):
        term = match.group(0)
        if len(term) < 3 or len(term) > 48:
            continue
        if not re.search(r"\d", term) and not re.search(r"[A-Z]", term):
            continue
        seen.setdefault(term, None)
    return list(seen)[:MAX_CANDIDATES]


def _normalize_side(value: str) -> str:
    term = re.sub(r"[.,!?]+$", "", value.strip())
    return CLIP_RE.split(term, maxsplit=1)[0].strip()


def _score(term: str) -> float:
    return len(term.split()) + (1.5 if re.search(r"[0-9]", term) else 0)


def detect_alias_affirmations(message: Optional[str]) -> List[Dict[str, str]]:
    """Return ``{"canonical", "alias"}`` pairs the user asserted as equivalent.

    The side with more words (digits count extra) is taken as canonical.
    """

    results: List[Dict[str, str]] = []
    if not message:
        return results
    for match in AFFIRMATION_RE.finditer(message):
        left = _normalize_side(match.group(1))
        right = _normalize_side(match.group(2))
        if not left or not right or left.lower() == right.lower():
            continue
        if _score(right) >= _score(left):
            canonical, alias = right, left
        else:
            canonical, alias = left, right
        if len(alias) <= 40 and len(canonical) <= 80:
            results.append({"canonical": canonical, "alias": alias})
    return results

"""Lightweight heuristics for rejecting gibberish or placeholder company names."""

from __future__ import annotations

import re
from typing import Optional

REPEATED_CHAR = re.compile(r"(.)\1{3,}")
KEYBOARD_WALK = re.compile(r"(qwerty|asdfgh|zxcv|poiuy|lkjhg|mnbv)", re.IGNORECASE)
MOSTLY_CONSONANTS = re.compile(r"^[bcdfghjklmnpqrstvwxyz\s.,'-]{4,}$", re.IGNORECASE)
NO_VOWELS = re.compile(r"^(?!.*[aeiou]).{4,}$", re.IGNORECASE)
LONG_WORD = re.compile(r"\b[a-z]{4,}\b", re.IGNORECASE)
LEADING_VERB = re.compile(r"^(research|analy[sz]e|investigate|look\s*up|tell me about)\s+", re.IGNORECASE)

GENERIC_PHRASES = frozenset(
    {
        "help me set up",
        "help me setup",
        "let's start",
        "onboard me",
        "start onboarding",
        "get started",
        "begin",
    }
)


def is_generic_placeholder(text: Optional[str]) -> bool:
    s = (text or "").strip().lower()
    return not s or s in GENERIC_PHRASES


def is_gibberish(text: Optional[str]) -> bool:
    s = (text or "").strip()
    if len(s) <= 2:
        return True
    if REPEATED_CHAR.search(s) or KEYBOARD_WALK.search(s) or NO_VOWELS.search(s):
        return True
    return bool(MOSTLY_CONSONANTS.search(s) and LONG_WORD.search(s))


def sanitize_candidate(text: Optional[str]) -> str:
    s = LEADING_VERB.sub("", str(text or "")).strip()
    s = s.replace("?", "").strip()
    s = re.sub(r"^[^A-Za-z0-9(]+", "", s)
    s = re.sub(r"[^A-Za-z0-9)&.\-\s]+$", "", s).strip()
    return s[:120]

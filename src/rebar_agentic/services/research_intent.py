"""Heuristics that decide whether a chat turn is a research request and what it is about."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from rebar_agentic.services import company_validation

NON_RESEARCH_TERMS = frozenset(
    {
        "hi", "hello", "hey", "thanks", "thank you", "agenda", "notes", "help", "update", "updates",
        "plan", "planning", "what", "who", "why", "how", "where", "when", "test",
    }
)

RESEARCH_VERBS = re.compile(
    r"(research|analy[sz]e|investigate|look\s*up|deep\s*dive|latest\s+news|competitive|funding|hiring"
    r"|tech(?:\s|-)?stack|security|signals?|tell me about|what is|who is)",
    re.IGNORECASE,
)
COMPANY_INDICATORS = re.compile(r"(inc\.|corp\.|ltd\.|llc|company|co\b)", re.IGNORECASE)
CAPITALIZED_NAME = re.compile(r"\b[A-Z][\w&]+(?:\s+[A-Z][\w&]+){0,3}\b")
ALL_SYNONYMS = re.compile(r"\ball(\s+of\s+the\s+(above|those|them))?\b", re.IGNORECASE)

ACTION_PREFIX = re.compile(
    r"^(summarize|continue|resume|draft|write|compose|email|refine|save|track|start|generate|rerun|retry"
    r"|copy|share|compare)\b",
    re.IGNORECASE,
)
LEADING_VERB = re.compile(
    r"^(research|analy[sz]e|investigate|look\s*up|deep\s*dive|tell me about|find|discover|explore|dig into)\s+",
    re.IGNORECASE,
)
STOP_WORDS = re.compile(r"\s+(?:in|at|for|with|that|who|which|using|focused|within)\s+", re.IGNORECASE)

BARE_NAME_LEADING = re.compile(
    r"^(research|tell me about|what can you tell me about|who is|analy[sz]e|find)\s+", re.IGNORECASE
)
ORG_SUFFIX = re.compile(
    r"(inc\.|corp\.|ltd\.|llc|company|co\b|group|holdings|technologies|systems)", re.IGNORECASE
)

PRONOUN_RE = re.compile(r"\b(their|they|them|it|its)\b", re.IGNORECASE)
FOLLOW_UP_RE = re.compile(
    r"\b(ceo|cto|cfo|founder|leadership|headquarters|hq|revenue|funding|employees|valuation|security"
    r"|stack|product|roadmap)\b",
    re.IGNORECASE,
)
SHORT_QUESTION_RE = re.compile(r"^(who|what|when|where|which|how|do|does|did|is|are|was|were)\b", re.IGNORECASE)

FRESH_INTEL_RE = re.compile(
    r"recent|latest|today|yesterday|this week|signals?|news|breach|breaches|leadership|funding|acquisition"
    r"|hiring|layoff|changed|update|report",
    re.IGNORECASE,
)
TIMEFRAME_RE = re.compile(r"\b(last|past)\s+\d+\s+(day|days|week|weeks|month|months|year|years)\b", re.IGNORECASE)
SEARCH_REQUEST_RE = re.compile(r"\bweb[_\s-]?search\b|\b(search online|look up|google|check the web)\b")
SECTION_HEADINGS = frozenset(
    {"executive summary", "summary", "overview", "sources", "recent signals", "recommended next actions", "tech/footprint"}
)


def extract_company_name(raw: Optional[str]) -> str:
    """Best-effort subject extraction ("research acme corp in Ohio" -> "Acme Corp").

    Returns an empty string for commands (summarize, draft, ...) and for
    inputs that do not look like a name.
    """

    text = str(raw or "").strip()
    if not text or ACTION_PREFIX.search(text):
        return ""

    text = LEADING_VERB.sub("", text, count=1).strip()
    text = text.replace("?", "").strip()
    stop = STOP_WORDS.search(text)
    if stop and stop.start() > 0:
        text = text[: stop.start()].strip()

    text = re.sub(r"^[^A-Za-z0-9(]+", "", text)
    text = re.sub(r"[^A-Za-z0-9)&.\-\s]+$", "", text).strip()
    if not text:
        return ""

    words = text.split()[:6]
    formatted = " ".join(w if w.upper() == w else w[0].upper() + w[1:] for w in words).strip()
    if re.fullmatch(r"\d+", formatted) or len(formatted) > 80:
        return ""
    return formatted


def classify_research_intent(raw: Optional[str]) -> bool:
    text = (raw or "").strip()
    if not text:
        return False
    has_verb = bool(RESEARCH_VERBS.search(text))
    company_like = bool(CAPITALIZED_NAME.search(text) and COMPANY_INDICATORS.search(text))
    if has_verb or company_like or ALL_SYNONYMS.search(text):
        return True

    if extract_company_name(text):
        if text.lower() in NON_RESEARCH_TERMS:
            return False
        return 0 < len(text.split()) <= 4
    return False


def strip_leading_request(text: str) -> str:
    return BARE_NAME_LEADING.sub("", (text or "").strip(), count=1).strip()


def looks_like_bare_name(text: Optional[str]) -> bool:
    """One or two words with no URL, domain or corporate suffix: likely ambiguous."""

    stripped = strip_leading_request(text or "")
    if not stripped:
        return False
    if re.search(r"https?://", stripped, re.IGNORECASE) or "." in stripped:
        return False
    if ORG_SUFFIX.search(stripped):
        return False
    return len(stripped.split()) <= 2


def is_likely_subject(value: Optional[str]) -> bool:
    trimmed = (value or "").strip()
    if not trimmed or len(trimmed) > 80:
        return False
    if re.match(r"^(who|what|when|where|which|why|how)\b", trimmed, re.IGNORECASE):
        return False
    if re.search(r"\?\s*$", trimmed):
        return False
    return not re.match(
        r"^(summarize|continue|resume|draft|write|compose|email|refine|help me|start|begin|generate|rerun|retry)",
        trimmed,
        re.IGNORECASE,
    )


def is_short_question(text: Optional[str]) -> bool:
    t = (text or "").strip()
    return bool(SHORT_QUESTION_RE.match(t)) and len(t) <= 120


def refers_to_active_subject(text: Optional[str]) -> bool:
    t = text or ""
    return bool(PRONOUN_RE.search(t) or FOLLOW_UP_RE.search(t))


def explicitly_requests_search(text: Optional[str]) -> bool:
    return bool(SEARCH_REQUEST_RE.search((text or "").lower()))


def wants_fresh_lookup(text: Optional[str]) -> bool:
    t = text or ""
    return bool(FRESH_INTEL_RE.search(t) or TIMEFRAME_RE.search(t) or explicitly_requests_search(t))


def summarize_context_for_plan(user_context: Optional[Dict[str, Any]]) -> str:
    """One line per notable bit of saved profile context, for the planning prompt."""

    if not user_context:
        return ""
    bits = []
    profile = user_context.get("profile") or {}
    if profile.get("company_name"):
        bits.append(f"Your org: {profile['company_name']}")
    if profile.get("industry"):
        bits.append(f"Industry: {profile['industry']}")
    titles = profile.get("target_titles")
    if isinstance(titles, list) and titles:
        bits.append(f"Target titles: {', '.join(str(t) for t in titles[:4])}")

    criteria = user_context.get("custom_criteria") or []
    if criteria:
        labels = [
            f"{c.get('field_name')}{' (' + c['importance'] + ')' if c.get('importance') else ''}"
            for c in criteria[:4]
        ]
        bits.append(f"Custom criteria: {', '.join(labels)}")

    signals = [s.get("signal_type") or s.get("type") for s in (user_context.get("signals") or [])[:3]]
    signals = [s for s in signals if s]
    if signals:
        bits.append(f"Monitored signals: {', '.join(signals)}")
    return "\n".join(bits)


def _acceptable_subject(candidate: str) -> bool:
    return (
        is_likely_subject(candidate)
        and not company_validation.is_generic_placeholder(candidate)
        and not company_validation.is_gibberish(candidate)
    )


def infer_active_subject(user_message: Optional[str], assistant_text: Optional[str] = None) -> str:
    """Company the conversation is now about, or "" when unclear.

    Prefers the name in the user's request; falls back to the first
    markdown heading of the answer.
    """

    candidate = company_validation.sanitize_candidate(extract_company_name(user_message))
    if candidate and _acceptable_subject(candidate):
        return candidate
    heading = re.search(r"^#{1,3}\s*(.+)$", assistant_text or "", re.MULTILINE)
    if heading:
        title = re.split(r"\s+[-–—:|]\s+", heading.group(1).strip(), maxsplit=1)[0]
        candidate = company_validation.sanitize_candidate(title.replace("*", ""))
        if candidate and candidate.lower() not in SECTION_HEADINGS and _acceptable_subject(candidate):
            return candidate
    return ""

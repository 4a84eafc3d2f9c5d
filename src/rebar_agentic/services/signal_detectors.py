"""Prompt-driven signal detectors.

Each detector owns a slice of the user's signal preferences (matched on the
normalized ``signal_type``), builds a research prompt for one account and
turns the agent's JSON answer into scored :class:`DetectedSignal` rows.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rebar_agentic.agents.signal_detector_agent import create_signal_detector_agent
from rebar_agentic.services.openai_provider import run_agent_sync
from rebar_agentic.services.retry import retry_agent_call
from rebar_agentic.services.signal_scoring import (
    calculate_signal_score,
    determine_severity,
    normalize_confidence,
    normalize_signal_type,
)

logger = logging.getLogger(__name__)

JSON_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)


@dataclass
class DetectedSignal:
    signal_type: str
    severity: str
    description: str
    signal_date: str
    source_url: str
    score: int
    confidence: str = "medium"
    raw_payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectorResult:
    detector: str
    status: str  # success | noop | error
    signals: List[DetectedSignal] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class DetectorConfig:
    detector: str
    description: str
    match_terms: Tuple[str, ...]
    query_hints: Tuple[str, ...]
    instruction: str = ""
    format_example: str = ""

    def filter_preferences(self, preferences: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            pref
            for pref in preferences or []
            if any(term in normalize_signal_type(str(pref.get("signal_type") or "")) for term in self.match_terms)
        ]


DETECTORS: Tuple[DetectorConfig, ...] = (
    DetectorConfig(
        detector="security_breach",
        description="security breaches, incidents, and compromises",
        match_terms=("breach", "security"),
        query_hints=(
            '"data breach" OR ransomware OR "security incident"',
            "credential stuffing or unauthorized access",
            "breach disclosure, notification, or regulatory filings",
        ),
        instruction=(
            "Focus on confirmed incidents. Ignore vague mentions or generic cybersecurity tips. "
            "Return only events impacting the company directly."
        ),
        format_example=(
            '[{"signal_type":"security_breach","description":"Detected ransomware attack impacting production '
            'systems","signal_date":"2025-09-12","source_url":"https://news.example.com/ransomware",'
            '"confidence":"high"}]'
        ),
    ),
    DetectorConfig(
        detector="leadership_change",
        description="executive leadership changes (C-level, VP, Board)",
        match_terms=("leadership", "executive", "c_suite", "cso", "ciso", "cfo", "cto", "ceo"),
        query_hints=(
            '"new CEO" OR "new CTO" OR "Appointed"',
            "executive hire OR leadership announcement",
            "board appointment OR chief security officer",
        ),
        instruction=(
            "Only return confirmed leadership transitions at VP level or above. "
            "Include reason if noted (e.g., replacement, expansion)."
        ),
        format_example=(
            '[{"signal_type":"leadership_change","description":"Appointed Jane Doe as new Chief Information '
            'Security Officer","signal_date":"2025-09-18","source_url":"https://newsroom.example.com/jane-doe",'
            '"confidence":"high"}]'
        ),
    ),
    DetectorConfig(
        detector="funding_round",
        description="funding rounds, equity investments, or major capital raises",
        match_terms=("funding", "investment"),
        query_hints=(
            '"raised" OR "Series" OR "seed round" OR "funding round"',
            "venture capital investment or growth equity",
            "press releases from investors or financial publications",
        ),
        instruction=(
            "Include the round type and amount when possible. "
            "Only include confirmed funding events tied directly to the company."
        ),
        format_example=(
            '[{"signal_type":"funding_round","description":"Closed $25M Series B led by Insight Partners",'
            '"signal_date":"2025-08-30","source_url":"https://techfinance.example.com/acme-series-b",'
            '"confidence":"high"}]'
        ),
    ),
    DetectorConfig(
        detector="hiring_surge",
        description="hiring surges or notable recruiting activity related to security or target functions",
        match_terms=("hiring", "recruit"),
        query_hints=(
            '"hiring" OR "job openings" OR "now hiring" + company name',
            "careers page updates or LinkedIn job listings",
            "large-scale recruitment drives or talent expansion",
        ),
        instruction=(
            "Summaries should mention the number or type of roles if available. "
            "Ignore single job postings unless signalling significant change."
        ),
        format_example=(
            '[{"signal_type":"hiring_surge","description":"Posted 18 new cybersecurity roles across engineering '
            'and operations","signal_date":"2025-09-24","source_url":"https://jobs.example.com/security-openings",'
            '"confidence":"medium"}]'
        ),
    ),
)


def dedupe_preferences(preferences: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen: Dict[str, Dict[str, Any]] = {}
    for pref in preferences:
        seen.setdefault(normalize_signal_type(str(pref.get("signal_type") or "")), pref)
    return list(seen.values())


def _lookback_days(pref: Dict[str, Any]) -> int:
    try:
        return int(pref.get("lookback_days") or 0)
    except (TypeError, ValueError):
        return 0


def build_detector_prompt(account: Dict[str, Any], preferences: List[Dict[str, Any]], config: DetectorConfig) -> str:
    lookback = max((_lookback_days(p) for p in preferences), default=0)
    details = []
    for pref in preferences:
        parts = [
            f"type: {pref.get('signal_type')}",
            f"importance: {pref.get('importance')}",
            f"lookback_days: {_lookback_days(pref)}",
        ]
        if pref.get("config"):
            parts.append(f"config: {json.dumps(pref['config'], separators=(',', ':'))}")
        details.append(f"- {', '.join(parts)}")

    sections = [
        f"Analyze recent, credible sources to detect **{config.description}** for the company "
        f'"{account.get("company_name")}".',
        f"Consider up to the last {lookback} days. Only return real signals with verifiable references.",
        "User signal preferences:",
        "\n".join(details),
        "Preferred search angles (use your web_search tool):",
        "\n".join(f"- {hint}" for hint in config.query_hints),
    ]
    if config.instruction:
        sections.append(config.instruction)
    sections.extend(
        [
            "Respond **only** with a JSON array. Each element must include:",
            "signal_type (string)",
            "description (string, concise yet specific)",
            "signal_date (YYYY-MM-DD)",
            "source_url (string, HTTPS)",
            "confidence (high | medium | low)",
        ]
    )
    if config.format_example:
        sections.append(f"Example: {config.format_example}")
    return "\n\n".join(sections)


def parse_signals_array(text: str) -> List[Any]:
    """Parse the agent answer; raises ValueError when it is not a signal list."""

    json_text = (text or "").strip()
    match = JSON_BLOCK_RE.search(json_text)
    if match:
        json_text = match.group(1)
    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse detector JSON: {exc}") from exc
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict) and isinstance(parsed.get("signals"), list):
        return parsed["signals"]
    raise ValueError("Expected JSON array of signals")


def normalize_signal(
    raw: Any,
    preferences: List[Dict[str, Any]],
    default_signal_type: str,
) -> Optional[DetectedSignal]:
    if not isinstance(raw, dict) or not preferences:
        return None

    raw_type = raw.get("signal_type")
    if not isinstance(raw_type, str) or not raw_type.strip():
        raw_type = default_signal_type
    signal_type = normalize_signal_type(raw_type)
    pref = next(
        (p for p in preferences if normalize_signal_type(str(p.get("signal_type") or "")) == signal_type),
        preferences[0],
    )

    description = str(raw.get("description") or "").strip()
    if not description:
        return None
    source_url = raw.get("source_url").strip() if isinstance(raw.get("source_url"), str) else ""
    if not source_url.startswith("http"):
        return None

    signal_date = raw["signal_date"] if isinstance(raw.get("signal_date"), str) else date.today().isoformat()
    confidence = normalize_confidence(raw.get("confidence"))
    base_score = raw.get("base_score")
    importance = pref.get("importance") or "nice_to_have"
    if isinstance(base_score, (int, float)) and not isinstance(base_score, bool) and base_score:
        score = calculate_signal_score(importance, signal_date, confidence, base_score=float(base_score))
    else:
        score = calculate_signal_score(importance, signal_date, confidence)

    return DetectedSignal(
        signal_type=signal_type,
        severity=determine_severity(importance, score),
        description=description,
        signal_date=signal_date,
        source_url=source_url,
        score=score,
        confidence=confidence,
        raw_payload=raw,
    )


def _agent_output_text(result: Any) -> str:
    output = getattr(result, "final_output", result)
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def run_detector(
    config: DetectorConfig,
    account: Dict[str, Any],
    preferences: List[Dict[str, Any]],
    runner: Optional[Callable[[str], Any]] = None,
) -> DetectorResult:
    """Run one detector for one account.

    ``runner`` takes the prompt and returns the agent result; it defaults to
    a retried Agents SDK run of the signal detector agent.
    """

    filtered = config.filter_preferences(preferences)
    if not filtered:
        return DetectorResult(detector=config.detector, status="noop")
    unique = dedupe_preferences(filtered)
    prompt = build_detector_prompt(account, unique, config)

    if runner is None:
        agent = create_signal_detector_agent()

        def runner(text: str) -> Any:
            return retry_agent_call(run_agent_sync, agent, text, max_attempts=2)

    try:
        result = runner(prompt)
        raw_signals = parse_signals_array(_agent_output_text(result))
    except ValueError as exc:
        logger.warning("Detector %s returned unusable output for %s: %s", config.detector, account.get("id"), exc)
        return DetectorResult(detector=config.detector, status="error", error=str(exc))

    signals = [s for s in (normalize_signal(raw, unique, config.detector) for raw in raw_signals) if s]
    return DetectorResult(
        detector=config.detector,
        status="success" if signals else "noop",
        signals=signals,
    )

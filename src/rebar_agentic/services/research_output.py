"""Turn a finished research answer into a ``research_outputs`` row.

Scores here are coverage heuristics over the markdown (length, structure,
ICP/signal vocabulary, number of sources); they rank saved research but
are not a model judgement.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

ResearchType = Literal["company", "prospect", "competitive", "market"]

AGENT_TYPE_TO_RESEARCH_TYPE: Dict[str, ResearchType] = {
    "settings_agent": "company",
    "company_research": "company",
    "find_prospects": "prospect",
    "analyze_competitors": "competitive",
    "market_trends": "market",
}

COMPANY_DATA_PATTERNS = [
    ("industry", re.compile(r"(industry|sector)\s*[:-]\s*([^\n]+)", re.IGNORECASE)),
    ("size", re.compile(r"(headcount|employees|company size)\s*[:-]\s*([^\n]+)", re.IGNORECASE)),
    ("location", re.compile(r"(headquarters|location)\s*[:-]\s*([^\n]+)", re.IGNORECASE)),
    ("founded", re.compile(r"(founded)\s*[:-]\s*([^\n]+)", re.IGNORECASE)),
    ("website", re.compile(r"(website)\s*[:-]\s*(https?://\S+)", re.IGNORECASE)),
]


class ResearchSource(BaseModel):
    url: str
    query: Optional[str] = None


class ResearchDraft(BaseModel):
    subject: str
    research_type: ResearchType
    executive_summary: str
    markdown_report: str
    icp_fit_score: int
    signal_score: int
    composite_score: int
    priority_level: Literal["hot", "warm", "standard"]
    confidence_level: Literal["high", "medium", "low"]
    sources: List[ResearchSource] = Field(default_factory=list)
    company_data: Dict[str, str] = Field(default_factory=dict)
    leadership_team: List[Any] = Field(default_factory=list)
    buying_signals: List[Any] = Field(default_factory=list)
    custom_criteria_assessment: List[Any] = Field(default_factory=list)
    personalization_points: List[Any] = Field(default_factory=list)
    recommended_actions: Dict[str, Any] = Field(default_factory=dict)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    if value != value:  # NaN
        return 0
    return max(0, min(100, _round_half_up(value)))


def _infer_research_type(assistant: str, user: str, agent_type: Optional[str]) -> ResearchType:
    mapped = AGENT_TYPE_TO_RESEARCH_TYPE.get(agent_type or "")
    if mapped:
        return mapped
    a, u = assistant.lower(), user.lower()
    if "prospect" in a or "prospect" in u:
        return "prospect"
    if "competitor" in a or "competitive" in a:
        return "competitive"
    if "trend" in a or "market" in a:
        return "market"
    return "company"


def _infer_subject(assistant: str, user: str, chat_title: Optional[str]) -> str:
    title = (chat_title or "").strip()
    if title and title.lower() != "new research":
        return title
    heading = re.search(r"^#+\s*(.+)$", assistant, re.MULTILINE)
    if heading:
        return heading.group(1).strip()
    first_line = next((line.strip() for line in assistant.split("\n") if line.strip()), "")
    if first_line:
        return re.sub(r"[*_#>-]", "", first_line).strip()[:120] or "Research Insight"
    if user:
        return user[:120]
    return "Research Insight"


def _build_summary(markdown: str) -> str:
    clean = re.sub(r"\s+", " ", markdown).strip()
    sentences = [s for s in re.split(r"(?<=[.!?])\s+", clean) if s]
    return " ".join(sentences[:2])[:400]


def compute_scores(markdown: str, sources_count: int) -> Dict[str, Any]:
    word_count = len(markdown.split())
    has_signals = bool(re.search(r"signal|trigger|intent|buying", markdown, re.IGNORECASE))
    has_icp = bool(re.search(r"icp|ideal customer profile|fit score", markdown, re.IGNORECASE))
    structure_bonus = 8 if "##" in markdown else 0

    base = clamp_score(40 + min(50, word_count / 4 + structure_bonus))
    icp_fit = clamp_score(45 + min(40, word_count / 5) + (10 if has_icp else 0))
    signal = clamp_score(35 + min(45, word_count / 6) + (12 if has_signals else 0) + sources_count * 3)
    composite = clamp_score(icp_fit * 0.3 + signal * 0.4 + base * 0.3)

    if composite >= 80:
        priority = "hot"
    elif composite >= 60:
        priority = "warm"
    else:
        priority = "standard"
    if sources_count >= 3:
        confidence = "high"
    elif sources_count == 0:
        confidence = "low"
    else:
        confidence = "medium"
    return {
        "icp_fit_score": icp_fit,
        "signal_score": signal,
        "composite_score": composite,
        "priority_level": priority,
        "confidence_level": confidence,
    }


def extract_company_data(markdown: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for key, regex in COMPANY_DATA_PATTERNS:
        match = regex.search(markdown)
        if match and match.group(2):
            result[key] = match.group(2).strip()
    return result


def normalize_source_events(events: Optional[Sequence[Any]]) -> List[ResearchSource]:
    """Flatten ``{"url"}`` entries and ``{"query", "sources": [...]}`` search events, deduplicated by URL."""

    by_url: Dict[str, ResearchSource] = {}
    for entry in events or []:
        if isinstance(entry, ResearchSource):
            entry = entry.model_dump()
        elif hasattr(entry, "sources") and hasattr(entry, "query"):
            entry = {"query": entry.query, "sources": entry.sources}
        if not isinstance(entry, dict):
            continue
        if "url" in entry:
            if entry.get("url"):
                by_url[entry["url"]] = ResearchSource(url=entry["url"], query=entry.get("query"))
            continue
        for url in entry.get("sources") or []:
            if url and url not in by_url:
                by_url[url] = ResearchSource(url=url, query=entry.get("query"))
    return list(by_url.values())


def approximate_token_count(text: Optional[str]) -> int:
    if not text:
        return 0
    return max(1, _round_half_up(len(text.split()) * 1.5))


def build_research_draft(
    assistant_message: str,
    *,
    user_message: str = "",
    chat_title: Optional[str] = None,
    agent_type: Optional[str] = None,
    sources: Optional[Sequence[Any]] = None,
) -> ResearchDraft:
    normalized = normalize_source_events(sources)
    markdown = assistant_message.strip()
    if not normalized:
        first_url = re.search(r"https?://[^\s)]+", markdown, re.IGNORECASE)
        if first_url:
            normalized = [ResearchSource(url=first_url.group(0))]

    return ResearchDraft(
        subject=_infer_subject(assistant_message, user_message or "", chat_title),
        research_type=_infer_research_type(assistant_message, user_message or "", agent_type),
        executive_summary=_build_summary(markdown),
        markdown_report=markdown,
        sources=normalized,
        company_data=extract_company_data(markdown),
        **compute_scores(markdown, len(normalized)),
    )

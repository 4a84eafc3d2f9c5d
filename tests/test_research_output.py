"""Tests for turning research answers into saved research rows."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from rebar_agentic.services.research_output import (
    approximate_token_count,
    build_research_draft,
    compute_scores,
    normalize_source_events,
)
from rebar_agentic.services.sse import WebSearchEvent

REPORT = (
    "# Acme Corp\n"
    "Acme builds rockets. It is growing fast! Third sentence.\n"
    "Industry: Aerospace\n"
    "Headquarters: Denver, CO\n"
    "See https://acme.com/about for more."
)


def test_build_research_draft_from_markdown():
    draft = build_research_draft(REPORT, user_message="Research Acme")
    assert draft.subject == "Acme Corp"
    assert draft.research_type == "company"
    assert draft.executive_summary.endswith("It is growing fast!")
    assert [s.url for s in draft.sources] == ["https://acme.com/about"]
    assert draft.confidence_level == "medium"
    assert draft.company_data == {"industry": "Aerospace", "location": "Denver, CO"}
    assert draft.markdown_report == REPORT


def test_chat_title_and_agent_type_take_precedence():
    draft = build_research_draft("Plain text answer.", chat_title="Globex", agent_type="find_prospects")
    assert draft.subject == "Globex"
    assert draft.research_type == "prospect"


def test_default_chat_title_is_ignored():
    draft = build_research_draft("", user_message="Research Initech", chat_title="New Research")
    assert draft.subject == "Research Initech"
    assert draft.confidence_level == "low"


def test_research_type_inferred_from_content():
    assert build_research_draft("Competitor landscape").research_type == "competitive"
    assert build_research_draft("Market trend overview").research_type == "market"


def test_compute_scores_for_empty_answer():
    scores = compute_scores("", 0)
    assert scores == {
        "icp_fit_score": 45,
        "signal_score": 35,
        "composite_score": 40,
        "priority_level": "standard",
        "confidence_level": "low",
    }


def test_compute_scores_for_rich_answer():
    markdown = "## Signals\n" + " ".join(["ICP buying signal"] * 134)
    scores = compute_scores(markdown, 3)
    assert scores["icp_fit_score"] == 95
    assert scores["signal_score"] == 100
    assert scores["priority_level"] == "hot"
    assert scores["confidence_level"] == "high"


def test_normalize_source_events_dedupes_by_url():
    sources = normalize_source_events(
        [
            {"url": "https://a.com"},
            {"query": "acme funding", "sources": ["https://a.com", "https://b.com"]},
            WebSearchEvent(query="acme ceo", sources=["https://c.com"]),
            "not a source",
        ]
    )
    assert [(s.url, s.query) for s in sources] == [
        ("https://a.com", None),
        ("https://b.com", "acme funding"),
        ("https://c.com", "acme ceo"),
    ]


def test_approximate_token_count():
    assert approximate_token_count("one two three") == 5
    assert approximate_token_count("") == 0
    assert approximate_token_count(None) == 0

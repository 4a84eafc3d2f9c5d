"""Tests for credit estimates."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services.credit_estimation import (
    CreditEstimate,
    credits_for_tokens,
    estimate_credits,
    estimate_tokens,
    format_credit_range,
)


@pytest.mark.parametrize(
    "query, expected",
    [
        ("Track Acme, Globex", (2, 5, "Track 2 companies")),
        ("monitor Acme", (2, 5, "Track company")),
        ("Which accounts are heating up?", (10, 20, "Account portfolio query")),
        ("refresh every account please", (100, 300, "Batch account research")),
        ("Deep research on Acme", (50, 80, "Deep intelligence research")),
        ("quick research on Boeing", (20, 40, "Quick brief research")),
        ("Tell me about Lockheed", (40, 60, "Company research")),
        ("boeingfans forum chatter today", (20, 40, "General query")),
        ("find 12 prospect companies in Ohio", (180, 300, "12 companies with enrichment")),
        ("find prospects", (150, 250, "10 companies with enrichment")),
        ("compare Acme, Globex, Initech", (90, 150, "3 competitor analysis")),
        ("industry outlook for utilities", (60, 100, "Market intelligence report")),
        ("yes", (1, 3, "Simple response")),
        ("hello there, how are you today?", (20, 40, "General query")),
    ],
)
def test_estimate_credits_keyword_rules(query, expected):
    estimate = estimate_credits(query)
    assert (estimate.min, estimate.max, estimate.description) == expected


def test_estimate_credits_handles_none():
    assert estimate_credits(None).description == "General query"


def test_prospect_estimate_is_capped():
    estimate = estimate_credits("find 100 leads")
    assert (estimate.min, estimate.max) == (500, 800)


def test_format_credit_range():
    assert format_credit_range(CreditEstimate(5, 5, "x")) == "~5 credits"
    assert format_credit_range(CreditEstimate(2, 5, "x")) == "2-5 credits"


def test_token_and_credit_conversion():
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens(None) == 0
    assert credits_for_tokens(0) == 0
    assert credits_for_tokens(-5) == 0
    assert credits_for_tokens(1000) == 1
    assert credits_for_tokens(1001) == 2

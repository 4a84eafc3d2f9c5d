"""Tests for research intent heuristics and company name validation."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import company_validation, research_intent


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("research acme corp in Ohio", "Acme Corp"),
        ("Tell me about IBM?", "IBM"),
        ("look up globex", "Globex"),
        ("summarize this thread", ""),
        ("12345", ""),
        ("", ""),
    ],
)
def test_extract_company_name(raw, expected):
    assert research_intent.extract_company_name(raw) == expected


def test_classify_research_intent():
    assert research_intent.classify_research_intent("research Acme")
    assert research_intent.classify_research_intent("Acme Robotics")
    assert research_intent.classify_research_intent("What is the tech stack at Globex?")
    assert not research_intent.classify_research_intent("hello")
    assert not research_intent.classify_research_intent("")
    assert not research_intent.classify_research_intent(
        "can you help me write a long email to my team about the offsite"
    )


def test_looks_like_bare_name():
    assert research_intent.looks_like_bare_name("research Acme")
    assert research_intent.looks_like_bare_name("Boeing")
    assert not research_intent.looks_like_bare_name("acme.com")
    assert not research_intent.looks_like_bare_name("Acme Holdings")
    assert not research_intent.looks_like_bare_name("three word name here")


def test_follow_up_and_search_detection():
    assert research_intent.refers_to_active_subject("who is their CEO")
    assert not research_intent.refers_to_active_subject("weather")
    assert research_intent.explicitly_requests_search("please use web search")
    assert research_intent.wants_fresh_lookup("any news on Acme")
    assert research_intent.wants_fresh_lookup("what happened over the past 6 months")
    assert not research_intent.wants_fresh_lookup("tell me about acme")


def test_subject_checks():
    assert research_intent.is_short_question("who runs Acme?")
    assert research_intent.is_likely_subject("Acme")
    assert not research_intent.is_likely_subject("what now")
    assert not research_intent.is_likely_subject("summarize")
    assert not research_intent.is_likely_subject("Acme?")


def test_summarize_context_for_plan():
    ctx = {
        "profile": {"company_name": "Rebar", "industry": "Security", "target_titles": ["CISO", "CIO"]},
        "custom_criteria": [{"field_name": "Uses Okta", "importance": "critical"}, {"field_name": "SOC2"}],
        "signals": [{"signal_type": "funding_round"}, {"type": "security_breach"}],
    }
    assert research_intent.summarize_context_for_plan(ctx).split("\n") == [
        "Your org: Rebar",
        "Industry: Security",
        "Target titles: CISO, CIO",
        "Custom criteria: Uses Okta (critical), SOC2",
        "Monitored signals: funding_round, security_breach",
    ]
    assert research_intent.summarize_context_for_plan(None) == ""


def test_infer_active_subject_prefers_user_request():
    assert research_intent.infer_active_subject("research acme corp", "# Something else") == "Acme Corp"


def test_infer_active_subject_falls_back_to_answer_heading():
    answer = "# Globex Corporation - Overview\nGlobex makes things."
    assert research_intent.infer_active_subject("what do you think?", answer) == "Globex Corporation"


def test_infer_active_subject_ignores_section_headings():
    assert research_intent.infer_active_subject("what changed?", "## Executive Summary\nstuff") == ""


def test_generic_placeholders():
    assert company_validation.is_generic_placeholder("  Get Started ")
    assert company_validation.is_generic_placeholder("")
    assert not company_validation.is_generic_placeholder("Acme")


@pytest.mark.parametrize("text", ["ab", "aaaa corp", "qwerty inc", "xyzzy", "   "])
def test_is_gibberish_rejects_noise(text):
    assert company_validation.is_gibberish(text)


@pytest.mark.parametrize("text", ["Acme Corp", "Microsoft", "IBM"])
def test_is_gibberish_accepts_real_names(text):
    assert not company_validation.is_gibberish(text)


def test_sanitize_candidate():
    assert company_validation.sanitize_candidate("Research Acme Corp?") == "Acme Corp"
    assert company_validation.sanitize_candidate("tell me about  --Globex!!") == "Globex"
    assert len(company_validation.sanitize_candidate("x" * 200)) == 120
    assert company_validation.sanitize_candidate(None) == ""

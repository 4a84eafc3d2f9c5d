"""Tests for research agent prompt assembly."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from rebar_agentic.agents import research_prompts as prompts

CONTEXT = {
    "profile": {"company_name": "Rebar", "industry": "Security", "target_titles": ["CISO"]},
    "custom_criteria": [{"field_name": "Uses Okta", "importance": "critical"}, {}],
    "signals": [{"signal_type": "security_breach", "importance": "critical", "config": {"keywords": ["ransomware"]}}],
    "disqualifiers": [{"criterion": "Under 50 employees"}],
    "prompt_config": {
        "preferred_research_type": "quick",
        "guardrail_profile": "strict",
        "default_output_brevity": "short",
        "default_followup_questions": ["Who owns security?", "  "],
    },
}


def test_prompt_without_context_asks_for_clarification():
    prompt = prompts.build_system_prompt(None)
    assert prompt.startswith("You are RebarHQ's company research and meeting intelligence analyst.")
    assert "CONTEXT\nNone provided." in prompt
    assert "Default research depth: deep" in prompt


def test_prompt_includes_saved_context_sections():
    prompt = prompts.build_system_prompt(CONTEXT)
    assert "PROFILE\nCompany: Rebar\nIndustry: Security\nTarget titles: CISO" in prompt
    assert "CUSTOM CRITERIA\n- Uses Okta (critical)\n- Criterion 2" in prompt
    assert "- security_breach :: importance=critical :: keywords=ransomware" in prompt
    assert "DISQUALIFYING CRITERIA\n- Under 50 employees" in prompt
    assert "Guardrail profile: strict" in prompt
    assert '<summary_preference level="short">' in prompt
    assert "Saved follow-up questions:\n1. Who owns security?\n" in prompt


def test_research_mode_comes_from_argument_then_prompt_config():
    assert prompts.resolve_research_mode(CONTEXT) == "quick"
    assert prompts.resolve_research_mode(CONTEXT, "specific") == "specific"
    assert prompts.resolve_research_mode({}, "bogus") == "deep"
    assert "Default research depth: quick" in prompts.build_system_prompt(CONTEXT)


def test_unknown_agent_type_falls_back_to_company_research():
    assert "company research and meeting intelligence analyst" in prompts.build_system_prompt({}, "nope")
    assert "configuration assistant" in prompts.build_system_prompt({}, "settings_agent")


def test_request_tags():
    assert prompts.fast_mode_tag(False).endswith("<summary_brevity>short</summary_brevity>")
    assert "<summary_brevity>" not in prompts.fast_mode_tag(True)
    assert "strict" in prompts.guardrails_tag("strict")
    sections = prompts.output_sections_tag([{"label": "Overview"}, {"id": "risks"}])
    assert "## Overview\n## risks" in sections
    assert prompts.tool_policy_tag(True) != prompts.tool_policy_tag(False)
    assert prompts.clarifiers_locked_tag().startswith("<clarifiers_policy>")

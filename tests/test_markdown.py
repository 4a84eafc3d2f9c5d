"""Tests for research answer markdown clean-up."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from rebar_agentic.services.markdown import normalize_markdown


def test_empty_input_returns_empty_string():
    assert normalize_markdown(None) == ""
    assert normalize_markdown("") == ""


def test_ordered_lists_are_renumbered():
    text = "1. first\n1. second\n1. third"
    assert normalize_markdown(text) == "1. first\n2. second\n3. third"


def test_numbering_restarts_after_interruption_and_keeps_delimiter():
    text = "3) a\n7) b\n\nparagraph\n5. c"
    assert normalize_markdown(text) == "1) a\n2) b\n\nparagraph\n1. c"


def test_nested_indent_restarts_numbering():
    text = "1. top\n   4. nested\n   9. nested again"
    assert normalize_markdown(text) == "1. top\n   1. nested\n   2. nested again"


def test_code_blocks_are_left_alone():
    text = "```\n5. not a list\n5. still code\n```"
    assert normalize_markdown(text) == text


def test_bare_summary_label_becomes_heading():
    out = normalize_markdown("Summary\nAcme is growing.")
    assert "## Executive Summary\nAcme is growing." in out


def test_existing_heading_is_not_duplicated():
    text = "## Executive Summary\nAcme.\nSummary\nmore"
    assert normalize_markdown(text).count("Executive Summary") == 1


def test_next_actions_label_is_repaired():
    out = normalize_markdown("Intro\nNext actions:\n- call the CISO")
    assert "## Recommended Next Actions\n- call the CISO" in out


def test_sources_section_appended_from_inline_urls():
    text = "See https://example.com/a and (https://example.com/b) and https://example.com/a again."
    out = normalize_markdown(text)
    assert out.endswith("## Sources\n- https://example.com/a\n- https://example.com/b")


def test_sources_not_appended_when_present():
    text = "Body https://example.com\n\n## Sources\n- https://example.com"
    assert normalize_markdown(text) == text


def test_sources_capped_at_eight():
    urls = " ".join(f"https://example.com/{i}" for i in range(12))
    out = normalize_markdown(urls)
    assert out.split("## Sources\n", 1)[1].count("- https://") == 8

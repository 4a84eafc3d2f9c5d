"""Tests for the explicit preference store."""

import sys
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import preferences, supabase_client

SAMPLE_PROMPT_CONFIG = {
    "preferred_research_type": "quick",
    "default_output_brevity": "short",
    "default_tone": "warm",
    "always_tldr": True,
}


def _row(key, value, confidence, updated_at="2025-01-01T00:00:00+00:00", source="followup"):
    return {
        "id": f"pref-{key}-{confidence}",
        "user_id": "user",
        "key": key,
        "value": value,
        "source": source,
        "confidence": confidence,
        "updated_at": updated_at,
    }


def test_build_resolved_preferences_applies_prompt_config_defaults():
    resolved = preferences.build_resolved_preferences(SAMPLE_PROMPT_CONFIG, [])
    assert resolved["coverage"]["mode"] == "quick"
    assert resolved["coverage"]["depth"] == "shallow"
    assert resolved["summary"]["brevity"] == "short"
    assert resolved["tone"] == "warm"


def test_build_resolved_preferences_defaults_without_config():
    resolved = preferences.build_resolved_preferences(None, None)
    assert resolved["summary"]["brevity"] == "standard"
    assert resolved["coverage"]["depth"] == "deep"
    assert resolved["tone"] == "balanced"
    assert resolved["focus"] == {}


def test_build_resolved_preferences_nests_focus_preferences():
    rows = [_row("focus.eco", {"on": True, "weight": 0.9}, 0.9)]
    resolved = preferences.build_resolved_preferences(SAMPLE_PROMPT_CONFIG, rows)
    assert resolved["focus"]["eco"] == {"on": True, "weight": 0.9}


def test_build_resolved_preferences_overwrites_existing_keys():
    rows = [_row("summary.brevity", "long", 0.95)]
    resolved = preferences.build_resolved_preferences(SAMPLE_PROMPT_CONFIG, rows)
    assert resolved["summary"]["brevity"] == "long"


def test_higher_confidence_follow_up_wins_over_setup():
    rows = [
        _row("focus.eco", {"on": False}, 0.95, updated_at="2025-01-02T00:00:00+00:00"),
        _row("focus.eco", {"on": True, "weight": 0.6}, 0.7, source="setup"),
    ]
    resolved = preferences.build_resolved_preferences(SAMPLE_PROMPT_CONFIG, rows)
    assert resolved["focus"]["eco"]["on"] is False


def test_equal_confidence_most_recent_wins():
    rows = [
        _row("tone", "direct", 0.8, updated_at="2025-03-01T00:00:00+00:00"),
        _row("tone", "formal", 0.8, updated_at="2025-01-01T00:00:00+00:00"),
    ]
    assert preferences.build_resolved_preferences(None, rows)["tone"] == "direct"


@pytest.mark.parametrize(
    "value, expected",
    [(0.12345, 0.123), (5, 1.0), (-1, 0.0), (None, 0.8), (True, 0.8), (float("nan"), 0.8)],
)
def test_clamp_confidence(value, expected):
    assert preferences.clamp_confidence(value) == expected


def test_upsert_preferences_skips_lower_confidence_and_blank_keys():
    stored = [{"key": "summary.brevity", "confidence": 0.9}]
    with patch.object(supabase_client, "fetch_user_preferences", return_value=stored) as fetch, patch.object(
        supabase_client, "upsert_user_preferences"
    ) as upsert:
        written = preferences.upsert_preferences(
            "user-1",
            [
                {"key": " Summary.Brevity ", "value": "long", "confidence": 0.5},
                {"key": "tone", "value": "warm", "confidence": 2, "source": "bogus"},
                {"key": "   ", "value": "ignored"},
            ],
        )

    fetch.assert_called_once_with("user-1", ["summary.brevity", "tone"])
    assert [r["key"] for r in written] == ["tone"]
    assert written[0]["confidence"] == 1.0
    assert written[0]["source"] == "followup"
    assert written[0]["user_id"] == "user-1"
    upsert.assert_called_once_with(written)


def test_upsert_preferences_noop_when_nothing_beats_stored():
    with patch.object(
        supabase_client, "fetch_user_preferences", return_value=[{"key": "tone", "confidence": 1.0}]
    ), patch.object(supabase_client, "upsert_user_preferences") as upsert:
        assert preferences.upsert_preferences("user-1", [{"key": "tone", "value": "x", "confidence": 0.2}]) == []
    upsert.assert_not_called()


def test_get_resolved_preferences_requires_user():
    with pytest.raises(ValueError):
        preferences.get_resolved_preferences("")

"""Tests for signal detectors and the per-account monitor."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import signal_detectors, signal_monitor, supabase_client

ACCOUNT = {"id": "acct-1", "user_id": "user-1", "company_name": "Acme"}
FUNDING_PREFS = [
    {"signal_type": "funding_round", "importance": "critical", "lookback_days": 60},
    {"signal_type": "Funding Round", "importance": "important", "lookback_days": 30},
]
FUNDING_ANSWER = (
    "Here you go:\n```json\n"
    '[{"signal_type":"Funding Round","description":"Raised $10M Series A","signal_date":"2020-01-01",'
    '"source_url":" https://news.example.com/acme ","confidence":"Very High"},'
    '{"description":"No url"}]\n```'
)


def _funding_config():
    return next(c for c in signal_detectors.DETECTORS if c.detector == "funding_round")


def test_filter_and_dedupe_preferences():
    prefs = FUNDING_PREFS + [{"signal_type": "security_breach"}]
    config = _funding_config()
    filtered = config.filter_preferences(prefs)
    assert len(filtered) == 2
    assert signal_detectors.dedupe_preferences(filtered) == [FUNDING_PREFS[0]]


def test_build_detector_prompt():
    prompt = signal_detectors.build_detector_prompt(ACCOUNT, FUNDING_PREFS, _funding_config())
    assert 'for the company "Acme"' in prompt
    assert "last 60 days" in prompt
    assert "- type: funding_round, importance: critical, lookback_days: 60" in prompt
    assert "Respond **only** with a JSON array" in prompt
    assert prompt.rstrip().endswith("}]")


def test_parse_signals_array_variants():
    assert signal_detectors.parse_signals_array('[{"a": 1}]') == [{"a": 1}]
    assert signal_detectors.parse_signals_array('{"signals": [1, 2]}') == [1, 2]
    assert len(signal_detectors.parse_signals_array(FUNDING_ANSWER)) == 2
    with pytest.raises(ValueError):
        signal_detectors.parse_signals_array("not json")
    with pytest.raises(ValueError):
        signal_detectors.parse_signals_array('{"other": true}')


def test_normalize_signal():
    raw = {
        "signal_type": "Funding Round",
        "description": "Raised $10M",
        "signal_date": "2020-01-01",
        "source_url": " https://x.com/a ",
        "confidence": "Very High",
    }
    signal = signal_detectors.normalize_signal(raw, FUNDING_PREFS[:1], "funding_round")
    assert signal.signal_type == "funding_round"
    assert signal.source_url == "https://x.com/a"
    assert signal.confidence == "high"
    assert signal.score == 29
    assert signal.severity == "critical"
    assert signal.raw_payload is raw


@pytest.mark.parametrize(
    "raw",
    [
        "string",
        {"description": "", "source_url": "https://x.com"},
        {"description": "Something", "source_url": "ftp://x.com"},
        {"description": "Something"},
    ],
)
def test_normalize_signal_rejects_incomplete_rows(raw):
    assert signal_detectors.normalize_signal(raw, FUNDING_PREFS, "funding_round") is None


def test_run_detector_with_injected_runner():
    prompts = []

    def runner(prompt):
        prompts.append(prompt)
        return SimpleNamespace(final_output=FUNDING_ANSWER)

    result = signal_detectors.run_detector(_funding_config(), ACCOUNT, FUNDING_PREFS, runner=runner)
    assert result.status == "success"
    assert len(result.signals) == 1
    assert len(prompts) == 1


def test_run_detector_noop_and_parse_error():
    config = _funding_config()
    noop = signal_detectors.run_detector(config, ACCOUNT, [{"signal_type": "hiring_surge"}], runner=lambda p: "[]")
    assert noop.status == "noop"

    bad = signal_detectors.run_detector(config, ACCOUNT, FUNDING_PREFS, runner=lambda p: "sorry, no JSON")
    assert bad.status == "error"
    assert "Failed to parse" in bad.error


def test_run_detectors_for_account_persists_rows_and_activity():
    with patch.object(supabase_client, "insert_signal_activity") as activity, patch.object(
        supabase_client, "insert_account_signals"
    ) as insert_signals:
        count = signal_monitor.run_detectors_for_account(
            ACCOUNT, FUNDING_PREFS, runner=lambda p: SimpleNamespace(final_output=FUNDING_ANSWER)
        )

    assert count == 1
    assert activity.call_count == len(signal_detectors.DETECTORS)
    statuses = {c[0][0]["detector"]: c[0][0]["status"] for c in activity.call_args_list}
    assert statuses["funding_round"] == "success"
    assert statuses["security_breach"] == "noop"
    row = insert_signals.call_args[0][0][0]
    assert row["account_id"] == "acct-1"
    assert row["importance"] == "critical"
    assert row["detection_source"] == "funding_round"
    assert row["metadata"]["confidence"] == "high"


def test_stored_importance_matches_preference_by_normalized_type():
    prefs = [
        {"signal_type": "investment", "importance": "nice_to_have"},
        {"signal_type": "Funding Round", "importance": "critical"},
    ]
    with patch.object(supabase_client, "insert_signal_activity"), patch.object(
        supabase_client, "insert_account_signals"
    ) as insert_signals:
        signal_monitor.run_detectors_for_account(
            ACCOUNT, prefs, runner=lambda p: SimpleNamespace(final_output=FUNDING_ANSWER)
        )

    row = insert_signals.call_args[0][0][0]
    assert row["signal_type"] == "funding_round"
    assert row["importance"] == "critical"


def test_run_detectors_for_account_records_agent_failure():
    def runner(prompt):
        raise RuntimeError("model unavailable")

    with patch.object(supabase_client, "insert_signal_activity") as activity, patch.object(
        supabase_client, "insert_account_signals"
    ) as insert_signals:
        assert signal_monitor.run_detectors_for_account(ACCOUNT, FUNDING_PREFS, runner=runner) == 0

    insert_signals.assert_not_called()
    failed = [c[0][0] for c in activity.call_args_list if c[0][0]["status"] == "error"]
    assert failed[0]["details"] == {"error": "model unavailable"}


def test_detect_signals_for_user_without_preferences():
    with patch.object(supabase_client, "get_signal_preferences", return_value=[]), patch.object(
        supabase_client, "list_tracked_accounts"
    ) as list_accounts:
        assert signal_monitor.detect_signals_for_user("user-1") == {"accounts_processed": 0, "signals_detected": 0}
    list_accounts.assert_not_called()


def test_detect_signals_for_all_users_sums_results():
    with patch.object(
        supabase_client, "list_users_with_credits", return_value=[{"id": "u1"}, {"id": "u2"}]
    ), patch.object(
        signal_monitor,
        "detect_signals_for_user",
        side_effect=[{"accounts_processed": 2, "signals_detected": 3}, supabase_client.SupabaseError("down")],
    ):
        summary = signal_monitor.detect_signals_for_all_users()
    assert summary["users_processed"] == 2
    assert summary["accounts_processed"] == 2
    assert summary["signals_detected"] == 3
    assert summary["success"] is True

"""Tests for signal scoring weights and severity bands."""

import sys
from datetime import date, datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import signal_scoring

NOW = datetime(2025, 9, 20, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "signal_date, weight",
    [
        ("2025-09-15", 1.5),
        ("2025-09-01T12:00:00Z", 1.2),
        (date(2025, 7, 1), 1.0),
        ("2025-01-01", 0.6),
        ("2025-10-01", 1.5),
        ("garbage", 0.7),
        (None, 0.7),
    ],
)
def test_recency_weight(signal_date, weight):
    assert signal_scoring.recency_weight(signal_date, NOW) == weight


def test_calculate_signal_score():
    assert signal_scoring.calculate_signal_score("critical", "2025-09-18", "high", now=NOW) == 72
    assert signal_scoring.calculate_signal_score("important", "2025-09-10", now=NOW) == 39
    assert signal_scoring.calculate_signal_score("nice_to_have", None, now=NOW) == 18
    assert signal_scoring.calculate_signal_score("critical", "2025-09-18", "high", base_score=100, now=NOW) == 100


@pytest.mark.parametrize(
    "importance, score, severity",
    [
        ("critical", 10, "critical"),
        ("nice_to_have", 85, "critical"),
        ("important", 10, "high"),
        ("nice_to_have", 65, "high"),
        ("nice_to_have", 45, "medium"),
        ("nice_to_have", 10, "low"),
    ],
)
def test_determine_severity(importance, score, severity):
    assert signal_scoring.determine_severity(importance, score) == severity


def test_normalizers():
    assert signal_scoring.normalize_signal_type("Funding - Round") == "funding_round"
    assert signal_scoring.normalize_signal_type("Leadership  Change") == "leadership_change"
    assert signal_scoring.normalize_confidence("Very High") == "high"
    assert signal_scoring.normalize_confidence("LOW") == "low"
    assert signal_scoring.normalize_confidence(None) == "medium"
    assert signal_scoring.normalize_confidence("unsure") == "medium"

"""Scoring helpers for detected account signals."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Optional, Union

IMPORTANCE_WEIGHTS = {"critical": 1.6, "important": 1.3}
CONFIDENCE_WEIGHTS = {"high": 1.2, "low": 0.8}


def normalize_signal_type(value: str) -> str:
    value = re.sub(r"\s+", "_", value.lower())
    value = re.sub(r"-+", "_", value)
    return re.sub(r"__+", "_", value).strip()


def _parse_date(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def recency_weight(signal_date: Union[str, date, datetime, None], now: Optional[datetime] = None) -> float:
    parsed = _parse_date(signal_date)
    if parsed is None:
        return 0.7
    now = now or datetime.now(timezone.utc)
    diff_days = max(0, int((now - parsed).total_seconds() // 86400))
    if diff_days <= 7:
        return 1.5
    if diff_days <= 30:
        return 1.2
    if diff_days <= 90:
        return 1.0
    return 0.6


def calculate_signal_score(
    importance: str,
    signal_date: Union[str, date, datetime, None],
    confidence: str = "medium",
    base_score: float = 25,
    now: Optional[datetime] = None,
) -> int:
    raw = (
        base_score
        * IMPORTANCE_WEIGHTS.get(importance, 1.0)
        * CONFIDENCE_WEIGHTS.get(confidence, 1.0)
        * recency_weight(signal_date, now)
    )
    # JS Math.round semantics: halves round up
    return int(min(raw, 100) + 0.5)


def determine_severity(importance: str, score: float) -> str:
    if importance == "critical" or score >= 80:
        return "critical"
    if importance == "important" or score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def normalize_confidence(value) -> str:
    normalized = str(value if value is not None else "medium").lower()
    if normalized in ("low", "medium", "high"):
        return normalized
    if "high" in normalized:
        return "high"
    if "low" in normalized:
        return "low"
    return "medium"

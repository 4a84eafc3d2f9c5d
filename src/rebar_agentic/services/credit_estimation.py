"""Rough credit cost estimates shown before a request is sent.

One credit covers 1,000 model tokens; estimates are keyword heuristics
over the user's query, not a model call.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

DEFENSE_PRIMES_RE = re.compile(r"\b(boeing|lockheed|raytheon|northrop|general dynamics)\b")
TOKENS_PER_CREDIT = 1000


@dataclass(frozen=True)
class CreditEstimate:
    min: int
    max: int
    description: str


def _has_any(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def estimate_credits(query: Optional[str]) -> CreditEstimate:
    q = (query or "").lower()

    if _has_any(q, "track", "monitor", "add to"):
        count = q.count(",") + 1
        label = f"Track {count} companies" if count > 1 else "Track company"
        return CreditEstimate(2, 5, label)

    if _has_any(q, "which accounts", "my accounts", "show accounts"):
        return CreditEstimate(10, 20, "Account portfolio query")

    if _has_any(q, "refresh", "update") and "account" in q:
        return CreditEstimate(100, 300, "Batch account research")

    if "research" in q or DEFENSE_PRIMES_RE.search(q):
        if _has_any(q, "deep", "comprehensive", "detailed"):
            return CreditEstimate(50, 80, "Deep intelligence research")
        if _has_any(q, "quick", "brief", "summary"):
            return CreditEstimate(20, 40, "Quick brief research")
        return CreditEstimate(40, 60, "Company research")

    if _has_any(q, "find", "discover", "list") and _has_any(q, "prospect", "companies", "leads"):
        match = re.search(r"\d+", q)
        count = int(match.group(0)) if match else 10
        return CreditEstimate(
            min(count * 15, 500),
            min(count * 25, 800),
            f"{count} companies with enrichment",
        )

    if _has_any(q, "competitor", "compare", "versus"):
        count = q.count(",") + 1
        return CreditEstimate(count * 30, count * 50, f"{count} competitor analysis")

    if _has_any(q, "trend", "market", "industry"):
        return CreditEstimate(60, 100, "Market intelligence report")

    if "update" in q and _has_any(q, "profile", "icp"):
        return CreditEstimate(5, 15, "Profile update conversation")

    if len(q) < 20 and _has_any(q, "yes", "no", "deep", "quick"):
        return CreditEstimate(1, 3, "Simple response")

    return CreditEstimate(20, 40, "General query")


def format_credit_range(estimate: CreditEstimate) -> str:
    if estimate.min == estimate.max:
        return f"~{estimate.min} credits"
    return f"{estimate.min}-{estimate.max} credits"


def estimate_tokens(text: Optional[str]) -> int:
    """Character-based token estimate used when the model reports no usage."""

    return math.ceil(len(text or "") / 4)


def credits_for_tokens(tokens: int) -> int:
    if not tokens or tokens <= 0:
        return 0
    return math.ceil(tokens / TOKENS_PER_CREDIT)

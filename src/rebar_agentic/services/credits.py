"""Credit balance checks and usage accounting for model calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from rebar_agentic.config.settings import get_settings
from rebar_agentic.services import supabase_client
from rebar_agentic.services.credit_estimation import credits_for_tokens

logger = logging.getLogger(__name__)

RESTRICTED_MESSAGE = "Your account access has been restricted. Please contact support"
EXHAUSTED_MESSAGE = (
    "You have used all your free credits. Please contact support to request additional credits."
)


@dataclass
class CreditCheck:
    has_credits: bool
    remaining: int
    needs_approval: bool = False
    message: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "needsApproval": self.needs_approval, "remaining": self.remaining}


def check_user_credits(user_id: str, *, email: Optional[str] = None) -> CreditCheck:
    """Load (or create) the user's credit row and decide whether a request may run.

    New users start approved with the configured initial credits. Pending
    users may proceed; rejected users are blocked.
    """

    initial = get_settings().initial_credits
    row = supabase_client.get_user(user_id)
    if not row:
        logger.info("Creating credit row for new user %s", user_id)
        row = supabase_client.create_user(user_id, credits=initial, email=email)

    status = row.get("approval_status")
    if status == "pending":
        return CreditCheck(True, int(row.get("credits_remaining") or initial))
    if status == "rejected":
        return CreditCheck(False, 0, needs_approval=True, message=RESTRICTED_MESSAGE)

    remaining = int(row.get("credits_remaining") or 0)
    if remaining <= 0:
        return CreditCheck(False, 0, message=EXHAUSTED_MESSAGE)
    return CreditCheck(True, remaining)


def log_usage(
    user_id: str,
    action_type: str,
    tokens_used: int,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    tool_name: str = "chat",
) -> None:
    """Best-effort usage row; failures are logged and swallowed."""

    try:
        supabase_client.insert_usage_log(
            {
                "user_id": user_id,
                "action_type": action_type,
                "tokens_used": tokens_used,
                "tool_name": tool_name,
                "metadata": metadata or {},
            }
        )
    except supabase_client.SupabaseError as exc:
        logger.warning("Failed to log usage for user %s: %s", user_id, exc)


def deduct_credits(user_id: str, tokens_used: int) -> int:
    """Charge ``ceil(tokens / 1000)`` credits; returns the amount charged (0 on failure)."""

    credits = credits_for_tokens(tokens_used)
    if credits <= 0:
        return 0
    try:
        supabase_client.deduct_user_credits(user_id, credits)
    except supabase_client.SupabaseError as exc:
        logger.error("Failed to deduct %s credits for user %s: %s", credits, user_id, exc)
        return 0
    return credits

"""Run signal detectors over tracked accounts and persist the results."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from rebar_agentic.services import supabase_client
from rebar_agentic.services.signal_detectors import DETECTORS, DetectorResult, normalize_signal_type, run_detector

logger = logging.getLogger(__name__)


def run_detectors_for_account(
    account: Dict[str, Any],
    preferences: List[Dict[str, Any]],
    runner: Optional[Callable[[str], Any]] = None,
) -> int:
    """Run every detector for ``account``; returns the number of signals stored."""

    signal_rows: List[Dict[str, Any]] = []
    activity: List[Dict[str, Any]] = []

    for config in DETECTORS:
        subset = config.filter_preferences(preferences)
        if not subset:
            activity.append(
                {"detector": config.detector, "status": "noop", "details": {"reason": "no_preferences"}, "count": 0}
            )
            continue
        try:
            result = run_detector(config, account, subset, runner=runner)
        except Exception as exc:
            logger.error("Detector %s failed for account %s: %s", config.detector, account.get("id"), exc)
            result = DetectorResult(detector=config.detector, status="error", error=str(exc))

        activity.append(
            {
                "detector": config.detector,
                "status": result.status,
                "details": {"error": result.error} if result.error else {},
                "count": len(result.signals),
            }
        )
        if result.status != "success":
            continue
        detected_at = datetime.now(timezone.utc).isoformat()
        for signal in result.signals:
            pref = next(
                (p for p in subset if normalize_signal_type(str(p.get("signal_type") or "")) == signal.signal_type),
                subset[0],
            )
            signal_rows.append(
                {
                    "account_id": account["id"],
                    "user_id": account["user_id"],
                    "signal_type": signal.signal_type,
                    "severity": signal.severity,
                    "description": signal.description,
                    "signal_date": signal.signal_date,
                    "source_url": signal.source_url,
                    "importance": pref.get("importance"),
                    "score": signal.score,
                    "detection_source": config.detector,
                    "raw_payload": signal.raw_payload or {},
                    "metadata": {
                        "confidence": signal.confidence,
                        "detected_at": detected_at,
                        "detector": config.detector,
                    },
                }
            )

    for log in activity:
        try:
            supabase_client.insert_signal_activity(
                {
                    "user_id": account["user_id"],
                    "account_id": account["id"],
                    "signal_type": log["detector"],
                    "detector": log["detector"],
                    "status": log["status"],
                    "details": log["details"],
                    "detected_signals": log["count"],
                }
            )
        except supabase_client.SupabaseError as exc:
            logger.error("Failed to insert signal_activity_log row: %s", exc)

    if signal_rows:
        try:
            supabase_client.insert_account_signals(signal_rows)
        except supabase_client.SupabaseError as exc:
            logger.error("Failed to insert account_signals rows for %s: %s", account.get("id"), exc)
            return 0
    logger.info("Account %s: %d signals detected", account.get("company_name"), len(signal_rows))
    return len(signal_rows)


def detect_signals_for_user(
    user_id: str,
    *,
    account_id: Optional[str] = None,
    runner: Optional[Callable[[str], Any]] = None,
) -> Dict[str, int]:
    preferences = supabase_client.get_signal_preferences(user_id)
    if not preferences:
        return {"accounts_processed": 0, "signals_detected": 0}
    accounts = supabase_client.list_tracked_accounts(user_id, monitoring_only=True, account_id=account_id)

    processed = detected = 0
    for account in accounts:
        try:
            detected += run_detectors_for_account(account, preferences, runner=runner)
            processed += 1
        except supabase_client.SupabaseError as exc:
            logger.error("Detector error for account %s: %s", account.get("id"), exc)
    return {"accounts_processed": processed, "signals_detected": detected}


def detect_signals_for_all_users(runner: Optional[Callable[[str], Any]] = None) -> Dict[str, Any]:
    users = supabase_client.list_users_with_credits()
    accounts_total = signals_total = 0
    for user in users:
        try:
            summary = detect_signals_for_user(user["id"], runner=runner)
        except supabase_client.SupabaseError as exc:
            logger.error("Failed to load signal inputs for user %s: %s", user.get("id"), exc)
            continue
        accounts_total += summary["accounts_processed"]
        signals_total += summary["signals_detected"]
    return {
        "success": True,
        "users_processed": len(users),
        "accounts_processed": accounts_total,
        "signals_detected": signals_total,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

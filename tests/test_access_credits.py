"""Tests for the email allowlist gate and credit accounting."""

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
import requests
from rebar_agentic.config.settings import Settings
from rebar_agentic.services import access, credits, supabase_client
from rebar_agentic.services.errors import AccessDeniedError


def test_unrestricted_when_no_lists():
    assert access.is_email_allowed("anyone@example.com", [], [])
    assert not access.is_email_allowed(None, [], [])


def test_allowlist_and_domains():
    allow = ["Boss@Example.com"]
    domains = ["rebarhq.ai"]
    assert access.is_email_allowed("boss@example.com", allow, domains)
    assert access.is_email_allowed("Someone@RebarHQ.ai", allow, domains)
    assert not access.is_email_allowed("intruder@example.com", allow, domains)


def test_assert_email_allowed_messages():
    with pytest.raises(AccessDeniedError) as restricted:
        access.assert_email_allowed("intruder@example.com", ["boss@example.com"], [])
    assert "allowlist" in restricted.value.message
    assert restricted.value.status_code == 403

    with pytest.raises(AccessDeniedError) as missing:
        access.assert_email_allowed(None, [], [])
    assert missing.value.message == "Unauthorized"


def test_settings_split_allowlists():
    settings = Settings(access_allowlist="a@x.com; B@y.com ,c@z.com", access_allowed_domains="@rebar.ai other.io")
    assert settings.allowlist_emails == ["a@x.com", "b@y.com", "c@z.com"]
    assert settings.allowlist_domains == ["rebar.ai", "other.io"]


def test_streaming_deadline_is_capped():
    assert Settings(streaming_deadline_ms=400_000).streaming_deadline_seconds == 295.0
    assert Settings(streaming_deadline_ms=10_000).streaming_deadline_seconds == 10.0


@pytest.fixture
def fixed_settings():
    with patch.object(credits, "get_settings", return_value=SimpleNamespace(initial_credits=1000)):
        yield


def test_new_user_gets_initial_credits(fixed_settings):
    created = {"id": "user-1", "credits_remaining": 1000, "approval_status": "approved"}
    with patch.object(supabase_client, "get_user", return_value=None), patch.object(
        supabase_client, "create_user", return_value=created
    ) as create:
        check = credits.check_user_credits("user-1", email="a@b.com")
    create.assert_called_once_with("user-1", credits=1000, email="a@b.com")
    assert check.has_credits
    assert check.remaining == 1000


@pytest.mark.parametrize(
    "row, has_credits, needs_approval, message",
    [
        ({"approval_status": "pending", "credits_remaining": None}, True, False, None),
        ({"approval_status": "rejected", "credits_remaining": 50}, False, True, credits.RESTRICTED_MESSAGE),
        ({"approval_status": "approved", "credits_remaining": 0}, False, False, credits.EXHAUSTED_MESSAGE),
        ({"approval_status": "approved", "credits_remaining": 12}, True, False, None),
    ],
)
def test_credit_states(fixed_settings, row, has_credits, needs_approval, message):
    with patch.object(supabase_client, "get_user", return_value=row):
        check = credits.check_user_credits("user-1")
    assert check.has_credits is has_credits
    assert check.needs_approval is needs_approval
    assert check.message == message


def test_pending_user_falls_back_to_initial_balance(fixed_settings):
    with patch.object(supabase_client, "get_user", return_value={"approval_status": "pending"}):
        assert credits.check_user_credits("user-1").remaining == 1000


def test_credit_check_payload():
    check = credits.CreditCheck(False, 0, needs_approval=True, message="nope")
    assert check.to_payload() == {"error": "nope", "needsApproval": True, "remaining": 0}


def test_deduct_credits_rounds_up():
    with patch.object(supabase_client, "deduct_user_credits") as deduct:
        assert credits.deduct_credits("user-1", 1001) == 2
    deduct.assert_called_once_with("user-1", 2)


def test_deduct_credits_skips_zero_and_swallows_errors():
    with patch.object(supabase_client, "deduct_user_credits") as deduct:
        assert credits.deduct_credits("user-1", 0) == 0
    deduct.assert_not_called()

    with patch.object(supabase_client, "deduct_user_credits", side_effect=supabase_client.SupabaseError("x")):
        assert credits.deduct_credits("user-1", 10) == 0


def test_log_usage_is_best_effort():
    with patch.object(supabase_client, "insert_usage_log", side_effect=supabase_client.SupabaseError("x")):
        credits.log_usage("user-1", "chat", 100)
    with patch.object(supabase_client, "insert_usage_log") as insert:
        credits.log_usage("user-1", "chat", 100, {"model": "gpt"})
    assert insert.call_args[0][0]["metadata"] == {"model": "gpt"}
    assert insert.call_args[0][0]["tool_name"] == "chat"


@pytest.fixture
def dropped_connection(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    with patch.object(
        supabase_client.requests, "request", side_effect=requests.ConnectionError("connection reset")
    ) as request:
        yield request


def test_network_errors_surface_as_supabase_errors(dropped_connection):
    with pytest.raises(supabase_client.SupabaseError) as err:
        supabase_client.insert_usage_log({"user_id": "user-1"})
    assert "network error: connection reset" in str(err.value)
    assert isinstance(err.value.__cause__, requests.ConnectionError)
    assert dropped_connection.call_args[0][0] == "POST"


def test_usage_bookkeeping_survives_dropped_connection(dropped_connection):
    credits.log_usage("user-1", "chat_completion", 1500)
    assert credits.deduct_credits("user-1", 1500) == 0
    assert dropped_connection.call_count == 2

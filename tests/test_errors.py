"""Tests for error types and user-facing error messages."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import requests
from rebar_agentic.services import errors


def _response(status, body, reason="Bad Request"):
    r = requests.Response()
    r.status_code = status
    r._content = body
    r.reason = reason
    r.encoding = "utf-8"
    return r


def test_api_error_payload_includes_extra_fields():
    err = errors.ApiError("Account already tracked", 400, success=False, account_id="a1")
    assert err.status_code == 400
    assert err.to_payload() == {"error": "Account already tracked", "success": False, "account_id": "a1"}


def test_access_denied_is_403():
    err = errors.AccessDeniedError()
    assert isinstance(err, errors.ApiError)
    assert err.status_code == 403
    assert err.message == "Unauthorized"


def test_normalize_api_error_reads_json_body():
    err = errors.normalize_api_error(
        _response(422, b'{"message": "bad input", "code": "E1", "retryable": true, "hint": "x"}')
    )
    assert err.message == "bad input"
    assert err.code == "E1"
    assert err.retryable is True
    assert err.status == 422
    assert err.extra == {"hint": "x"}


def test_normalize_api_error_falls_back_to_text_then_reason():
    assert errors.normalize_api_error(_response(502, b"upstream down")).message == "upstream down"
    assert errors.normalize_api_error(_response(500, b"", reason="Server Error")).message == "Server Error"


def test_to_user_toast_truncates_and_defaults():
    long = errors.NormalizedApiError(message="x" * 500)
    assert len(errors.to_user_toast(long)["description"]) == 240
    assert errors.to_user_toast(None) == {"title": "Request failed", "description": "Please try again."}


def test_classification_helpers():
    assert errors.is_rate_limit_error(Exception("HTTP 429"))
    assert errors.is_rate_limit_error("Rate limit exceeded")
    assert errors.is_network_error(requests.ConnectionError("refused"))
    assert errors.is_network_error("ECONNREFUSED 127.0.0.1")
    assert errors.is_auth_error(Exception("Authentication failed"))
    assert errors.is_credit_exhausted_error("Insufficient balance")
    assert not errors.is_auth_error("all good")
    assert errors.get_error_message(42) == "Unknown error"


def test_user_friendly_error_precedence():
    assert errors.get_user_friendly_error("402 credit limit; 429").startswith("You have run out of credits")
    assert errors.get_user_friendly_error("429 Too Many Requests").startswith("Too many requests")
    assert errors.get_user_friendly_error("Request timeout").startswith("Request timed out")
    assert errors.get_user_friendly_error(requests.ConnectionError("boom")).startswith("Network error")
    assert errors.get_user_friendly_error("401 Unauthorized") == "Authentication error. Please sign in again."
    assert errors.get_user_friendly_error("500 Internal").startswith("Server error")
    assert errors.get_user_friendly_error("weird") == "Error: weird"

"""Tests for the bulk completion email."""

import smtplib
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import notifications


@pytest.fixture
def smtp_env(monkeypatch):
    for key, value in {
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": "2525",
        "SMTP_USER": "mailer@example.com",
        "SMTP_PASSWORD": "secret",
        "SITE_URL": "https://app.example.com/",
    }.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("EMAIL_FROM", raising=False)
    monkeypatch.delenv("NOTIFICATION_EMAIL", raising=False)


def test_skips_without_configuration(monkeypatch):
    monkeypatch.delenv("SMTP_HOST", raising=False)
    with patch.object(notifications.smtplib, "SMTP") as smtp:
        assert not notifications.send_bulk_complete_notification(
            job_id="job-1", companies=["Acme"], research_type="quick", to_email="rep@example.com"
        )
    smtp.assert_not_called()


def test_sends_summary_email(smtp_env):
    server = MagicMock()
    with patch.object(notifications.smtplib, "SMTP") as smtp:
        smtp.return_value.__enter__.return_value = server
        assert notifications.send_bulk_complete_notification(
            job_id="job-1", companies=["Acme", "Globex"], research_type="deep", to_email="rep@example.com"
        )

    smtp.assert_called_once_with("smtp.example.com", 2525, timeout=10)
    server.login.assert_called_once_with("mailer@example.com", "secret")
    message = server.send_message.call_args[0][0]
    assert message["To"] == "rep@example.com"
    assert message["Subject"] == "Bulk research complete (2 companies)"
    body = message.get_content()
    assert "Your deep research for 2 companies is ready." in body
    assert "- Globex" in body
    assert "View results: https://app.example.com/research" in body


def test_smtp_failure_returns_false(smtp_env):
    with patch.object(notifications.smtplib, "SMTP", side_effect=smtplib.SMTPException("refused")):
        assert not notifications.send_bulk_complete_notification(
            job_id="job-1", companies=["Acme"], research_type="quick", to_email="rep@example.com"
        )

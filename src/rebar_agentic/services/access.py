"""Email allowlist gate applied after authentication."""

from __future__ import annotations

from typing import Optional, Sequence

from rebar_agentic.config.settings import get_settings
from rebar_agentic.services.errors import AccessDeniedError


def is_email_allowed(
    email: Optional[str],
    allowlist: Optional[Sequence[str]] = None,
    domains: Optional[Sequence[str]] = None,
) -> bool:
    """True when no restriction is configured or ``email`` matches an entry or domain."""

    if not email:
        return False
    if allowlist is None or domains is None:
        settings = get_settings()
        allowlist = settings.allowlist_emails if allowlist is None else allowlist
        domains = settings.allowlist_domains if domains is None else domains
    allowlist = [a.lower() for a in allowlist]
    domains = [d.lower() for d in domains]
    if not allowlist and not domains:
        return True
    lower = email.lower()
    if lower in allowlist:
        return True
    domain = lower.split("@", 1)[1] if "@" in lower else ""
    return domain in domains


def assert_email_allowed(
    email: Optional[str],
    allowlist: Optional[Sequence[str]] = None,
    domains: Optional[Sequence[str]] = None,
) -> None:
    if is_email_allowed(email, allowlist, domains):
        return
    if allowlist is None or domains is None:
        settings = get_settings()
        configured = bool(settings.allowlist_emails or settings.allowlist_domains)
    else:
        configured = bool(allowlist or domains)
    if configured:
        raise AccessDeniedError("Access restricted. Your account is not on the allowlist.")
    raise AccessDeniedError("Unauthorized")

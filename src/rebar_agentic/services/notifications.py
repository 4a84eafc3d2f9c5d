import logging
import os
import smtplib
from email.message import EmailMessage
from typing import List, Optional


logger = logging.getLogger(__name__)


def send_bulk_complete_notification(
    *,
    job_id: str,
    companies: List[str],
    research_type: str,
    to_email: Optional[str] = None,
) -> bool:
    """Best-effort email when a bulk research job finishes.

    Uses SMTP_* and EMAIL_FROM / NOTIFICATION_EMAIL env vars when present.
    Returns False (after logging) instead of raising on any failure.
    """

    host = os.getenv("SMTP_HOST")
    port_raw = os.getenv("SMTP_PORT", "587")
    user = os.getenv("SMTP_USER")
    password = os.getenv("SMTP_PASSWORD")
    from_email = os.getenv("EMAIL_FROM") or user
    recipient = to_email or os.getenv("NOTIFICATION_EMAIL")

    if not host or not user or not password or not from_email or not recipient:
        logger.info("Email not sent for bulk job %s; SMTP/recipient configuration incomplete", job_id)
        return False

    try:
        port = int(port_raw)
    except ValueError:
        port = 587

    site = (os.getenv("SITE_URL") or "").rstrip("/")
    lines = [
        f"Your {research_type} research for {len(companies)} companies is ready.",
        "",
        *[f"- {name}" for name in companies[:50]],
    ]
    if len(companies) > 50:
        lines.append(f"...and {len(companies) - 50} more")
    if site:
        lines.extend(["", f"View results: {site}/research"])

    msg = EmailMessage()
    msg["Subject"] = f"Bulk research complete ({len(companies)} companies)"
    msg["From"] = from_email
    msg["To"] = recipient
    msg.set_content("\n".join(lines))

    try:
        with smtplib.SMTP(host, port, timeout=10) as smtp:
            try:
                smtp.starttls()
            except smtplib.SMTPNotSupportedError:
                pass
            smtp.login(user, password)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Failed to send bulk completion email for job %s: %s", job_id, exc)
        return False
    logger.info("Sent bulk completion email for job %s to %s", job_id, recipient)
    return True

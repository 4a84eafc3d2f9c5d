"""Error types and user-facing error helpers.

Services raise :class:`ApiError` for request-level failures; the API
layer turns them into ``{"error": ...}`` JSON with the chosen status.
The classification helpers map arbitrary exceptions onto the short
messages shown to end users.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests


class ApiError(Exception):
    """Request-level failure with an HTTP status code."""

    def __init__(self, message: str, status_code: int = 400, **extra: Any):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        payload.update(self.extra)
        return payload


class AccessDeniedError(ApiError):
    def __init__(self, message: str = "Unauthorized", **extra: Any):
        super().__init__(message, status_code=403, **extra)


class ChatStreamError(Exception):
    """Raised when a chat SSE stream carries an ``error`` event."""


@dataclass
class NormalizedApiError:
    message: str
    code: Optional[str] = None
    details: Any = None
    retryable: bool = False
    status: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def normalize_api_error(response: requests.Response) -> NormalizedApiError:
    """Turn a failed HTTP response into a :class:`NormalizedApiError`.

    Prefers ``message`` then ``error`` from a JSON body; falls back to
    the reason phrase.
    """

    payload: Dict[str, Any] = {}
    try:
        body = response.json()
        if isinstance(body, dict):
            payload = body
    except ValueError:
        text = (response.text or "").strip()
        if text:
            payload = {"message": text}

    message = (
        payload.get("message")
        or payload.get("error")
        or response.reason
        or "Request failed"
    )
    return NormalizedApiError(
        message=str(message),
        code=payload.get("code"),
        details=payload.get("details"),
        retryable=bool(payload.get("retryable", False)),
        status=response.status_code,
        extra={k: v for k, v in payload.items() if k not in {"message", "error", "code", "details", "retryable"}},
    )


def to_user_toast(err: Optional[NormalizedApiError]) -> Dict[str, str]:
    description = (err.message if err else "") or "Please try again."
    return {"title": "Request failed", "description": description[:240]}


def get_error_message(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return "Unknown error"


def is_rate_limit_error(error: Any) -> bool:
    msg = get_error_message(error)
    return "429" in msg or "rate limit" in msg.lower()


def is_network_error(error: Any) -> bool:
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    msg = get_error_message(error).lower()
    return any(marker in msg for marker in ("network", "fetch", "econnrefused", "timeout"))


def is_auth_error(error: Any) -> bool:
    msg = get_error_message(error)
    return "401" in msg or "403" in msg or "authentication" in msg.lower()


def is_credit_exhausted_error(error: Any) -> bool:
    msg = get_error_message(error)
    return "402" in msg or "credit" in msg.lower() or "insufficient" in msg.lower()


def get_user_friendly_error(error: Any) -> str:
    """Short message suitable for a toast or chat bubble."""

    msg = get_error_message(error)
    lowered = msg.lower()
    if is_credit_exhausted_error(error):
        return "You have run out of credits. Please contact support to add more."
    if is_rate_limit_error(error):
        return "Too many requests. Please wait a moment and try again."
    if is_network_error(error):
        if "timeout" in lowered:
            return "Request timed out. The server took too long to respond. Please try again."
        return "Network error. Please check your connection and try again."
    if is_auth_error(error):
        return "Authentication error. Please sign in again."
    if "500" in msg:
        return "Server error. Our team has been notified. Please try again later."
    return f"Error: {msg}"

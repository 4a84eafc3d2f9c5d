"""Request authentication shared by the API routers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import Header

from rebar_agentic.services import supabase_client
from rebar_agentic.services.errors import ApiError

logger = logging.getLogger(__name__)

IMPERSONATION_FIELDS = ("impersonate_user_id", "user_id", "bulk_user_id")


def bearer_token(authorization: Optional[str]) -> str:
    token = (authorization or "").replace("Bearer ", "").strip()
    if not token:
        raise ApiError("Authorization header required", 401)
    return token


def resolve_user(authorization: Optional[str], body: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Resolve the calling user from a bearer token.

    A request signed with the service-role key acts on behalf of the user
    named in the body (``impersonate_user_id``, ``user_id`` or
    ``bulk_user_id``); the bulk runner relies on this.
    """

    token = bearer_token(authorization)
    service_key = supabase_client.service_role_key()
    if service_key and token == service_key:
        target = next((body.get(f) for f in IMPERSONATION_FIELDS if body and body.get(f)), None)
        if not target:
            raise ApiError("impersonate_user_id is required for service requests", 400)
        user = supabase_client.get_auth_user_by_id(str(target))
        if not user:
            raise ApiError("Impersonated user not found", 401)
        logger.info("Service request impersonating user %s", user["id"])
        return user

    user = supabase_client.get_auth_user(token)
    if not user:
        raise ApiError("Authentication failed", 401)
    return user


def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    return resolve_user(authorization)


def require_service_key(authorization: Optional[str], message: str = "Unauthorized") -> None:
    token = (authorization or "").replace("Bearer ", "").strip()
    service_key = supabase_client.service_role_key()
    if not token or not service_key or token != service_key:
        raise ApiError(message, 401)

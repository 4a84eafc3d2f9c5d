"""Tracked account management."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from rebar_agentic.api.deps import get_current_user
from rebar_agentic.services import accounts
from rebar_agentic.services.errors import ApiError

router = APIRouter()


class ManageAccountsBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str = ""
    account: Optional[Dict[str, Any]] = None
    accounts: List[Dict[str, Any]] = Field(default_factory=list)
    account_id: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)
    filter: Optional[str] = None


@router.post("/accounts/manage", summary="Add, list, update or delete tracked accounts")
def manage_accounts(body: ManageAccountsBody, user: Dict[str, Any] = Depends(get_current_user)):
    user_id = user["id"]
    if body.action == "add":
        account = accounts.add_account(user_id, body.account or {})
        return {"success": True, "account": account, "message": f"Now tracking {account.get('company_name')}"}
    if body.action == "bulk_add":
        if not body.accounts:
            raise ApiError("accounts array is required", 400)
        result = accounts.bulk_add_accounts(user_id, body.accounts)
        return dict(result, success=True)
    if body.action == "list":
        return dict(accounts.list_accounts(user_id, body.filter), success=True)
    if body.action == "update":
        return {"success": True, "account": accounts.update_account(user_id, body.account_id or "", body.updates)}
    if body.action == "delete":
        accounts.delete_account(user_id, body.account_id or "")
        return {"success": True}
    raise ApiError("Invalid action", 400)

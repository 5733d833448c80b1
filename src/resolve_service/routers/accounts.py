"""Operator credit account endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from resolve_service.core.state import get_app_state
from resolve_service.routers.validation import parse_json_body, require_initialized, require_int
from resolve_service.schemas import AccountResponse

router = APIRouter()


@router.get("/accounts/{account_id}")
async def get_account(account_id: str) -> dict[str, Any]:
    ledger = require_initialized(get_app_state().ledger, "CreditLedger")
    balance = ledger.get_balance(account_id)
    return AccountResponse(account_id=account_id, balance=balance).model_dump()


@router.get("/accounts/{account_id}/entries")
async def list_entries(account_id: str) -> dict[str, Any]:
    """Ledger entries for an account, oldest first."""
    ledger = require_initialized(get_app_state().ledger, "CreditLedger")
    return {"account_id": account_id, "entries": ledger.list_entries(account_id)}


@router.post("/accounts/{account_id}/credits")
async def add_credits(account_id: str, request: Request) -> dict[str, Any]:
    """Top up an operator account."""
    data = parse_json_body(await request.body())
    amount = require_int(data, "amount")

    ledger = require_initialized(get_app_state().ledger, "CreditLedger")
    ledger.add_credits(account_id, amount)
    return AccountResponse(account_id=account_id, balance=ledger.get_balance(account_id)).model_dump()

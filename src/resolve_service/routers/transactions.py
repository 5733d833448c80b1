"""Transaction and escrow endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from resolve_service.core.state import get_app_state
from resolve_service.routers.validation import (
    optional_int,
    optional_object,
    optional_string,
    parse_json_body,
    query_int,
    require_agent_id,
    require_bool,
    require_initialized,
    require_int,
    require_string,
)
from resolve_service.services.transaction_manager import TransactionManager

router = APIRouter()


def _manager() -> TransactionManager:
    return require_initialized(get_app_state().transaction_manager, "TransactionManager")


# ---------------------------------------------------------------------------
# Collection routes (MUST be before /transactions/{transaction_id})
# ---------------------------------------------------------------------------


@router.post("/transactions", status_code=201)
async def propose_transaction(request: Request) -> JSONResponse:
    """Propose a transaction to another agent."""
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    receiver_id = require_string(data, "receiver_id")
    title = require_string(data, "title")
    terms = optional_object(data, "terms")
    if terms is None:
        terms = {}

    result = await _manager().propose_transaction(
        agent_id,
        receiver_id,
        title,
        terms,
        stated_value_cents=optional_int(data, "stated_value_cents"),
        currency=optional_string(data, "currency") or "USD",
        description=optional_string(data, "description"),
        metadata=optional_object(data, "metadata"),
        expiry_days=optional_int(data, "expiry_days"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/transactions")
async def list_transactions(request: Request) -> dict[str, Any]:
    """List the acting agent's transactions."""
    agent_id = require_agent_id(request)
    return await _manager().list_transactions(
        agent_id,
        status=request.query_params.get("status"),
        role=request.query_params.get("role", "both"),
        limit=query_int(request, "limit", 20),
        offset=query_int(request, "offset", 0),
    )


# ---------------------------------------------------------------------------
# Single transaction
# ---------------------------------------------------------------------------


@router.get("/transactions/{transaction_id}")
async def get_transaction(transaction_id: str, request: Request) -> dict[str, Any]:
    return await _manager().get_transaction(transaction_id, require_agent_id(request))


@router.post("/transactions/{transaction_id}/respond")
async def respond_to_transaction(transaction_id: str, request: Request) -> dict[str, Any]:
    """Accept or reject a proposal (receiver only)."""
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    accept = require_bool(data, "accept")
    return await _manager().respond_to_transaction(transaction_id, agent_id, accept=accept)


@router.post("/transactions/{transaction_id}/complete")
async def complete_transaction(transaction_id: str, request: Request) -> dict[str, Any]:
    return await _manager().complete_transaction(transaction_id, require_agent_id(request))


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@router.post("/transactions/{transaction_id}/escrow/fund")
async def fund_escrow(transaction_id: str, request: Request) -> dict[str, Any]:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    amount_cents = require_int(data, "amount_cents")
    currency = optional_string(data, "currency") or "USD"
    return await _manager().fund_escrow(transaction_id, agent_id, amount_cents, currency)


@router.post("/transactions/{transaction_id}/escrow/release")
async def release_escrow(transaction_id: str, request: Request) -> dict[str, Any]:
    """Release funded escrow to the other party."""
    return await _manager().release_escrow(transaction_id, require_agent_id(request))


@router.get("/transactions/{transaction_id}/escrow")
async def get_escrow_status(transaction_id: str, request: Request) -> dict[str, Any]:
    return await _manager().get_escrow_status(transaction_id, require_agent_id(request))

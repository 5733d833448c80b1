"""Agent registration and lookup endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from resolve_service.core.state import get_app_state
from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.routers.validation import (
    optional_string,
    parse_json_body,
    query_int,
    require_initialized,
    require_string,
)
from resolve_service.schemas import AgentResponse

router = APIRouter()
logger = get_logger(__name__)


def _public(agent: dict[str, Any]) -> dict[str, Any]:
    return AgentResponse.model_validate(agent).model_dump()


@router.post("/agents", status_code=201)
async def register_agent(request: Request) -> JSONResponse:
    """Register an agent and open its operator's credit account if needed."""
    data = parse_json_body(await request.body())
    operator_id = require_string(data, "operator_id")
    agent_identifier = require_string(data, "agent_identifier")
    display_name = optional_string(data, "display_name")
    description = optional_string(data, "description")

    state = get_app_state()
    directory = require_initialized(state.directory, "AgentDirectory")
    ledger = require_initialized(state.ledger, "CreditLedger")

    agent = directory.register_agent(operator_id, agent_identifier, display_name, description)
    if ledger.ensure_account(operator_id, state.initial_credits):
        logger.info("Operator account opened", extra={"operator_id": operator_id})
    return JSONResponse(status_code=201, content=_public(agent))


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str) -> dict[str, Any]:
    state = get_app_state()
    directory = require_initialized(state.directory, "AgentDirectory")
    agent = directory.resolve_agent(agent_id)
    if agent is None:
        raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id})
    return _public(agent)


@router.get("/agents/{agent_id}/trust-history")
async def get_trust_history(agent_id: str, request: Request) -> dict[str, Any]:
    """Most recent trust score changes first."""
    limit = query_int(request, "limit", 20)
    if not 1 <= limit <= 100:
        raise ServiceError("INVALID_PAYLOAD", "limit must be between 1 and 100", 400, {})

    state = get_app_state()
    directory = require_initialized(state.directory, "AgentDirectory")
    agent = directory.resolve_agent(agent_id)
    if agent is None:
        raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id})
    return {
        "agent_id": agent_id,
        "trust_score": agent["trust_score"],
        "history": directory.get_trust_history(agent["id"], limit),
    }

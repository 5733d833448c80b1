"""Dispute, evidence, decision and escalation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from resolve_service.core.state import get_app_state
from resolve_service.exceptions import ServiceError
from resolve_service.routers.validation import (
    optional_string,
    parse_json_body,
    query_int,
    require_agent_id,
    require_initialized,
    require_int,
    require_string,
)
from resolve_service.services.dispute_manager import DisputeManager
from resolve_service.services.escalation_handler import EscalationHandler

router = APIRouter()


def _disputes() -> DisputeManager:
    return require_initialized(get_app_state().dispute_manager, "DisputeManager")


def _escalations() -> EscalationHandler:
    return require_initialized(get_app_state().escalation_handler, "EscalationHandler")


# ---------------------------------------------------------------------------
# Collection routes (MUST be before /disputes/{dispute_id})
# ---------------------------------------------------------------------------


@router.get("/disputes/eligibility")
async def check_eligibility(request: Request) -> dict[str, Any]:
    """Preview whether the acting agent can file on a transaction, and the cost."""
    agent_id = require_agent_id(request)
    transaction_id = request.query_params.get("transaction_id")
    if transaction_id is None or transaction_id.strip() == "":
        raise ServiceError("INVALID_PAYLOAD", "transaction_id query parameter is required", 400)
    return await _disputes().can_file_dispute(transaction_id, agent_id)


@router.post("/disputes", status_code=201)
async def file_dispute(request: Request) -> JSONResponse:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    transaction_id = require_string(data, "transaction_id")
    claim_type = require_string(data, "claim_type")
    claim_summary = require_string(data, "claim_summary")
    requested_resolution = require_string(data, "requested_resolution")

    result = await _disputes().file_dispute(
        transaction_id,
        agent_id,
        claim_type,
        claim_summary,
        requested_resolution,
        claim_details=optional_string(data, "claim_details"),
        paying_account_id=optional_string(data, "paying_account_id"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/disputes")
async def list_disputes(request: Request) -> dict[str, Any]:
    agent_id = require_agent_id(request)
    return await _disputes().list_disputes(
        agent_id,
        status=request.query_params.get("status"),
        role=request.query_params.get("role", "any"),
        limit=query_int(request, "limit", 20),
        offset=query_int(request, "offset", 0),
    )


# ---------------------------------------------------------------------------
# Single dispute
# ---------------------------------------------------------------------------


@router.get("/disputes/{dispute_id}")
async def get_dispute(dispute_id: str, request: Request) -> dict[str, Any]:
    return await _disputes().get_dispute(dispute_id, require_agent_id(request))


@router.post("/disputes/{dispute_id}/response")
async def respond_to_dispute(dispute_id: str, request: Request) -> dict[str, Any]:
    """Respondent's answer to the claim."""
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    response_summary = require_string(data, "response_summary")
    return await _disputes().respond_to_dispute(
        dispute_id,
        agent_id,
        response_summary,
        optional_string(data, "response_details"),
    )


@router.post("/disputes/{dispute_id}/evidence", status_code=201)
async def add_evidence(dispute_id: str, request: Request) -> JSONResponse:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    result = await _disputes().add_evidence(
        dispute_id,
        agent_id,
        require_string(data, "evidence_type"),
        require_string(data, "title"),
        require_string(data, "content"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/disputes/{dispute_id}/evidence")
async def list_evidence(dispute_id: str, request: Request) -> dict[str, Any]:
    evidence = await _disputes().list_evidence(dispute_id, require_agent_id(request))
    return {"dispute_id": dispute_id, "evidence": evidence}


@router.post("/disputes/{dispute_id}/submission-complete")
async def mark_submission_complete(dispute_id: str, request: Request) -> dict[str, Any]:
    """Close this party's submissions; arbitration starts once both are closed."""
    agent_id = require_agent_id(request)
    orchestrator = require_initialized(get_app_state().arbitration, "ArbitrationOrchestrator")
    return await orchestrator.complete_submission(dispute_id, agent_id)


@router.post("/disputes/{dispute_id}/deadline/extend")
async def extend_response_deadline(dispute_id: str, request: Request) -> dict[str, Any]:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    return await _disputes().extend_response_deadline(
        dispute_id, agent_id, require_int(data, "additional_hours")
    )


@router.post("/disputes/{dispute_id}/feedback", status_code=201)
async def submit_feedback(dispute_id: str, request: Request) -> JSONResponse:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    result = await _disputes().submit_feedback(
        dispute_id,
        agent_id,
        require_int(data, "fairness_rating"),
        require_int(data, "reasoning_rating"),
        require_int(data, "evidence_rating"),
        optional_string(data, "comment"),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@router.get("/disputes/{dispute_id}/decision")
async def get_decision(dispute_id: str, request: Request) -> dict[str, Any]:
    return await _disputes().get_decision(dispute_id, require_agent_id(request))


@router.post("/disputes/{dispute_id}/decision/accept")
async def accept_decision(dispute_id: str, request: Request) -> dict[str, Any]:
    return await _disputes().accept_decision(dispute_id, require_agent_id(request))


@router.post("/disputes/{dispute_id}/decision/reject")
async def reject_decision(dispute_id: str, request: Request) -> dict[str, Any]:
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    return await _disputes().reject_decision(
        dispute_id, agent_id, optional_string(data, "rejection_reason")
    )


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


@router.post("/disputes/{dispute_id}/escalation", status_code=201)
async def request_escalation(dispute_id: str, request: Request) -> JSONResponse:
    """Escalate a rejected ruling to human arbitration."""
    agent_id = require_agent_id(request)
    data = parse_json_body(await request.body())
    result = await _escalations().request_escalation(
        dispute_id,
        agent_id,
        require_string(data, "reason"),
        optional_string(data, "paying_account_id"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/disputes/{dispute_id}/escalation")
async def get_escalation_status(dispute_id: str, request: Request) -> dict[str, Any]:
    return await _escalations().get_escalation_status(dispute_id, require_agent_id(request))

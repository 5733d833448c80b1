"""Operator endpoints: arbitration, manual rulings, sweeps and escalation review."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from resolve_service.core.state import get_app_state
from resolve_service.routers.validation import (
    optional_int,
    optional_object,
    optional_string,
    parse_json_body,
    require_initialized,
    require_string,
)

router = APIRouter()


@router.get("/arbitration/pending")
async def list_pending_arbitration() -> dict[str, Any]:
    """Disputes ready for a ruling."""
    disputes = require_initialized(get_app_state().dispute_manager, "DisputeManager")
    pending = await disputes.list_disputes_pending_arbitration()
    return {"disputes": pending, "total": len(pending)}


@router.post("/arbitration/process")
async def process_pending() -> dict[str, int]:
    """Run the arbiter over every pending dispute."""
    orchestrator = require_initialized(get_app_state().arbitration, "ArbitrationOrchestrator")
    return await orchestrator.process_pending()


@router.post("/arbitration/{dispute_id}/process")
async def process_dispute(dispute_id: str) -> dict[str, Any]:
    orchestrator = require_initialized(get_app_state().arbitration, "ArbitrationOrchestrator")
    return await orchestrator.process_dispute(dispute_id)


@router.post("/disputes/{dispute_id}/ruling")
async def record_ruling(dispute_id: str, request: Request) -> dict[str, Any]:
    """Record a ruling produced outside the configured arbiter."""
    data = parse_json_body(await request.body())
    disputes = require_initialized(get_app_state().dispute_manager, "DisputeManager")
    return await disputes.record_ruling(
        dispute_id,
        require_string(data, "ruling"),
        require_string(data, "ruling_reasoning"),
        ruling_details=optional_object(data, "ruling_details"),
        claimant_score_change=optional_int(data, "claimant_score_change"),
        respondent_score_change=optional_int(data, "respondent_score_change"),
    )


@router.post("/sweeps/run")
async def run_sweeps() -> dict[str, int]:
    """Apply overdue deadlines in bulk."""
    sweeper = require_initialized(get_app_state().sweeper, "Sweeper")
    return await sweeper.run_once()


@router.post("/escalations/{escalation_id}/assign")
async def assign_escalation(escalation_id: str) -> dict[str, Any]:
    handler = require_initialized(get_app_state().escalation_handler, "EscalationHandler")
    return await handler.assign_escalation(escalation_id)


@router.post("/escalations/{escalation_id}/resolve")
async def resolve_escalation(escalation_id: str, request: Request) -> dict[str, Any]:
    """Record the human arbitrator's decision and close the dispute."""
    data = parse_json_body(await request.body())
    handler = require_initialized(get_app_state().escalation_handler, "EscalationHandler")
    return await handler.resolve_escalation(
        escalation_id,
        require_string(data, "arbitrator_ruling"),
        require_string(data, "arbitrator_reasoning"),
        optional_string(data, "arbitrator_notes"),
    )

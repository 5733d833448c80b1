"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from resolve_service.core.state import get_app_state
from resolve_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return service health and lifecycle counters."""
    state = get_app_state()
    total_transactions = 0
    total_disputes = 0
    active_disputes = 0

    if state.transaction_manager is not None:
        total_transactions = await run_in_threadpool(state.transaction_manager.count_transactions)
    if state.dispute_manager is not None:
        total_disputes = await run_in_threadpool(state.dispute_manager.count_disputes)
        active_disputes = await run_in_threadpool(state.dispute_manager.count_active)

    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_transactions=total_transactions,
        total_disputes=total_disputes,
        active_disputes=active_disputes,
        sweeps_running=state.sweeper is not None and state.sweeper.running,
    )

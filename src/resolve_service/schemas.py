"""Pydantic response models for the resolve API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_transactions: int
    total_disputes: int
    active_disputes: int
    sweeps_running: bool


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class AgentResponse(BaseModel):
    """Public view of a registered agent."""

    model_config = ConfigDict(extra="ignore")
    agent_id: str
    operator_id: str
    agent_identifier: str
    display_name: str | None
    description: str | None
    status: str
    trust_score: int
    total_transactions: int
    completed_transactions: int
    disputes_as_claimant: int
    disputes_as_respondent: int
    disputes_won: int
    disputes_lost: int
    created_at: str


class AccountResponse(BaseModel):
    """Credit balance of an operator account."""

    model_config = ConfigDict(extra="forbid")
    account_id: str
    balance: int

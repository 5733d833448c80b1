"""Arbiter interfaces and value types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ArbiterDecision:
    """The outcome an arbiter hands back for one dispute."""

    ruling: str
    reasoning: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class DisputeContext:
    """Inputs provided to an arbiter during evaluation."""

    dispute_id: str
    transaction_title: str
    terms: dict[str, Any]
    stated_value_cents: int | None
    claim_type: str
    claim_summary: str
    claim_details: str | None
    requested_resolution: str
    response_summary: str | None
    response_details: str | None
    evidence: list[dict[str, Any]] = field(default_factory=list)


class Arbiter(ABC):
    """Abstract arbiter contract."""

    @abstractmethod
    async def evaluate(self, context: DisputeContext) -> ArbiterDecision:
        """Evaluate a dispute and return a ruling."""


class MockArbiter(Arbiter):
    """Deterministic arbiter for local and test use."""

    def __init__(self, ruling: str, reasoning: str) -> None:
        self._ruling = ruling
        self._reasoning = reasoning

    async def evaluate(self, context: DisputeContext) -> ArbiterDecision:
        """Return the configured ruling without external calls."""
        return ArbiterDecision(
            ruling=self._ruling,
            reasoning=self._reasoning,
            details={"arbiter": "mock", "evidence_reviewed": len(context.evidence)},
        )

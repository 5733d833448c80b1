"""Arbiter package exports."""

from resolve_service.arbiters.base import Arbiter, ArbiterDecision, DisputeContext, MockArbiter

__all__ = ["Arbiter", "ArbiterDecision", "DisputeContext", "MockArbiter"]

"""Contracts for the collaborators the lifecycle managers call into.

The in-process implementations live in ``agent_directory``,
``credit_ledger`` and ``notifier``; tests substitute mocks.
"""

from __future__ import annotations

from typing import Any, NamedTuple, Protocol


class DisputeLimit(NamedTuple):
    disputes_this_month: int
    can_file: bool
    limit: int


class AgentDirectory(Protocol):
    """Agent registry and trust service."""

    def resolve_agent(self, external_id: str) -> dict[str, Any] | None: ...

    def get_agent(self, agent_id: str) -> dict[str, Any] | None: ...

    def agent_status(self, agent_id: str) -> str: ...

    def increment_transaction_count(self, agent_id: str) -> None: ...

    def record_transaction_completion(self, agent_id: str) -> None: ...

    def increment_dispute_count(self, agent_id: str, *, as_claimant: bool) -> None: ...

    def check_dispute_limit(self, agent_id: str) -> DisputeLimit: ...

    def update_trust_score(
        self, agent_id: str, delta: int, reason: str, reference_id: str | None = None
    ) -> int: ...

    def record_dispute_outcome(self, agent_id: str, *, won: bool) -> None: ...


class CreditLedger(Protocol):
    """Operator credit accounts."""

    def deduct_credits(
        self,
        account_id: str,
        amount: int,
        description: str,
        reference_type: str,
        reference_id: str | None = None,
    ) -> dict[str, Any]: ...

    def refund_credits(
        self,
        account_id: str,
        amount: int,
        description: str,
        reference_type: str,
        reference_id: str | None = None,
    ) -> dict[str, Any]: ...


class Notifier(Protocol):
    """Best-effort event delivery. Implementations never raise."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None: ...

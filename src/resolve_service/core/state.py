"""Application state management."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from resolve_service.services.agent_directory import AgentDirectory
    from resolve_service.services.arbitration import ArbitrationOrchestrator
    from resolve_service.services.credit_ledger import CreditLedger
    from resolve_service.services.database import Database
    from resolve_service.services.dispute_manager import DisputeManager
    from resolve_service.services.escalation_handler import EscalationHandler
    from resolve_service.services.notifier import NullNotifier, WebhookNotifier
    from resolve_service.services.sweeper import Sweeper
    from resolve_service.services.transaction_manager import TransactionManager


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    database: Database | None = None
    directory: AgentDirectory | None = None
    ledger: CreditLedger | None = None
    notifier: WebhookNotifier | NullNotifier | None = None
    transaction_manager: TransactionManager | None = None
    dispute_manager: DisputeManager | None = None
    escalation_handler: EscalationHandler | None = None
    arbitration: ArbitrationOrchestrator | None = None
    sweeper: Sweeper | None = None
    sweeper_task: asyncio.Task[None] | None = None
    initial_credits: int = 0

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None

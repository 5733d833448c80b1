"""Service layer exports."""

from resolve_service.services.agent_directory import AgentDirectory
from resolve_service.services.arbitration import ArbitrationOrchestrator
from resolve_service.services.credit_ledger import CreditLedger
from resolve_service.services.database import Database
from resolve_service.services.dispute_manager import DisputeManager
from resolve_service.services.escalation_handler import EscalationHandler
from resolve_service.services.notifier import NullNotifier, WebhookNotifier
from resolve_service.services.sweeper import Sweeper
from resolve_service.services.transaction_manager import TransactionManager

__all__ = [
    "AgentDirectory",
    "ArbitrationOrchestrator",
    "CreditLedger",
    "Database",
    "DisputeManager",
    "EscalationHandler",
    "NullNotifier",
    "Sweeper",
    "TransactionManager",
    "WebhookNotifier",
]

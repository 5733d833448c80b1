"""Application lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from resolve_service.arbiters import MockArbiter
from resolve_service.config import get_settings
from resolve_service.core.state import init_app_state
from resolve_service.logging import get_logger, setup_logging
from resolve_service.services.agent_directory import AgentDirectory
from resolve_service.services.arbitration import ArbitrationOrchestrator
from resolve_service.services.credit_ledger import CreditLedger
from resolve_service.services.database import Database
from resolve_service.services.dispute_cost import DisputePricing
from resolve_service.services.dispute_manager import DisputeManager
from resolve_service.services.dispute_store import DisputeStore
from resolve_service.services.escalation_handler import EscalationHandler
from resolve_service.services.escalation_store import EscalationStore
from resolve_service.services.evidence_store import EvidenceStore
from resolve_service.services.feedback_store import FeedbackStore
from resolve_service.services.notifier import NullNotifier, WebhookNotifier
from resolve_service.services.sweeper import Sweeper
from resolve_service.services.transaction_manager import TransactionManager
from resolve_service.services.transaction_store import TransactionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from resolve_service.config import Settings
    from resolve_service.core.state import AppState


def _build_notifier(settings: Settings) -> WebhookNotifier | NullNotifier:
    if settings.notifications.webhook_url is None:
        return NullNotifier()
    return WebhookNotifier(
        webhook_url=settings.notifications.webhook_url,
        timeout_seconds=settings.notifications.timeout_seconds,
    )


def _build_services(state: AppState, settings: Settings) -> None:
    database = Database(settings.database.path)
    transaction_store = TransactionStore(database)
    dispute_store = DisputeStore(database)
    evidence_store = EvidenceStore(database)
    feedback_store = FeedbackStore(database)
    escalation_store = EscalationStore(database)

    directory = AgentDirectory(
        settings.directory.db_path,
        initial_trust_score=settings.directory.initial_trust_score,
        monthly_dispute_limit=settings.directory.monthly_dispute_limit,
    )
    ledger = CreditLedger(settings.ledger.db_path)
    notifier = _build_notifier(settings)

    transactions = TransactionManager(
        transaction_store,
        directory,
        notifier,
        default_expiry_days=settings.transactions.default_expiry_days,
        max_expiry_days=settings.transactions.max_expiry_days,
    )
    disputes = DisputeManager(
        dispute_store,
        evidence_store,
        feedback_store,
        escalation_store,
        transaction_store,
        transactions,
        database,
        directory,
        ledger,
        notifier,
        pricing=DisputePricing(
            free_value_threshold_cents=settings.disputes.free_value_threshold_cents,
            free_monthly_disputes=settings.disputes.free_monthly_disputes,
            base_cost=settings.disputes.base_cost,
            value_multiplier=settings.disputes.value_multiplier,
            max_cost=settings.disputes.max_cost,
        ),
        response_deadline_hours=settings.disputes.response_deadline_hours,
        decision_window_days=settings.disputes.decision_window_days,
    )
    escalations = EscalationHandler(
        escalation_store,
        dispute_store,
        database,
        directory,
        ledger,
        notifier,
        fee=settings.escalation.fee,
    )
    arbiter = MockArbiter(
        ruling=settings.arbitration.mock_ruling,
        reasoning=settings.arbitration.mock_reasoning,
    )

    state.database = database
    state.directory = directory
    state.ledger = ledger
    state.notifier = notifier
    state.transaction_manager = transactions
    state.dispute_manager = disputes
    state.escalation_handler = escalations
    state.arbitration = ArbitrationOrchestrator(arbiter, disputes, transaction_store, directory)
    state.sweeper = Sweeper(transactions, disputes, settings.sweeps.interval_seconds)
    state.initial_credits = settings.ledger.initial_credits


async def _close_resources(state: AppState) -> None:
    if state.sweeper is not None:
        state.sweeper.stop()
    if state.sweeper_task is not None:
        state.sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await state.sweeper_task
    if state.notifier is not None:
        await state.notifier.close()
    if state.directory is not None:
        state.directory.close()
    if state.ledger is not None:
        state.ledger.close()
    if state.database is not None:
        state.database.close()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage app startup and shutdown."""
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    _build_services(state, settings)

    if settings.sweeps.enabled and state.sweeper is not None:
        state.sweeper_task = asyncio.create_task(state.sweeper.run())

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "sweeps_enabled": settings.sweeps.enabled,
        },
    )

    yield

    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await _close_resources(state)

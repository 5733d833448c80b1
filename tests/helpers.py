"""Shared test helpers for Resolve service tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

from resolve_service.services.agent_directory import AgentDirectory
from resolve_service.services.credit_ledger import CreditLedger
from resolve_service.services.database import Database
from resolve_service.services.deadlines import add_days, to_iso
from resolve_service.services.dispute_cost import DisputePricing
from resolve_service.services.dispute_manager import DisputeManager
from resolve_service.services.dispute_store import DisputeStore
from resolve_service.services.escalation_handler import EscalationHandler
from resolve_service.services.escalation_store import EscalationStore
from resolve_service.services.evidence_store import EvidenceStore
from resolve_service.services.feedback_store import FeedbackStore
from resolve_service.services.identifiers import generate_dispute_id, generate_transaction_id
from resolve_service.services.transaction_manager import TransactionManager
from resolve_service.services.transaction_store import TransactionStore

if TYPE_CHECKING:
    from pathlib import Path

START = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
INITIAL_CREDITS = 10_000


class FakeClock:
    """Manually advanced clock injected into the managers."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Engine:
    """Every component wired together over tmp_path SQLite files."""

    clock: FakeClock
    database: Database
    transaction_store: TransactionStore
    dispute_store: DisputeStore
    evidence_store: EvidenceStore
    feedback_store: FeedbackStore
    escalation_store: EscalationStore
    directory: AgentDirectory
    ledger: CreditLedger
    notifier: AsyncMock
    transactions: TransactionManager
    disputes: DisputeManager
    escalations: EscalationHandler

    def close(self) -> None:
        self.directory.close()
        self.ledger.close()
        self.database.close()


def make_mock_notifier(side_effect: Exception | None = None) -> AsyncMock:
    """Create a mock notifier that records every event."""
    notifier = AsyncMock()
    notifier.close = AsyncMock()
    if side_effect is not None:
        notifier.notify.side_effect = side_effect
    return notifier


def build_engine(
    tmp_path: Path,
    *,
    clock: FakeClock | None = None,
    pricing: DisputePricing | None = None,
    notifier: AsyncMock | None = None,
) -> Engine:
    """Build the full engine with real stores and in-process collaborators."""
    clock = clock if clock is not None else FakeClock()
    notifier = notifier if notifier is not None else make_mock_notifier()
    database = Database(str(tmp_path / "resolve.db"))
    transaction_store = TransactionStore(database)
    dispute_store = DisputeStore(database)
    evidence_store = EvidenceStore(database)
    feedback_store = FeedbackStore(database)
    escalation_store = EscalationStore(database)
    directory = AgentDirectory(str(tmp_path / "agents.db"), clock=clock)
    ledger = CreditLedger(str(tmp_path / "ledger.db"), clock=clock)

    transactions = TransactionManager(transaction_store, directory, notifier, clock=clock)
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
        clock=clock,
        pricing=pricing,
    )
    escalations = EscalationHandler(
        escalation_store,
        dispute_store,
        database,
        directory,
        ledger,
        notifier,
        clock=clock,
    )
    return Engine(
        clock=clock,
        database=database,
        transaction_store=transaction_store,
        dispute_store=dispute_store,
        evidence_store=evidence_store,
        feedback_store=feedback_store,
        escalation_store=escalation_store,
        directory=directory,
        ledger=ledger,
        notifier=notifier,
        transactions=transactions,
        disputes=disputes,
        escalations=escalations,
    )


def register(
    engine: Engine,
    name: str,
    *,
    operator_id: str | None = None,
    credits: int = INITIAL_CREDITS,
) -> dict[str, Any]:
    """Register an agent and give its operator a funded account."""
    operator = operator_id if operator_id is not None else f"op-{name}"
    agent = engine.directory.register_agent(operator, name, display_name=name.title())
    engine.ledger.ensure_account(operator, credits)
    return agent


async def accepted_transaction(
    engine: Engine,
    proposer: dict[str, Any],
    receiver: dict[str, Any],
    *,
    stated_value_cents: int | None = None,
) -> str:
    """Propose and accept a transaction; return its external ID."""
    proposed = await engine.transactions.propose_transaction(
        proposer["agent_id"],
        receiver["agent_id"],
        "Data cleanup job",
        {"deliverable": "cleaned.csv"},
        stated_value_cents=stated_value_cents,
    )
    await engine.transactions.respond_to_transaction(
        proposed["transaction_id"], receiver["agent_id"], accept=True
    )
    return str(proposed["transaction_id"])


async def file_dispute(
    engine: Engine,
    transaction_id: str,
    claimant: dict[str, Any],
    claim_type: str = "NON_PERFORMANCE",
) -> dict[str, Any]:
    return await engine.disputes.file_dispute(
        transaction_id,
        claimant["agent_id"],
        claim_type,
        "Work was never delivered",
        "Full refund",
    )


async def ruled_dispute(
    engine: Engine,
    claimant: dict[str, Any],
    respondent: dict[str, Any],
    *,
    ruling: str = "CLAIMANT",
    stated_value_cents: int | None = None,
) -> str:
    """Drive a dispute to RULED and return its external ID."""
    transaction_id = await accepted_transaction(
        engine, claimant, respondent, stated_value_cents=stated_value_cents
    )
    dispute = await file_dispute(engine, transaction_id, claimant)
    await engine.disputes.respond_to_dispute(
        dispute["dispute_id"], respondent["agent_id"], "Delivered on time"
    )
    await engine.disputes.record_ruling(dispute["dispute_id"], ruling, "Reviewed the record")
    return str(dispute["dispute_id"])


def make_transaction_row(**overrides: Any) -> dict[str, Any]:
    """Build a raw PROPOSED transaction row for store tests."""
    row: dict[str, Any] = {
        "id": f"txn-{uuid.uuid4()}",
        "transaction_id": generate_transaction_id(),
        "proposer_id": "agt-proposer",
        "receiver_id": "agt-receiver",
        "title": "Translate docs",
        "description": None,
        "terms": {"pages": 10},
        "stated_value_cents": 25_000,
        "currency": "USD",
        "metadata": None,
        "status": "PROPOSED",
        "proposed_at": to_iso(START),
        "responded_at": None,
        "completed_at": None,
        "expires_at": add_days(START, 7),
        "has_disputes": False,
        "escrow_amount_cents": None,
        "escrow_currency": None,
        "escrow_status": "NONE",
        "escrow_funded_at": None,
        "escrow_released_at": None,
        "escrow_released_to": None,
    }
    row.update(overrides)
    return row


def make_dispute_row(transaction_internal_id: str, **overrides: Any) -> dict[str, Any]:
    """Build a raw AWAITING_RESPONSE dispute row for store tests."""
    row: dict[str, Any] = {
        "id": f"dsp-{uuid.uuid4()}",
        "dispute_id": generate_dispute_id(),
        "transaction_id": transaction_internal_id,
        "claimant_id": "agt-proposer",
        "respondent_id": "agt-receiver",
        "claim_type": "QUALITY_ISSUE",
        "claim_summary": "Pages missing",
        "claim_details": None,
        "requested_resolution": "Redo the work",
        "response_summary": None,
        "response_details": None,
        "response_deadline": to_iso(START + timedelta(hours=72)),
        "response_submitted_at": None,
        "status": "AWAITING_RESPONSE",
        "ruling": None,
        "ruling_reasoning": None,
        "ruling_details": None,
        "ruled_at": None,
        "claimant_score_change": None,
        "respondent_score_change": None,
        "stated_value_cents": 25_000,
        "credits_charged": 0,
        "was_free": True,
        "claimant_decision": "UNDECIDED",
        "respondent_decision": "UNDECIDED",
        "claimant_decision_at": None,
        "respondent_decision_at": None,
        "rejection_reason": None,
        "decision_deadline": None,
        "closed_at": None,
        "evidence_count": 0,
        "claimant_submission_complete": False,
        "respondent_submission_complete": False,
        "claimant_submission_completed_at": None,
        "respondent_submission_completed_at": None,
        "filed_at": to_iso(START),
    }
    row.update(overrides)
    return row


def write_config(
    tmp_path: Path,
    *,
    mock_ruling: str = "CLAIMANT",
    webhook_url: str | None = None,
    max_body_size: int = 1_048_576,
    extra: str = "",
) -> str:
    """Write a complete config.yaml under tmp_path and return its path."""
    webhook = "null" if webhook_url is None else f'"{webhook_url}"'
    config_content = f"""\
service:
  name: "resolve"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{tmp_path / "resolve.db"}"
directory:
  db_path: "{tmp_path / "agents.db"}"
  initial_trust_score: 50
  monthly_dispute_limit: 5
ledger:
  db_path: "{tmp_path / "ledger.db"}"
  initial_credits: {INITIAL_CREDITS}
transactions:
  default_expiry_days: 7
  max_expiry_days: 30
disputes:
  response_deadline_hours: 72
  decision_window_days: 7
  free_value_threshold_cents: 10000
  free_monthly_disputes: 5
  base_cost: 500
  value_multiplier: 100
  max_cost: 5000
escalation:
  fee: 2000
notifications:
  webhook_url: {webhook}
  timeout_seconds: 5
arbitration:
  mock_ruling: "{mock_ruling}"
  mock_reasoning: "Automated ruling for tests."
sweeps:
  enabled: false
  interval_seconds: 120
request:
  max_body_size: {max_body_size}
{extra}"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return str(config_path)

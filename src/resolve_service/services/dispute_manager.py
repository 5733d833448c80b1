"""Dispute lifecycle: filing, response, evidence, ruling and party decisions."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.actors import party_summary, resolve_actor
from resolve_service.services.deadlines import (
    add_days,
    add_hours,
    parse_iso,
    resolve_dispute,
    to_iso,
    utc_now,
)
from resolve_service.services.dispute_cost import DisputePricing, calculate_dispute_cost
from resolve_service.services.feedback_store import DuplicateFeedbackError
from resolve_service.services.identifiers import generate_dispute_id, generate_evidence_id
from resolve_service.services.models import (
    ClaimType,
    Decision,
    DisputeStatus,
    EvidenceType,
    PartyRole,
    Ruling,
    TransactionStatus,
)
from resolve_service.services.side_effects import after_commit, notify_safely

if TYPE_CHECKING:
    from logging import Logger

    from resolve_service.services.collaborators import AgentDirectory, CreditLedger, Notifier
    from resolve_service.services.database import Database
    from resolve_service.services.deadlines import Clock
    from resolve_service.services.dispute_store import DisputeStore
    from resolve_service.services.escalation_store import EscalationStore
    from resolve_service.services.evidence_store import EvidenceStore
    from resolve_service.services.feedback_store import FeedbackStore
    from resolve_service.services.transaction_manager import TransactionManager
    from resolve_service.services.transaction_store import TransactionStore

RESPONSE_DEADLINE_HOURS = 72
DECISION_WINDOW_DAYS = 7
MAX_SUMMARY_LENGTH = 500
MAX_DETAILS_LENGTH = 10_000
MAX_EVIDENCE_TITLE_LENGTH = 200
MAX_EVIDENCE_CONTENT_LENGTH = 50_000
MAX_FEEDBACK_COMMENT_LENGTH = 500
MAX_EXTENSION_HOURS = 24 * 365
FEEDBACK_WINDOW_DAYS = 30

_DISPUTABLE_STATUSES = frozenset(
    {
        TransactionStatus.ACCEPTED,
        TransactionStatus.IN_PROGRESS,
        TransactionStatus.COMPLETED,
    }
)
_EVIDENCE_STATUSES = frozenset({DisputeStatus.AWAITING_RESPONSE, DisputeStatus.RESPONSE_RECEIVED})
_RULABLE_STATUSES = frozenset({DisputeStatus.RESPONSE_RECEIVED, DisputeStatus.IN_ARBITRATION})
_PENDING_ARBITRATION_STATUSES = (DisputeStatus.RESPONSE_RECEIVED, DisputeStatus.IN_ARBITRATION)
_FEEDBACK_STATUSES = frozenset(
    {DisputeStatus.RULED, DisputeStatus.ESCALATED, DisputeStatus.CLOSED}
)
_LIST_ROLES = frozenset({"claimant", "respondent", "any"})


def _require_text(value: object, field: str, max_length: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ServiceError("INVALID_PAYLOAD", f"{field} is required", 400, {"field": field})
    if len(value) > max_length:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"{field} must be at most {max_length} characters",
            400,
            {"field": field},
        )


class DisputeManager:
    """
    Owns a dispute from filing to closure.

    The response deadline is applied lazily: a dispute still
    AWAITING_RESPONSE past its deadline is persisted as IN_ARBITRATION
    the first time any path touches it.

    Filing fees are debited before the dispute row exists. If the write
    that follows fails, the debit is refunded and the error propagates.
    """

    def __init__(
        self,
        dispute_store: DisputeStore,
        evidence_store: EvidenceStore,
        feedback_store: FeedbackStore,
        escalation_store: EscalationStore,
        transaction_store: TransactionStore,
        transactions: TransactionManager,
        database: Database,
        directory: AgentDirectory,
        ledger: CreditLedger,
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
        logger: Logger | None = None,
        pricing: DisputePricing | None = None,
        response_deadline_hours: int = RESPONSE_DEADLINE_HOURS,
        decision_window_days: int = DECISION_WINDOW_DAYS,
    ) -> None:
        self._disputes = dispute_store
        self._evidence = evidence_store
        self._feedback = feedback_store
        self._escalations = escalation_store
        self._transaction_store = transaction_store
        self._transactions = transactions
        self._database = database
        self._directory = directory
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._pricing = pricing if pricing is not None else DisputePricing()
        self._response_deadline_hours = response_deadline_hours
        self._decision_window_days = decision_window_days

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a dispute row to its external projection."""
        transaction = self._transaction_store.get_by_id(row["transaction_id"])
        return {
            "dispute_id": row["dispute_id"],
            "transaction_id": None if transaction is None else transaction["transaction_id"],
            "transaction_title": None if transaction is None else transaction["title"],
            "claimant": party_summary(self._directory, row["claimant_id"]),
            "respondent": party_summary(self._directory, row["respondent_id"]),
            "claim_type": row["claim_type"],
            "claim_summary": row["claim_summary"],
            "claim_details": row["claim_details"],
            "requested_resolution": row["requested_resolution"],
            "response_summary": row["response_summary"],
            "response_details": row["response_details"],
            "response_deadline": row["response_deadline"],
            "response_submitted_at": row["response_submitted_at"],
            "status": row["status"],
            "ruling": row["ruling"],
            "ruling_reasoning": row["ruling_reasoning"],
            "ruling_details": row["ruling_details"],
            "ruled_at": row["ruled_at"],
            "claimant_score_change": row["claimant_score_change"],
            "respondent_score_change": row["respondent_score_change"],
            "stated_value_cents": row["stated_value_cents"],
            "credits_charged": row["credits_charged"],
            "was_free": row["was_free"],
            "claimant_decision": row["claimant_decision"],
            "respondent_decision": row["respondent_decision"],
            "claimant_decision_at": row["claimant_decision_at"],
            "respondent_decision_at": row["respondent_decision_at"],
            "rejection_reason": row["rejection_reason"],
            "decision_deadline": row["decision_deadline"],
            "closed_at": row["closed_at"],
            "evidence_count": row["evidence_count"],
            "claimant_submission_complete": row["claimant_submission_complete"],
            "respondent_submission_complete": row["respondent_submission_complete"],
            "filed_at": row["filed_at"],
        }

    @staticmethod
    def _evidence_to_response(row: dict[str, Any], dispute_id: str) -> dict[str, Any]:
        return {
            "evidence_id": row["evidence_id"],
            "dispute_id": dispute_id,
            "submitted_by": row["submitted_by"],
            "evidence_type": row["evidence_type"],
            "title": row["title"],
            "content": row["content"],
            "created_at": row["created_at"],
        }

    def _apply_deadline(self, row: dict[str, Any]) -> dict[str, Any]:
        """Persist a pending response-deadline transition and return the fresh row."""
        resolution = resolve_dispute(row, self._clock())
        if not resolution.transitioned:
            return row
        changed = self._disputes.update(
            row["id"], {"status": resolution.status}, expected_status=row["status"]
        )
        if changed > 0:
            self._logger.info(
                "Dispute response deadline passed",
                extra={"dispute_id": row["dispute_id"], "status": resolution.status},
            )
        return self._reload(row["id"])

    def _reload(self, internal_id: str) -> dict[str, Any]:
        row = self._disputes.get_by_id(internal_id)
        if row is None:
            msg = f"Dispute {internal_id} not found after update"
            raise RuntimeError(msg)
        return row

    def _find(self, dispute_id: str) -> dict[str, Any]:
        row = self._disputes.get_by_external_id(dispute_id)
        if row is None:
            raise ServiceError(
                "DISPUTE_NOT_FOUND", "Dispute not found", 404, {"dispute_id": dispute_id}
            )
        return row

    def _load(self, dispute_id: str) -> dict[str, Any]:
        return self._apply_deadline(self._find(dispute_id))

    @staticmethod
    def _role_of(row: dict[str, Any], agent: dict[str, Any]) -> PartyRole:
        if agent["id"] == row["claimant_id"]:
            return PartyRole.CLAIMANT
        if agent["id"] == row["respondent_id"]:
            return PartyRole.RESPONDENT
        raise ServiceError("NOT_PARTY", "You are not a party to this dispute", 403, {})

    @staticmethod
    def _invalid_status(row: dict[str, Any], action: str) -> ServiceError:
        return ServiceError(
            "INVALID_STATUS",
            f"Cannot {action} dispute in {row['status']} status",
            409,
            {"status": row["status"]},
        )

    def _refund_filing_fee(
        self, account_id: str, amount: int, transaction_id: str, dispute_id: str
    ) -> None:
        """Return a filing fee whose dispute could not be recorded."""
        try:
            self._ledger.refund_credits(
                account_id,
                amount,
                f"Refund of dispute filing fee for transaction {transaction_id}",
                "dispute",
                dispute_id,
            )
        except Exception:
            # credits are now charged without a dispute; needs manual reconciliation
            self._logger.exception(
                "Filing fee refund failed",
                extra={"account_id": account_id, "amount": amount, "dispute_id": dispute_id},
            )

    def _eligibility(
        self, transaction_id: str, claimant: dict[str, Any]
    ) -> tuple[dict[str, Any] | None, str | None, dict[str, Any]]:
        """Return (transaction, refusal reason, cost quote) for a prospective filing."""
        limit = self._directory.check_dispute_limit(claimant["id"])
        transaction = self._transactions.find_transaction(transaction_id)
        stated_value = None if transaction is None else transaction["stated_value_cents"]
        cost = calculate_dispute_cost(stated_value, limit.disputes_this_month, self._pricing)
        quote = {
            "estimated_cost": cost.cost,
            "is_free": cost.is_free,
            "disputes_this_month": limit.disputes_this_month,
        }

        if transaction is None:
            return None, "Transaction not found", quote
        if claimant["id"] not in (transaction["proposer_id"], transaction["receiver_id"]):
            return transaction, "You are not a party to this transaction", quote
        if transaction["status"] not in _DISPUTABLE_STATUSES:
            return (
                transaction,
                f"Cannot file dispute for transaction in {transaction['status']} status",
                quote,
            )
        if self._disputes.find_active(transaction["id"], claimant["id"]) is not None:
            return transaction, "You already have an active dispute for this transaction", quote
        return transaction, None, quote

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    async def can_file_dispute(self, transaction_id: str, agent_id: str) -> dict[str, Any]:
        """Preview whether the agent may file, and what it would cost."""
        claimant = resolve_actor(self._directory, agent_id)
        _, reason, quote = self._eligibility(transaction_id, claimant)
        return {"can_file": reason is None, "reason": reason, **quote}

    async def file_dispute(
        self,
        transaction_id: str,
        agent_id: str,
        claim_type: str,
        claim_summary: str,
        requested_resolution: str,
        *,
        claim_details: str | None = None,
        paying_account_id: str | None = None,
    ) -> dict[str, Any]:
        """
        File a dispute against the other party of a transaction.

        Eligibility is re-checked here; a preview from can_file_dispute is
        never trusted. The paying account defaults to the claimant's
        operator.

        Error precedence:
        1. AGENT_NOT_FOUND
        2. INVALID_PAYLOAD
        3. CANNOT_FILE_DISPUTE
        4. ACCOUNT_NOT_FOUND / INSUFFICIENT_CREDITS (nothing written)
        """
        claimant = resolve_actor(self._directory, agent_id)
        if claim_type not in ClaimType.__members__:
            raise ServiceError(
                "INVALID_PAYLOAD", f"Unknown claim type: {claim_type}", 400, {"field": "claim_type"}
            )
        _require_text(claim_summary, "claim_summary", MAX_SUMMARY_LENGTH)
        _require_text(requested_resolution, "requested_resolution", MAX_SUMMARY_LENGTH)
        if claim_details is not None and len(claim_details) > MAX_DETAILS_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"claim_details must be at most {MAX_DETAILS_LENGTH} characters",
                400,
                {"field": "claim_details"},
            )

        transaction, reason, quote = self._eligibility(transaction_id, claimant)
        if transaction is None or reason is not None:
            raise ServiceError(
                "CANNOT_FILE_DISPUTE", reason or "Cannot file dispute", 400, {"reason": reason}
            )

        respondent_id = (
            transaction["receiver_id"]
            if claimant["id"] == transaction["proposer_id"]
            else transaction["proposer_id"]
        )
        account_id = paying_account_id or claimant["operator_id"]
        cost = int(quote["estimated_cost"])
        dispute_id = generate_dispute_id()

        if cost > 0:
            self._ledger.deduct_credits(
                account_id,
                cost,
                f"Dispute filing fee for transaction {transaction_id}",
                "dispute",
                dispute_id,
            )

        now = self._clock()
        row: dict[str, Any] = {
            "id": f"dsp-{uuid.uuid4()}",
            "dispute_id": dispute_id,
            "transaction_id": transaction["id"],
            "claimant_id": claimant["id"],
            "respondent_id": respondent_id,
            "claim_type": claim_type,
            "claim_summary": claim_summary,
            "claim_details": claim_details,
            "requested_resolution": requested_resolution,
            "response_summary": None,
            "response_details": None,
            "response_deadline": add_hours(now, self._response_deadline_hours),
            "response_submitted_at": None,
            "status": DisputeStatus.AWAITING_RESPONSE.value,
            "ruling": None,
            "ruling_reasoning": None,
            "ruling_details": None,
            "ruled_at": None,
            "claimant_score_change": None,
            "respondent_score_change": None,
            "stated_value_cents": transaction["stated_value_cents"],
            "credits_charged": cost,
            "was_free": bool(quote["is_free"]),
            "claimant_decision": Decision.UNDECIDED.value,
            "respondent_decision": Decision.UNDECIDED.value,
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
            "filed_at": to_iso(now),
        }

        try:
            with self._database.transaction():
                self._disputes.insert(row)
                self._transactions.mark_transaction_disputed(transaction["id"])
        except Exception:
            if cost > 0:
                self._refund_filing_fee(account_id, cost, transaction_id, dispute_id)
            raise

        after_commit(
            self._logger,
            "increment_dispute_count",
            self._directory.increment_dispute_count,
            claimant["id"],
            as_claimant=True,
        )
        after_commit(
            self._logger,
            "increment_dispute_count",
            self._directory.increment_dispute_count,
            respondent_id,
            as_claimant=False,
        )

        self._logger.info(
            "Dispute filed",
            extra={
                "dispute_id": dispute_id,
                "transaction_id": transaction_id,
                "claim_type": claim_type,
                "credits_charged": cost,
            },
        )
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "dispute.filed", response)
        return response

    # ------------------------------------------------------------------
    # Response and evidence
    # ------------------------------------------------------------------

    async def respond_to_dispute(
        self,
        dispute_id: str,
        agent_id: str,
        response_summary: str,
        response_details: str | None = None,
    ) -> dict[str, Any]:
        """
        Submit the respondent's answer.

        Error precedence:
        1. DISPUTE_NOT_FOUND
        2. NOT_RESPONDENT
        3. RESPONSE_DEADLINE_PASSED (after persisting IN_ARBITRATION)
        4. INVALID_STATUS
        5. INVALID_PAYLOAD
        """
        agent = resolve_actor(self._directory, agent_id)
        row = self._find(dispute_id)
        if agent["id"] != row["respondent_id"]:
            raise ServiceError(
                "NOT_RESPONDENT", "Only the respondent can respond to this dispute", 403, {}
            )

        was_awaiting = row["status"] == DisputeStatus.AWAITING_RESPONSE
        row = self._apply_deadline(row)
        if was_awaiting and row["status"] == DisputeStatus.IN_ARBITRATION:
            raise ServiceError(
                "RESPONSE_DEADLINE_PASSED",
                "The response deadline has passed",
                410,
                {"response_deadline": row["response_deadline"]},
            )
        if row["status"] != DisputeStatus.AWAITING_RESPONSE:
            raise self._invalid_status(row, "respond to")

        _require_text(response_summary, "response_summary", MAX_SUMMARY_LENGTH)
        if response_details is not None and len(response_details) > MAX_DETAILS_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"response_details must be at most {MAX_DETAILS_LENGTH} characters",
                400,
                {"field": "response_details"},
            )

        changed = self._disputes.update(
            row["id"],
            {
                "status": DisputeStatus.RESPONSE_RECEIVED.value,
                "response_summary": response_summary,
                "response_details": response_details,
                "response_submitted_at": to_iso(self._clock()),
            },
            expected_status=DisputeStatus.AWAITING_RESPONSE,
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "respond to")

        self._logger.info("Dispute response received", extra={"dispute_id": dispute_id})
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "dispute.responded", response)
        return response

    async def add_evidence(
        self,
        dispute_id: str,
        agent_id: str,
        evidence_type: str,
        title: str,
        content: str,
    ) -> dict[str, Any]:
        """Attach evidence while the dispute is still open for submissions."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        role = self._role_of(row, agent)
        if row["status"] not in _EVIDENCE_STATUSES:
            raise ServiceError(
                "EVIDENCE_NOT_ALLOWED",
                f"Evidence cannot be submitted for a dispute in {row['status']} status",
                409,
                {"status": row["status"]},
            )
        if row[f"{role.value.lower()}_submission_complete"]:
            raise ServiceError(
                "EVIDENCE_NOT_ALLOWED",
                "You have already marked your submission as complete",
                409,
                {"status": row["status"]},
            )
        if evidence_type not in EvidenceType.__members__:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Unknown evidence type: {evidence_type}",
                400,
                {"field": "evidence_type"},
            )
        _require_text(title, "title", MAX_EVIDENCE_TITLE_LENGTH)
        _require_text(content, "content", MAX_EVIDENCE_CONTENT_LENGTH)

        evidence = {
            "evidence_id": generate_evidence_id(),
            "dispute_id": row["id"],
            "submitted_by": role.value,
            "submitter_id": agent["id"],
            "evidence_type": evidence_type,
            "title": title,
            "content": content,
            "created_at": to_iso(self._clock()),
        }
        with self._database.transaction():
            self._evidence.insert(evidence)
            self._disputes.increment_evidence_count(row["id"])

        self._logger.info(
            "Evidence added",
            extra={
                "dispute_id": dispute_id,
                "evidence_id": evidence["evidence_id"],
                "submitted_by": role.value,
            },
        )
        return self._evidence_to_response(evidence, dispute_id)

    async def list_evidence(self, dispute_id: str, agent_id: str) -> list[dict[str, Any]]:
        """Evidence in submission order. Parties only."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        self._role_of(row, agent)
        return [
            self._evidence_to_response(evidence, dispute_id)
            for evidence in self._evidence.list_for_dispute(row["id"])
        ]

    async def mark_submission_complete(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        """
        Declare that this party has nothing more to submit.

        Evidence from the party is refused afterwards. Once both parties
        are complete the dispute moves to IN_ARBITRATION without waiting
        for the response deadline.
        """
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        role = self._role_of(row, agent)
        if row["status"] not in _EVIDENCE_STATUSES:
            raise self._invalid_status(row, "complete submissions for")

        prefix = role.value.lower()
        own_flag = f"{prefix}_submission_complete"
        if row[own_flag]:
            raise ServiceError(
                "SUBMISSION_ALREADY_COMPLETE",
                "You have already marked your submission as complete",
                409,
                {},
            )
        changed = self._disputes.update(
            row["id"],
            {own_flag: True, f"{prefix}_submission_completed_at": to_iso(self._clock())},
            expected_status=row["status"],
            expected={own_flag: False},
        )
        if changed == 0:
            latest = self._reload(row["id"])
            if latest[own_flag]:
                raise ServiceError(
                    "SUBMISSION_ALREADY_COMPLETE",
                    "You have already marked your submission as complete",
                    409,
                    {},
                )
            raise self._invalid_status(latest, "complete submissions for")

        row = self._reload(row["id"])
        both_complete = row["claimant_submission_complete"] and row["respondent_submission_complete"]
        if both_complete and row["status"] in _EVIDENCE_STATUSES:
            moved = self._disputes.update(
                row["id"],
                {"status": DisputeStatus.IN_ARBITRATION.value},
                expected_status=row["status"],
            )
            if moved > 0:
                self._logger.info(
                    "Both submissions complete, dispute ready for arbitration",
                    extra={"dispute_id": dispute_id},
                )
            row = self._reload(row["id"])

        other_role = PartyRole.RESPONDENT if role == PartyRole.CLAIMANT else PartyRole.CLAIMANT
        self._logger.info(
            "Submission marked complete",
            extra={"dispute_id": dispute_id, "role": role.value},
        )
        result = {
            "dispute_id": dispute_id,
            "your_submission_complete": True,
            "other_party_complete": row[f"{other_role.value.lower()}_submission_complete"],
            "both_complete": both_complete,
            "status": row["status"],
        }
        await notify_safely(
            self._notifier, self._logger, "dispute.submission_complete", result
        )
        return result

    async def extend_response_deadline(
        self, dispute_id: str, agent_id: str, additional_hours: int
    ) -> dict[str, Any]:
        """Push the response deadline back. Parties only, while AWAITING_RESPONSE."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        self._role_of(row, agent)
        if row["status"] != DisputeStatus.AWAITING_RESPONSE:
            raise self._invalid_status(row, "extend the deadline of")
        if (
            isinstance(additional_hours, bool)
            or not isinstance(additional_hours, int)
            or not 1 <= additional_hours <= MAX_EXTENSION_HOURS
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"additional_hours must be an integer between 1 and {MAX_EXTENSION_HOURS}",
                400,
                {"field": "additional_hours"},
            )

        previous = row["response_deadline"]
        new_deadline = add_hours(parse_iso(previous), additional_hours)
        changed = self._disputes.update(
            row["id"],
            {"response_deadline": new_deadline},
            expected_status=DisputeStatus.AWAITING_RESPONSE,
            expected={"response_deadline": previous},
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "extend the deadline of")

        self._logger.info(
            "Response deadline extended",
            extra={
                "dispute_id": dispute_id,
                "hours_added": additional_hours,
                "response_deadline": new_deadline,
            },
        )
        return {
            "dispute_id": dispute_id,
            "previous_deadline": previous,
            "new_deadline": new_deadline,
            "hours_added": additional_hours,
        }

    async def submit_feedback(
        self,
        dispute_id: str,
        agent_id: str,
        fairness_rating: int,
        reasoning_rating: int,
        evidence_rating: int,
        comment: str | None = None,
    ) -> dict[str, Any]:
        """Rate a ruling. One submission per party per dispute."""
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        role = self._role_of(row, agent)
        if row["status"] not in _FEEDBACK_STATUSES:
            raise self._invalid_status(row, "give feedback on")

        ratings = {
            "fairness_rating": fairness_rating,
            "reasoning_rating": reasoning_rating,
            "evidence_rating": evidence_rating,
        }
        for field, value in ratings.items():
            if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"{field} must be an integer between 1 and 5",
                    400,
                    {"field": field},
                )
        if comment is not None and len(comment) > MAX_FEEDBACK_COMMENT_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"comment must be at most {MAX_FEEDBACK_COMMENT_LENGTH} characters",
                400,
                {"field": "comment"},
            )

        now = self._clock()
        if row["closed_at"] is not None:
            window_end = add_days(parse_iso(row["closed_at"]), FEEDBACK_WINDOW_DAYS)
            if to_iso(now) > window_end:
                raise ServiceError(
                    "FEEDBACK_WINDOW_CLOSED",
                    f"Feedback must be submitted within {FEEDBACK_WINDOW_DAYS} days of closure",
                    400,
                    {"closed_at": row["closed_at"]},
                )

        if role == PartyRole.CLAIMANT:
            was_winner = row["ruling"] == Ruling.CLAIMANT
        else:
            was_winner = row["ruling"] in (Ruling.RESPONDENT, Ruling.DISMISSED)
        feedback = {
            "feedback_id": f"fbk-{uuid.uuid4()}",
            "dispute_id": row["id"],
            "agent_id": agent["id"],
            "party_role": role.value,
            "was_winner": was_winner,
            **ratings,
            "comment": comment,
            "created_at": to_iso(now),
        }
        try:
            self._feedback.insert(feedback)
        except DuplicateFeedbackError as exc:
            raise ServiceError(
                "FEEDBACK_ALREADY_SUBMITTED",
                "You have already submitted feedback for this dispute",
                409,
                {},
            ) from exc

        self._logger.info(
            "Dispute feedback recorded",
            extra={"dispute_id": dispute_id, "role": role.value, "was_winner": was_winner},
        )
        return {**feedback, "dispute_id": dispute_id}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        self._role_of(row, agent)
        return self._to_response(row)

    async def list_disputes(
        self,
        agent_id: str,
        *,
        status: str | None = None,
        role: str = "any",
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List an agent's disputes, newest first."""
        agent = resolve_actor(self._directory, agent_id)
        if role not in _LIST_ROLES:
            raise ServiceError(
                "INVALID_PAYLOAD", "role must be claimant, respondent or any", 400, {}
            )
        if status is not None and status not in DisputeStatus.__members__:
            raise ServiceError("INVALID_PAYLOAD", f"Unknown status: {status}", 400, {})
        if not 1 <= limit <= 100 or offset < 0:
            raise ServiceError("INVALID_PAYLOAD", "Invalid pagination parameters", 400, {})

        self._advance_overdue()
        rows = self._disputes.list_for_agent(
            agent["id"], role=role, status=status, limit=limit, offset=offset
        )
        total = self._disputes.count_for_agent(agent["id"], role=role, status=status)
        return {
            "disputes": [self._to_response(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(rows) < total,
        }

    # ------------------------------------------------------------------
    # Ruling and decisions
    # ------------------------------------------------------------------

    async def record_ruling(
        self,
        dispute_id: str,
        ruling: str,
        ruling_reasoning: str,
        *,
        ruling_details: dict[str, Any] | None = None,
        claimant_score_change: int | None = None,
        respondent_score_change: int | None = None,
    ) -> dict[str, Any]:
        """
        Record the arbiter's ruling and open the decision window.

        Only IN_ARBITRATION becomes RULED. An AWAITING_RESPONSE dispute
        past its deadline and a RESPONSE_RECEIVED dispute are moved to
        IN_ARBITRATION first, so a manual ruling follows the same path as
        the orchestrator.
        """
        if ruling not in Ruling.__members__:
            raise ServiceError("INVALID_PAYLOAD", f"Unknown ruling: {ruling}", 400, {})
        _require_text(ruling_reasoning, "ruling_reasoning", MAX_DETAILS_LENGTH)

        row = self._load(dispute_id)
        if row["status"] not in _RULABLE_STATUSES:
            raise self._invalid_status(row, "rule on")
        if row["status"] == DisputeStatus.RESPONSE_RECEIVED:
            row = self.begin_arbitration(dispute_id)

        now = self._clock()
        changed = self._disputes.update(
            row["id"],
            {
                "status": DisputeStatus.RULED.value,
                "ruling": ruling,
                "ruling_reasoning": ruling_reasoning,
                "ruling_details": ruling_details,
                "ruled_at": to_iso(now),
                "claimant_score_change": claimant_score_change,
                "respondent_score_change": respondent_score_change,
                "decision_deadline": add_days(now, self._decision_window_days),
            },
            expected_status=DisputeStatus.IN_ARBITRATION,
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "rule on")

        self._logger.info("Dispute ruled", extra={"dispute_id": dispute_id, "ruling": ruling})
        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "dispute.ruled", response)
        return response

    async def _decide(
        self,
        dispute_id: str,
        agent_id: str,
        decision: Decision,
        rejection_reason: str | None = None,
    ) -> dict[str, Any]:
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        role = self._role_of(row, agent)
        if row["status"] != DisputeStatus.RULED:
            raise self._invalid_status(row, "decide on")

        own_column = f"{role.value.lower()}_decision"
        if row[own_column] != Decision.UNDECIDED:
            raise ServiceError(
                "ALREADY_DECIDED",
                "You have already decided on this ruling",
                409,
                {"decision": row[own_column]},
            )

        updates: dict[str, Any] = {
            own_column: decision.value,
            f"{own_column}_at": to_iso(self._clock()),
        }
        if decision == Decision.REJECTED and rejection_reason is not None:
            updates["rejection_reason"] = rejection_reason
        changed = self._disputes.update(
            row["id"],
            updates,
            expected_status=DisputeStatus.RULED,
            expected={own_column: Decision.UNDECIDED},
        )
        if changed == 0:
            raise ServiceError(
                "ALREADY_DECIDED", "You have already decided on this ruling", 409, {}
            )

        self._logger.info(
            "Dispute decision recorded",
            extra={"dispute_id": dispute_id, "role": role.value, "decision": decision.value},
        )

        closed = False
        if decision == Decision.ACCEPTED:
            # the later of two concurrent acceptances always sees both flags
            closed = (
                self._disputes.update(
                    row["id"],
                    {"status": DisputeStatus.CLOSED.value, "closed_at": to_iso(self._clock())},
                    expected_status=DisputeStatus.RULED,
                    expected={
                        "claimant_decision": Decision.ACCEPTED,
                        "respondent_decision": Decision.ACCEPTED,
                    },
                )
                > 0
            )
            if closed:
                self._logger.info("Dispute closed", extra={"dispute_id": dispute_id})

        response = self._to_response(self._reload(row["id"]))
        await notify_safely(self._notifier, self._logger, "dispute.decided", response)
        if closed:
            await notify_safely(self._notifier, self._logger, "dispute.closed", response)
        return response

    async def accept_decision(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        """Accept the ruling. The dispute closes once both parties accept."""
        return await self._decide(dispute_id, agent_id, Decision.ACCEPTED)

    async def reject_decision(
        self, dispute_id: str, agent_id: str, rejection_reason: str | None = None
    ) -> dict[str, Any]:
        """Reject the ruling, which makes this party eligible to escalate."""
        return await self._decide(dispute_id, agent_id, Decision.REJECTED, rejection_reason)

    async def get_decision(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        agent = resolve_actor(self._directory, agent_id)
        row = self._load(dispute_id)
        role = self._role_of(row, agent)
        own = row[f"{role.value.lower()}_decision"]
        other_role = PartyRole.RESPONDENT if role == PartyRole.CLAIMANT else PartyRole.CLAIMANT
        can_escalate = (
            row["status"] == DisputeStatus.RULED
            and own == Decision.REJECTED
            and self._escalations.get_by_dispute(row["id"]) is None
        )
        return {
            "dispute_id": dispute_id,
            "status": row["status"],
            "ruling": row["ruling"],
            "ruling_reasoning": row["ruling_reasoning"],
            "ruled_at": row["ruled_at"],
            "decision_deadline": row["decision_deadline"],
            "your_role": role.value,
            "your_decision": own,
            "other_party_decision": row[f"{other_role.value.lower()}_decision"],
            "can_escalate": can_escalate,
        }

    # ------------------------------------------------------------------
    # Arbitration hooks and sweeps
    # ------------------------------------------------------------------

    def _advance_overdue(self) -> int:
        count = 0
        for row in self._disputes.list_overdue(to_iso(self._clock())):
            changed = self._disputes.update(
                row["id"],
                {"status": DisputeStatus.IN_ARBITRATION.value},
                expected_status=DisputeStatus.AWAITING_RESPONSE,
            )
            count += changed
        return count

    async def advance_overdue_disputes(self) -> int:
        """Sweep: move every overdue AWAITING_RESPONSE dispute to IN_ARBITRATION."""
        count = self._advance_overdue()
        if count > 0:
            self._logger.info("Advanced overdue disputes", extra={"count": count})
        return count

    async def list_disputes_pending_arbitration(self) -> list[dict[str, Any]]:
        """Disputes ready for a ruling, overdue ones advanced in the same pass."""
        self._advance_overdue()
        rows = self._disputes.list_by_statuses(_PENDING_ARBITRATION_STATUSES)
        return [self._to_response(row) for row in rows]

    def begin_arbitration(self, dispute_id: str) -> dict[str, Any]:
        """
        Move a dispute into IN_ARBITRATION and return its raw row.

        A dispute already IN_ARBITRATION is returned unchanged.
        """
        row = self._load(dispute_id)
        if row["status"] == DisputeStatus.IN_ARBITRATION:
            return row
        if row["status"] != DisputeStatus.RESPONSE_RECEIVED:
            raise self._invalid_status(row, "arbitrate")
        changed = self._disputes.update(
            row["id"],
            {"status": DisputeStatus.IN_ARBITRATION.value},
            expected_status=DisputeStatus.RESPONSE_RECEIVED,
        )
        if changed == 0:
            raise self._invalid_status(self._reload(row["id"]), "arbitrate")
        return self._reload(row["id"])

    def list_evidence_rows(self, dispute_internal_id: str) -> list[dict[str, Any]]:
        return self._evidence.list_for_dispute(dispute_internal_id)

    def count_disputes(self) -> int:
        return self._disputes.count_disputes()

    def count_active(self) -> int:
        return self._disputes.count_active()

"""Escalation of rejected rulings to human arbitration."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.actors import external_id_of, resolve_actor
from resolve_service.services.agent_directory import (
    TRUST_CHANGE_ESCALATION_FAVORABLE,
    TRUST_CHANGE_ESCALATION_UNFAVORABLE,
)
from resolve_service.services.deadlines import to_iso, utc_now
from resolve_service.services.escalation_store import DuplicateEscalationError
from resolve_service.services.identifiers import generate_escalation_id
from resolve_service.services.models import (
    Decision,
    DisputeStatus,
    EscalationStatus,
    PartyRole,
    Ruling,
)
from resolve_service.services.side_effects import after_commit, notify_safely

if TYPE_CHECKING:
    from logging import Logger

    from resolve_service.services.collaborators import AgentDirectory, CreditLedger, Notifier
    from resolve_service.services.database import Database
    from resolve_service.services.deadlines import Clock
    from resolve_service.services.dispute_store import DisputeStore
    from resolve_service.services.escalation_store import EscalationStore

ESCALATION_FEE = 2000
MAX_REASON_LENGTH = 2000

_OPEN_ESCALATION_STATUSES = (EscalationStatus.REQUESTED, EscalationStatus.ASSIGNED)

# which party an arbitrator ruling favours; SPLIT favours neither
_FAVOURED_ROLE: dict[str, PartyRole] = {
    Ruling.CLAIMANT: PartyRole.CLAIMANT,
    Ruling.RESPONDENT: PartyRole.RESPONDENT,
    Ruling.DISMISSED: PartyRole.RESPONDENT,
}


def escalation_trust_change(requester_role: str, arbitrator_ruling: str) -> int:
    """Trust delta for the party that escalated, given the arbitrator's ruling."""
    favoured = _FAVOURED_ROLE.get(arbitrator_ruling)
    if favoured is None:
        return 0
    if favoured == requester_role:
        return TRUST_CHANGE_ESCALATION_FAVORABLE
    return TRUST_CHANGE_ESCALATION_UNFAVORABLE


class EscalationHandler:
    """
    Creates human-review records for rejected rulings and resolves them.

    The escalation fee is debited before the record is written; a write
    failure refunds it.
    """

    def __init__(
        self,
        escalation_store: EscalationStore,
        dispute_store: DisputeStore,
        database: Database,
        directory: AgentDirectory,
        ledger: CreditLedger,
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
        logger: Logger | None = None,
        fee: int = ESCALATION_FEE,
    ) -> None:
        self._escalations = escalation_store
        self._disputes = dispute_store
        self._database = database
        self._directory = directory
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._fee = fee

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _to_response(self, row: dict[str, Any], dispute_id: str) -> dict[str, Any]:
        return {
            "escalation_id": row["escalation_id"],
            "dispute_id": dispute_id,
            "requested_by": external_id_of(self._directory, row["requested_by"]),
            "reason": row["reason"],
            "status": row["status"],
            "arbitrator_ruling": row["arbitrator_ruling"],
            "arbitrator_reasoning": row["arbitrator_reasoning"],
            "arbitrator_notes": row["arbitrator_notes"],
            "credits_charged": row["credits_charged"],
            "requested_at": row["requested_at"],
            "assigned_at": row["assigned_at"],
            "decided_at": row["decided_at"],
            "closed_at": row["closed_at"],
        }

    def _find_dispute(self, dispute_id: str) -> dict[str, Any]:
        row = self._disputes.get_by_external_id(dispute_id)
        if row is None:
            raise ServiceError(
                "DISPUTE_NOT_FOUND", "Dispute not found", 404, {"dispute_id": dispute_id}
            )
        return row

    @staticmethod
    def _role_of(dispute: dict[str, Any], agent: dict[str, Any]) -> PartyRole:
        if agent["id"] == dispute["claimant_id"]:
            return PartyRole.CLAIMANT
        if agent["id"] == dispute["respondent_id"]:
            return PartyRole.RESPONDENT
        raise ServiceError("NOT_PARTY", "You are not a party to this dispute", 403, {})

    def _find_escalation(self, escalation_id: str) -> dict[str, Any]:
        row = self._escalations.get_by_external_id(escalation_id)
        if row is None:
            raise ServiceError(
                "ESCALATION_NOT_FOUND",
                "Escalation not found",
                404,
                {"escalation_id": escalation_id},
            )
        return row

    def _refund_fee(self, account_id: str, dispute_id: str, escalation_id: str) -> None:
        try:
            self._ledger.refund_credits(
                account_id,
                self._fee,
                f"Refund of escalation fee for dispute {dispute_id}",
                "escalation",
                escalation_id,
            )
        except Exception:
            self._logger.exception(
                "Escalation fee refund failed",
                extra={"account_id": account_id, "amount": self._fee, "dispute_id": dispute_id},
            )

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    async def request_escalation(
        self,
        dispute_id: str,
        agent_id: str,
        reason: str,
        paying_account_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Escalate a ruled dispute the caller has rejected.

        Error precedence:
        1. DISPUTE_NOT_FOUND
        2. NOT_PARTY
        3. ALREADY_ESCALATED
        4. INVALID_STATUS
        5. MUST_REJECT_FIRST
        6. INVALID_PAYLOAD
        7. ACCOUNT_NOT_FOUND / INSUFFICIENT_CREDITS (nothing written)
        """
        agent = resolve_actor(self._directory, agent_id)
        dispute = self._find_dispute(dispute_id)
        role = self._role_of(dispute, agent)

        if self._escalations.get_by_dispute(dispute["id"]) is not None:
            raise ServiceError(
                "ALREADY_ESCALATED", "This dispute has already been escalated", 409, {}
            )
        if dispute["status"] != DisputeStatus.RULED:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot escalate dispute in {dispute['status']} status",
                409,
                {"status": dispute["status"]},
            )
        if dispute[f"{role.value.lower()}_decision"] != Decision.REJECTED:
            raise ServiceError(
                "MUST_REJECT_FIRST",
                "You must reject the ruling before requesting escalation",
                409,
                {},
            )
        if not isinstance(reason, str) or not reason.strip() or len(reason) > MAX_REASON_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"reason is required and must be at most {MAX_REASON_LENGTH} characters",
                400,
                {"field": "reason"},
            )

        account_id = paying_account_id or agent["operator_id"]
        escalation_id = generate_escalation_id()
        self._ledger.deduct_credits(
            account_id,
            self._fee,
            f"Escalation fee for dispute {dispute_id}",
            "escalation",
            escalation_id,
        )

        row = {
            "id": f"esc-{uuid.uuid4()}",
            "escalation_id": escalation_id,
            "dispute_id": dispute["id"],
            "requested_by": agent["id"],
            "reason": reason,
            "status": EscalationStatus.REQUESTED.value,
            "arbitrator_ruling": None,
            "arbitrator_reasoning": None,
            "arbitrator_notes": None,
            "credits_charged": self._fee,
            "requested_at": to_iso(self._clock()),
            "assigned_at": None,
            "decided_at": None,
            "closed_at": None,
        }
        try:
            with self._database.transaction():
                self._escalations.insert(row)
                changed = self._disputes.update(
                    dispute["id"],
                    {"status": DisputeStatus.ESCALATED.value},
                    expected_status=DisputeStatus.RULED,
                )
                if changed == 0:
                    raise ServiceError(
                        "INVALID_STATUS", "Dispute is no longer awaiting decisions", 409, {}
                    )
        except DuplicateEscalationError as exc:
            self._refund_fee(account_id, dispute_id, escalation_id)
            raise ServiceError(
                "ALREADY_ESCALATED", "This dispute has already been escalated", 409, {}
            ) from exc
        except Exception:
            self._refund_fee(account_id, dispute_id, escalation_id)
            raise

        self._logger.info(
            "Dispute escalated",
            extra={
                "dispute_id": dispute_id,
                "escalation_id": escalation_id,
                "requested_by": agent["agent_id"],
                "credits_charged": self._fee,
            },
        )
        response = self._to_response(row, dispute_id)
        await notify_safely(self._notifier, self._logger, "dispute.escalated", response)
        return response

    async def get_escalation_status(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        agent = resolve_actor(self._directory, agent_id)
        dispute = self._find_dispute(dispute_id)
        self._role_of(dispute, agent)
        row = self._escalations.get_by_dispute(dispute["id"])
        if row is None:
            raise ServiceError(
                "ESCALATION_NOT_FOUND",
                "No escalation exists for this dispute",
                404,
                {"dispute_id": dispute_id},
            )
        return self._to_response(row, dispute_id)

    async def assign_escalation(self, escalation_id: str) -> dict[str, Any]:
        """Mark a requested escalation as picked up by an arbitrator."""
        row = self._find_escalation(escalation_id)
        changed = self._escalations.update(
            row["id"],
            {"status": EscalationStatus.ASSIGNED.value, "assigned_at": to_iso(self._clock())},
            expected_status=EscalationStatus.REQUESTED,
        )
        if changed == 0:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot assign escalation in {row['status']} status",
                409,
                {"status": row["status"]},
            )
        self._logger.info("Escalation assigned", extra={"escalation_id": escalation_id})
        dispute = self._disputes.get_by_id(row["dispute_id"])
        updated = self._find_escalation(escalation_id)
        return self._to_response(updated, "" if dispute is None else dispute["dispute_id"])

    async def resolve_escalation(
        self,
        escalation_id: str,
        arbitrator_ruling: str,
        arbitrator_reasoning: str,
        arbitrator_notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Record the human arbitrator's decision and close the dispute.

        The requester gains trust when the arbitrator sides with them and
        loses trust when it sides with the other party.
        """
        if arbitrator_ruling not in Ruling.__members__:
            raise ServiceError(
                "INVALID_PAYLOAD", f"Unknown ruling: {arbitrator_ruling}", 400, {}
            )
        if not isinstance(arbitrator_reasoning, str) or not arbitrator_reasoning.strip():
            raise ServiceError(
                "INVALID_PAYLOAD", "arbitrator_reasoning is required", 400, {}
            )

        row = self._find_escalation(escalation_id)
        if row["status"] not in _OPEN_ESCALATION_STATUSES:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot resolve escalation in {row['status']} status",
                409,
                {"status": row["status"]},
            )
        dispute = self._disputes.get_by_id(row["dispute_id"])
        if dispute is None:
            msg = f"Escalation {escalation_id} references a missing dispute"
            raise RuntimeError(msg)

        now_iso = to_iso(self._clock())
        with self._database.transaction():
            changed = self._escalations.update(
                row["id"],
                {
                    "status": EscalationStatus.DECIDED.value,
                    "arbitrator_ruling": arbitrator_ruling,
                    "arbitrator_reasoning": arbitrator_reasoning,
                    "arbitrator_notes": arbitrator_notes,
                    "decided_at": now_iso,
                },
                expected_status=row["status"],
            )
            if changed == 0:
                raise ServiceError(
                    "INVALID_STATUS", "Escalation was resolved by another request", 409, {}
                )
            self._disputes.update(
                dispute["id"],
                {"status": DisputeStatus.CLOSED.value, "closed_at": now_iso},
                expected_status=DisputeStatus.ESCALATED,
            )

        requester_role = (
            PartyRole.CLAIMANT
            if row["requested_by"] == dispute["claimant_id"]
            else PartyRole.RESPONDENT
        )
        delta = escalation_trust_change(requester_role, arbitrator_ruling)
        if delta != 0:
            after_commit(
                self._logger,
                "update_trust_score",
                self._directory.update_trust_score,
                row["requested_by"],
                delta,
                f"Escalation resolved {'favorably' if delta > 0 else 'unfavorably'}",
                escalation_id,
            )

        self._logger.info(
            "Escalation resolved",
            extra={
                "escalation_id": escalation_id,
                "dispute_id": dispute["dispute_id"],
                "arbitrator_ruling": arbitrator_ruling,
            },
        )
        response = self._to_response(self._find_escalation(escalation_id), dispute["dispute_id"])
        await notify_safely(self._notifier, self._logger, "escalation.resolved", response)
        return response

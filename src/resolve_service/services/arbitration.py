"""Arbitration orchestration: arbiter evaluation and ruling side effects."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from resolve_service.arbiters import ArbiterDecision, DisputeContext
from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.agent_directory import calculate_trust_impact
from resolve_service.services.models import Ruling
from resolve_service.services.side_effects import after_commit

if TYPE_CHECKING:
    from logging import Logger

    from resolve_service.arbiters import Arbiter
    from resolve_service.services.collaborators import AgentDirectory
    from resolve_service.services.dispute_manager import DisputeManager
    from resolve_service.services.transaction_store import TransactionStore


class ArbitrationOrchestrator:
    """
    Drives disputes through the arbiter and applies the ruling.

    The arbiter is opaque. A failing or misbehaving arbiter leaves the
    dispute IN_ARBITRATION so it can be retried.
    """

    def __init__(
        self,
        arbiter: Arbiter,
        disputes: DisputeManager,
        transaction_store: TransactionStore,
        directory: AgentDirectory,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._arbiter = arbiter
        self._disputes = disputes
        self._transaction_store = transaction_store
        self._directory = directory
        self._logger = logger if logger is not None else get_logger(__name__)

    def _build_context(self, dispute: dict[str, Any]) -> DisputeContext:
        transaction = self._transaction_store.get_by_id(dispute["transaction_id"])
        evidence = self._disputes.list_evidence_rows(dispute["id"])
        return DisputeContext(
            dispute_id=dispute["dispute_id"],
            transaction_title="" if transaction is None else str(transaction["title"]),
            terms={} if transaction is None else dict(transaction["terms"]),
            stated_value_cents=dispute["stated_value_cents"],
            claim_type=dispute["claim_type"],
            claim_summary=dispute["claim_summary"],
            claim_details=dispute["claim_details"],
            requested_resolution=dispute["requested_resolution"],
            response_summary=dispute["response_summary"],
            response_details=dispute["response_details"],
            evidence=[
                {
                    "submitted_by": item["submitted_by"],
                    "evidence_type": item["evidence_type"],
                    "title": item["title"],
                    "content": item["content"],
                }
                for item in evidence
            ],
        )

    async def _evaluate(self, context: DisputeContext) -> ArbiterDecision:
        try:
            decision = await self._arbiter.evaluate(context)
        except Exception as exc:
            raise ServiceError(
                "ARBITER_UNAVAILABLE",
                "Arbiter failed to evaluate dispute",
                502,
                {"dispute_id": context.dispute_id},
            ) from exc

        if not isinstance(decision, ArbiterDecision) or decision.ruling not in Ruling.__members__:
            raise ServiceError(
                "ARBITER_UNAVAILABLE",
                "Arbiter returned an unusable ruling",
                502,
                {"dispute_id": context.dispute_id},
            )
        if decision.reasoning.strip() == "":
            decision.reasoning = "No reasoning provided."
        return decision

    def _apply_outcome(self, dispute: dict[str, Any], ruling: str, deltas: dict[str, int]) -> None:
        reason = f"Dispute ruling: {ruling}"
        for agent_id, delta in deltas.items():
            if delta != 0:
                after_commit(
                    self._logger,
                    "update_trust_score",
                    self._directory.update_trust_score,
                    agent_id,
                    delta,
                    reason,
                    dispute["dispute_id"],
                )

        if ruling == Ruling.SPLIT:
            return
        claimant_won = ruling == Ruling.CLAIMANT
        after_commit(
            self._logger,
            "record_dispute_outcome",
            self._directory.record_dispute_outcome,
            dispute["claimant_id"],
            won=claimant_won,
        )
        after_commit(
            self._logger,
            "record_dispute_outcome",
            self._directory.record_dispute_outcome,
            dispute["respondent_id"],
            won=not claimant_won,
        )

    async def process_dispute(self, dispute_id: str) -> dict[str, Any]:
        """Rule on one dispute that has a response or missed its deadline."""
        dispute = self._disputes.begin_arbitration(dispute_id)
        decision = await self._evaluate(self._build_context(dispute))

        ruling = decision.ruling
        claimant_delta = calculate_trust_impact(
            ruling, dispute["stated_value_cents"], is_winner=ruling == Ruling.CLAIMANT
        )
        respondent_delta = calculate_trust_impact(
            ruling,
            dispute["stated_value_cents"],
            is_winner=ruling in (Ruling.RESPONDENT, Ruling.DISMISSED),
        )

        response = await self._disputes.record_ruling(
            dispute_id,
            ruling,
            decision.reasoning,
            ruling_details=decision.details,
            claimant_score_change=claimant_delta,
            respondent_score_change=respondent_delta,
        )
        self._apply_outcome(
            dispute,
            ruling,
            {dispute["claimant_id"]: claimant_delta, dispute["respondent_id"]: respondent_delta},
        )
        self._logger.info(
            "Arbitration completed",
            extra={
                "dispute_id": dispute_id,
                "ruling": ruling,
                "claimant_score_change": claimant_delta,
                "respondent_score_change": respondent_delta,
            },
        )
        return response

    async def complete_submission(self, dispute_id: str, agent_id: str) -> dict[str, Any]:
        """
        Mark a party's submission complete and rule at once when both are.

        An arbiter failure here is logged and the dispute stays
        IN_ARBITRATION for the next sweep.
        """
        result = await self._disputes.mark_submission_complete(dispute_id, agent_id)
        result["ruling"] = None
        if not result["both_complete"]:
            return result
        try:
            ruled = await self.process_dispute(dispute_id)
        except ServiceError as exc:
            self._logger.warning(
                "Early arbitration failed",
                extra={"dispute_id": dispute_id, "error_code": exc.error},
            )
            return result
        result["status"] = ruled["status"]
        result["ruling"] = ruled["ruling"]
        return result

    async def process_pending(self) -> dict[str, int]:
        """Rule on every pending dispute; one failure does not stop the batch."""
        processed = 0
        failed = 0
        for dispute in await self._disputes.list_disputes_pending_arbitration():
            try:
                await self.process_dispute(dispute["dispute_id"])
            except ServiceError as exc:
                failed += 1
                self._logger.warning(
                    "Arbitration failed",
                    extra={"dispute_id": dispute["dispute_id"], "error_code": exc.error},
                )
            else:
                processed += 1
        return {"processed": processed, "failed": failed}

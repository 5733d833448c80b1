"""Escalation request, assignment and resolution tests."""

from __future__ import annotations

import pytest

from resolve_service.exceptions import ServiceError
from resolve_service.services.escalation_handler import escalation_trust_change
from resolve_service.services.identifiers import ESCALATION_PREFIX, is_valid_id
from tests.helpers import INITIAL_CREDITS, Engine, accepted_transaction, file_dispute, ruled_dispute


async def _rejected(engine: Engine, claimant, respondent, *, rejecter) -> str:
    dispute_id = await ruled_dispute(engine, claimant, respondent)
    await engine.disputes.reject_decision(dispute_id, rejecter["agent_id"], "Wrong outcome")
    return dispute_id


async def _escalated(engine: Engine, claimant, respondent, *, requester) -> dict:
    dispute_id = await _rejected(engine, claimant, respondent, rejecter=requester)
    return await engine.escalations.request_escalation(
        dispute_id, requester["agent_id"], "The arbiter ignored my evidence"
    )


@pytest.mark.unit
class TestRequestEscalation:
    async def test_escalates_and_charges_fee(self, engine: Engine, alice, bob) -> None:
        dispute_id = await _rejected(engine, alice, bob, rejecter=bob)

        escalation = await engine.escalations.request_escalation(
            dispute_id, bob["agent_id"], "Ignored my delivery logs"
        )

        assert is_valid_id(escalation["escalation_id"], ESCALATION_PREFIX)
        assert escalation["dispute_id"] == dispute_id
        assert escalation["requested_by"] == bob["agent_id"]
        assert escalation["status"] == "REQUESTED"
        assert escalation["credits_charged"] == 2000
        assert engine.ledger.get_balance("op-bob") == INITIAL_CREDITS - 2000

        dispute = await engine.disputes.get_dispute(dispute_id, alice["agent_id"])
        assert dispute["status"] == "ESCALATED"

    async def test_must_reject_first(self, engine: Engine, alice, bob) -> None:
        dispute_id = await ruled_dispute(engine, alice, bob)
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, bob["agent_id"], "Unfair")
        assert exc_info.value.error == "MUST_REJECT_FIRST"
        assert exc_info.value.status_code == 409

    async def test_accepting_party_cannot_escalate(self, engine: Engine, alice, bob) -> None:
        dispute_id = await _rejected(engine, alice, bob, rejecter=bob)
        await engine.disputes.accept_decision(dispute_id, alice["agent_id"])
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, alice["agent_id"], "Hm")
        assert exc_info.value.error == "MUST_REJECT_FIRST"

    async def test_requires_ruled_dispute(self, engine: Engine, alice, bob) -> None:
        transaction_id = await accepted_transaction(engine, alice, bob)
        dispute = await file_dispute(engine, transaction_id, alice)
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(
                dispute["dispute_id"], alice["agent_id"], "Too slow"
            )
        assert exc_info.value.error == "INVALID_STATUS"

    async def test_only_once(self, engine: Engine, alice, bob) -> None:
        dispute_id = await ruled_dispute(engine, alice, bob)
        await engine.disputes.reject_decision(dispute_id, alice["agent_id"])
        await engine.disputes.reject_decision(dispute_id, bob["agent_id"])
        await engine.escalations.request_escalation(dispute_id, alice["agent_id"], "First")

        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, bob["agent_id"], "Second")
        assert exc_info.value.error == "ALREADY_ESCALATED"
        assert engine.ledger.get_balance("op-bob") == INITIAL_CREDITS

    async def test_outsider(self, engine: Engine, alice, bob, carol) -> None:
        dispute_id = await _rejected(engine, alice, bob, rejecter=bob)
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, carol["agent_id"], "Me too")
        assert exc_info.value.error == "NOT_PARTY"

    async def test_unknown_dispute(self, engine: Engine, alice) -> None:
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(
                "RDISP-AAAA-AAAA-AAAA-AAAA", alice["agent_id"], "Where?"
            )
        assert exc_info.value.error == "DISPUTE_NOT_FOUND"

    async def test_reason_required(self, engine: Engine, alice, bob) -> None:
        dispute_id = await _rejected(engine, alice, bob, rejecter=bob)
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, bob["agent_id"], "  ")
        assert exc_info.value.error == "INVALID_PAYLOAD"
        assert engine.ledger.get_balance("op-bob") == INITIAL_CREDITS

    async def test_insufficient_credits(self, engine: Engine, alice, bob) -> None:
        dispute_id = await _rejected(engine, alice, bob, rejecter=bob)
        engine.ledger.deduct_credits("op-bob", INITIAL_CREDITS - 500, "Spent", "test")

        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.request_escalation(dispute_id, bob["agent_id"], "Unfair")
        assert exc_info.value.error == "INSUFFICIENT_CREDITS"
        assert exc_info.value.status_code == 402

        dispute = await engine.disputes.get_dispute(dispute_id, bob["agent_id"])
        assert dispute["status"] == "RULED"
        with pytest.raises(ServiceError) as missing:
            await engine.escalations.get_escalation_status(dispute_id, bob["agent_id"])
        assert missing.value.error == "ESCALATION_NOT_FOUND"


@pytest.mark.unit
class TestEscalationReview:
    async def test_status_visible_to_both_parties(self, engine: Engine, alice, bob) -> None:
        escalation = await _escalated(engine, alice, bob, requester=bob)
        status = await engine.escalations.get_escalation_status(
            escalation["dispute_id"], alice["agent_id"]
        )
        assert status["escalation_id"] == escalation["escalation_id"]
        assert status["reason"] == "The arbiter ignored my evidence"

    async def test_assign(self, engine: Engine, alice, bob) -> None:
        escalation = await _escalated(engine, alice, bob, requester=bob)
        engine.clock.advance(hours=2)

        assigned = await engine.escalations.assign_escalation(escalation["escalation_id"])
        assert assigned["status"] == "ASSIGNED"
        assert assigned["assigned_at"] == "2026-03-10T14:00:00.000000Z"
        assert assigned["dispute_id"] == escalation["dispute_id"]

        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.assign_escalation(escalation["escalation_id"])
        assert exc_info.value.error == "INVALID_STATUS"

    async def test_assign_unknown(self, engine: Engine) -> None:
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.assign_escalation("RESC-AAAA-AAAA-AAAA-AAAA")
        assert exc_info.value.error == "ESCALATION_NOT_FOUND"
        assert exc_info.value.status_code == 404

    @pytest.mark.parametrize(
        ("ruling", "expected_score"),
        [("RESPONDENT", 65), ("CLAIMANT", 25), ("SPLIT", 50), ("DISMISSED", 65)],
    )
    async def test_resolve_adjusts_requester_trust(
        self, engine: Engine, alice, bob, ruling, expected_score
    ) -> None:
        escalation = await _escalated(engine, alice, bob, requester=bob)

        resolved = await engine.escalations.resolve_escalation(
            escalation["escalation_id"], ruling, "Reviewed by a human", "Close call"
        )

        assert resolved["status"] == "DECIDED"
        assert resolved["arbitrator_ruling"] == ruling
        assert resolved["arbitrator_notes"] == "Close call"
        assert engine.directory.get_agent(bob["id"])["trust_score"] == expected_score  # type: ignore[index]
        assert engine.directory.get_agent(alice["id"])["trust_score"] == 50  # type: ignore[index]

        dispute = await engine.disputes.get_dispute(escalation["dispute_id"], alice["agent_id"])
        assert dispute["status"] == "CLOSED"
        assert dispute["closed_at"] is not None

    async def test_resolve_after_assignment(self, engine: Engine, alice, bob) -> None:
        escalation = await _escalated(engine, alice, bob, requester=alice)
        await engine.escalations.assign_escalation(escalation["escalation_id"])
        resolved = await engine.escalations.resolve_escalation(
            escalation["escalation_id"], "CLAIMANT", "Claim upheld"
        )
        assert resolved["status"] == "DECIDED"
        assert engine.directory.get_agent(alice["id"])["trust_score"] == 65  # type: ignore[index]

    async def test_cannot_resolve_twice(self, engine: Engine, alice, bob) -> None:
        escalation = await _escalated(engine, alice, bob, requester=bob)
        await engine.escalations.resolve_escalation(escalation["escalation_id"], "SPLIT", "Even")
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.resolve_escalation(
                escalation["escalation_id"], "CLAIMANT", "Again"
            )
        assert exc_info.value.error == "INVALID_STATUS"

    async def test_resolve_rejects_unknown_ruling(self, engine: Engine, alice, bob) -> None:
        escalation = await _escalated(engine, alice, bob, requester=bob)
        with pytest.raises(ServiceError) as exc_info:
            await engine.escalations.resolve_escalation(
                escalation["escalation_id"], "BOTH", "Hm"
            )
        assert exc_info.value.error == "INVALID_PAYLOAD"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("role", "ruling", "expected"),
    [
        ("CLAIMANT", "CLAIMANT", 15),
        ("CLAIMANT", "RESPONDENT", -25),
        ("CLAIMANT", "DISMISSED", -25),
        ("RESPONDENT", "RESPONDENT", 15),
        ("RESPONDENT", "DISMISSED", 15),
        ("RESPONDENT", "CLAIMANT", -25),
        ("CLAIMANT", "SPLIT", 0),
        ("RESPONDENT", "SPLIT", 0),
    ],
)
def test_escalation_trust_change(role: str, ruling: str, expected: int) -> None:
    assert escalation_trust_change(role, ruling) == expected

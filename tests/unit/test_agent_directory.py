"""Unit tests for the in-process agent directory and trust rules."""

from __future__ import annotations

import pytest
from freezegun import freeze_time

from resolve_service.exceptions import ServiceError
from resolve_service.services.agent_directory import AgentDirectory, calculate_trust_impact
from resolve_service.services.identifiers import AGENT_PREFIX, is_valid_id
from resolve_service.services.models import AgentStatus


@pytest.fixture
def directory(tmp_path):
    agents = AgentDirectory(str(tmp_path / "agents.db"))
    yield agents
    agents.close()


@pytest.mark.unit
class TestRegistration:
    def test_register_agent(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper", "Scraper", "Pulls listings")

        assert is_valid_id(agent["agent_id"], AGENT_PREFIX)
        assert agent["trust_score"] == 50
        assert agent["status"] == "ACTIVE"
        assert directory.resolve_agent(agent["agent_id"]) == agent
        assert directory.get_agent(agent["id"]) == agent

    def test_identifier_unique_per_operator(self, directory: AgentDirectory) -> None:
        directory.register_agent("op-1", "scraper")
        directory.register_agent("op-2", "scraper")

        with pytest.raises(ServiceError) as exc_info:
            directory.register_agent("op-1", "scraper")
        assert exc_info.value.error == "AGENT_ALREADY_REGISTERED"
        assert exc_info.value.status_code == 409

    def test_configured_initial_trust(self, tmp_path) -> None:
        agents = AgentDirectory(str(tmp_path / "agents.db"), initial_trust_score=70)
        assert agents.register_agent("op-1", "a")["trust_score"] == 70
        agents.close()

    def test_status_changes(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper")
        directory.set_status(agent["id"], AgentStatus.SUSPENDED)
        assert directory.agent_status(agent["id"]) == "SUSPENDED"

    def test_unknown_agent(self, directory: AgentDirectory) -> None:
        assert directory.resolve_agent("RAGENT-AAAA-BBBB-CCCC-DDDD") is None
        with pytest.raises(ServiceError) as exc_info:
            directory.increment_transaction_count("agt-missing")
        assert exc_info.value.error == "AGENT_NOT_FOUND"


@pytest.mark.unit
class TestTrustScore:
    def test_changes_are_clamped_and_recorded(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper")

        assert directory.update_trust_score(agent["id"], 80, "Bonus") == 100
        assert directory.update_trust_score(agent["id"], -150, "Penalty", "RDISP-X") == 0

        history = directory.get_trust_history(agent["id"])
        assert [entry["new_score"] for entry in history] == [0, 100]
        assert history[0]["previous_score"] == 100
        assert history[0]["change_amount"] == -150
        assert history[0]["reference_id"] == "RDISP-X"

    def test_completion_adds_one_point(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper")
        directory.record_transaction_completion(agent["id"])

        updated = directory.get_agent(agent["id"])
        assert updated is not None
        assert updated["trust_score"] == 51
        assert updated["completed_transactions"] == 1

    def test_dispute_outcomes(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper")
        directory.record_dispute_outcome(agent["id"], won=True)
        directory.record_dispute_outcome(agent["id"], won=False)
        directory.record_dispute_outcome(agent["id"], won=False)

        updated = directory.get_agent(agent["id"])
        assert updated is not None
        assert (updated["disputes_won"], updated["disputes_lost"]) == (1, 2)


@pytest.mark.unit
class TestDisputeLimit:
    def test_counts_claimant_filings_only(self, directory: AgentDirectory) -> None:
        agent = directory.register_agent("op-1", "scraper")
        for _ in range(4):
            directory.increment_dispute_count(agent["id"], as_claimant=True)
        directory.increment_dispute_count(agent["id"], as_claimant=False)

        limit = directory.check_dispute_limit(agent["id"])
        assert limit.disputes_this_month == 4
        assert limit.can_file is True
        assert limit.limit == 5

        directory.increment_dispute_count(agent["id"], as_claimant=True)
        assert directory.check_dispute_limit(agent["id"]).can_file is False

    def test_monthly_counter_resets_in_new_month(self, directory: AgentDirectory) -> None:
        with freeze_time("2026-01-31 23:00:00"):
            agent = directory.register_agent("op-1", "scraper")
            directory.increment_dispute_count(agent["id"], as_claimant=True)
            directory.increment_dispute_count(agent["id"], as_claimant=True)
            assert directory.check_dispute_limit(agent["id"]).disputes_this_month == 2

        with freeze_time("2026-02-01 00:30:00"):
            assert directory.check_dispute_limit(agent["id"]).disputes_this_month == 0
            directory.increment_dispute_count(agent["id"], as_claimant=True)
            assert directory.check_dispute_limit(agent["id"]).disputes_this_month == 1

        updated = directory.get_agent(agent["id"])
        assert updated is not None
        assert updated["disputes_as_claimant"] == 3


@pytest.mark.unit
class TestTrustImpact:
    """Score deltas for the parties of a ruled dispute."""

    @pytest.mark.parametrize(
        ("value_cents", "expected"),
        [(None, -3), (9_999, -3), (10_000, -5), (99_999, -5), (100_000, -10)],
    )
    def test_loss_scales_with_value(self, value_cents: int | None, expected: int) -> None:
        assert calculate_trust_impact("CLAIMANT", value_cents, is_winner=False) == expected

    def test_win(self) -> None:
        assert calculate_trust_impact("RESPONDENT", 500_000, is_winner=True) == 2

    def test_split_costs_both_parties(self) -> None:
        assert calculate_trust_impact("SPLIT", 50_000, is_winner=False) == -1
        assert calculate_trust_impact("SPLIT", 50_000, is_winner=True) == -1

    def test_dismissed(self) -> None:
        assert calculate_trust_impact("DISMISSED", 50_000, is_winner=False) == -5
        assert calculate_trust_impact("DISMISSED", 50_000, is_winner=True) == 0

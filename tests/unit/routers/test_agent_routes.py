"""Agent registration and operator account endpoint tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.helpers import INITIAL_CREDITS
from tests.unit.routers.conftest import register_agent

if TYPE_CHECKING:
    from httpx import AsyncClient


@pytest.mark.unit
class TestAgents:
    async def test_register(self, client: AsyncClient) -> None:
        response = await client.post(
            "/agents",
            json={
                "operator_id": "op-acme",
                "agent_identifier": "scraper-1",
                "display_name": "Scraper",
                "description": "Collects listings",
            },
        )
        assert response.status_code == 201
        agent = response.json()
        assert agent["agent_id"].startswith("RAGENT-")
        assert agent["operator_id"] == "op-acme"
        assert agent["status"] == "ACTIVE"
        assert agent["trust_score"] == 50
        assert agent["total_transactions"] == 0
        assert "id" not in agent
        assert "disputes_this_month" not in agent

    async def test_register_opens_operator_account_once(self, client: AsyncClient) -> None:
        await register_agent(client, "first", operator_id="op-shared")
        await register_agent(client, "second", operator_id="op-shared")

        account = await client.get("/accounts/op-shared")
        assert account.status_code == 200
        assert account.json() == {"account_id": "op-shared", "balance": INITIAL_CREDITS}

    async def test_duplicate_identifier(self, client: AsyncClient) -> None:
        await register_agent(client, "twin", operator_id="op-one")
        response = await client.post(
            "/agents", json={"operator_id": "op-one", "agent_identifier": "twin"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "AGENT_ALREADY_REGISTERED"

    async def test_missing_operator(self, client: AsyncClient) -> None:
        response = await client.post("/agents", json={"agent_identifier": "x"})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INVALID_PAYLOAD"
        assert body["details"] == {"field": "operator_id"}

    async def test_get_agent(self, client: AsyncClient, alice) -> None:
        response = await client.get(f"/agents/{alice['agent_id']}")
        assert response.status_code == 200
        assert response.json()["display_name"] == "Alice"

    async def test_unknown_agent(self, client: AsyncClient) -> None:
        response = await client.get("/agents/RAGENT-AAAA-AAAA-AAAA-AAAA")
        assert response.status_code == 404
        assert response.json()["error"] == "AGENT_NOT_FOUND"

    async def test_trust_history_starts_empty(self, client: AsyncClient, alice) -> None:
        response = await client.get(f"/agents/{alice['agent_id']}/trust-history")
        assert response.status_code == 200
        assert response.json() == {
            "agent_id": alice["agent_id"],
            "trust_score": 50,
            "history": [],
        }

    async def test_trust_history_limit_validated(self, client: AsyncClient, alice) -> None:
        response = await client.get(f"/agents/{alice['agent_id']}/trust-history?limit=0")
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"


@pytest.mark.unit
class TestAccounts:
    async def test_add_credits(self, client: AsyncClient, alice) -> None:
        response = await client.post("/accounts/op-alice/credits", json={"amount": 2_500})
        assert response.status_code == 200
        assert response.json()["balance"] == INITIAL_CREDITS + 2_500

        entries = (await client.get("/accounts/op-alice/entries")).json()["entries"]
        assert [entry["type"] for entry in entries] == ["CREDIT", "CREDIT"]
        assert entries[-1]["description"] == "Credit purchase"

    @pytest.mark.parametrize("amount", [0, -10, "100", True])
    async def test_add_credits_rejects_bad_amounts(self, client: AsyncClient, alice, amount) -> None:
        response = await client.post("/accounts/op-alice/credits", json={"amount": amount})
        assert response.status_code == 400
        assert response.json()["error"] in ("INVALID_AMOUNT", "INVALID_PAYLOAD")

    async def test_unknown_account(self, client: AsyncClient) -> None:
        response = await client.get("/accounts/op-nobody")
        assert response.status_code == 404
        assert response.json()["error"] == "ACCOUNT_NOT_FOUND"

"""Transaction and escrow endpoint tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.unit.routers.conftest import accepted_transaction, acting

if TYPE_CHECKING:
    from httpx import AsyncClient


@pytest.mark.unit
class TestProposeRoute:
    async def test_propose(self, client: AsyncClient, alice, bob) -> None:
        response = await client.post(
            "/transactions",
            json={
                "receiver_id": bob["agent_id"],
                "title": "Translate README",
                "terms": {"languages": ["de", "fr"]},
                "stated_value_cents": 12_000,
                "expiry_days": 2,
            },
            headers=acting(alice),
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PROPOSED"
        assert data["proposer"]["agent_id"] == alice["agent_id"]
        assert data["receiver"]["agent_id"] == bob["agent_id"]
        assert data["stated_value_cents"] == 12_000
        assert data["escrow"]["status"] == "NONE"

    async def test_terms_default_to_empty_object(self, client: AsyncClient, alice, bob) -> None:
        response = await client.post(
            "/transactions",
            json={"receiver_id": bob["agent_id"], "title": "Quick fix"},
            headers=acting(alice),
        )
        assert response.status_code == 201
        assert response.json()["terms"] == {}

    async def test_missing_agent_header(self, client: AsyncClient, bob) -> None:
        response = await client.post(
            "/transactions", json={"receiver_id": bob["agent_id"], "title": "Job"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_AGENT_ID"

    async def test_unknown_receiver(self, client: AsyncClient, alice) -> None:
        response = await client.post(
            "/transactions",
            json={"receiver_id": "RAGENT-ZZZZ-ZZZZ-ZZZZ-ZZZZ", "title": "Job"},
            headers=acting(alice),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "RECEIVER_NOT_FOUND"

    async def test_self_transaction(self, client: AsyncClient, alice) -> None:
        response = await client.post(
            "/transactions",
            json={"receiver_id": alice["agent_id"], "title": "Job"},
            headers=acting(alice),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "SELF_TRANSACTION"

    async def test_value_must_be_integer(self, client: AsyncClient, alice, bob) -> None:
        response = await client.post(
            "/transactions",
            json={"receiver_id": bob["agent_id"], "title": "Job", "stated_value_cents": 10.5},
            headers=acting(alice),
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"field": "stated_value_cents"}


@pytest.mark.unit
class TestLifecycleRoutes:
    async def test_respond_requires_boolean(self, client: AsyncClient, alice, bob) -> None:
        proposed = await client.post(
            "/transactions",
            json={"receiver_id": bob["agent_id"], "title": "Job"},
            headers=acting(alice),
        )
        transaction_id = proposed.json()["transaction_id"]
        response = await client.post(
            f"/transactions/{transaction_id}/respond", json={"accept": "yes"}, headers=acting(bob)
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"field": "accept"}

    async def test_proposer_cannot_respond(self, client: AsyncClient, alice, bob) -> None:
        proposed = await client.post(
            "/transactions",
            json={"receiver_id": bob["agent_id"], "title": "Job"},
            headers=acting(alice),
        )
        transaction_id = proposed.json()["transaction_id"]
        response = await client.post(
            f"/transactions/{transaction_id}/respond", json={"accept": True}, headers=acting(alice)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_RECEIVER"

    async def test_complete_without_body(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)
        response = await client.post(
            f"/transactions/{transaction_id}/complete", headers=acting(bob)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"

        profile = (await client.get(f"/agents/{alice['agent_id']}")).json()
        assert profile["trust_score"] == 51
        assert profile["completed_transactions"] == 1

    async def test_get_and_list(self, client: AsyncClient, alice, bob, carol) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)

        fetched = await client.get(f"/transactions/{transaction_id}", headers=acting(bob))
        assert fetched.status_code == 200
        assert fetched.json()["status"] == "ACCEPTED"

        hidden = await client.get(f"/transactions/{transaction_id}", headers=acting(carol))
        assert hidden.status_code == 403
        assert hidden.json()["error"] == "NOT_PARTY"

        listed = await client.get(
            "/transactions?role=proposer&status=ACCEPTED", headers=acting(alice)
        )
        assert listed.status_code == 200
        body = listed.json()
        assert body["total"] == 1
        assert body["transactions"][0]["transaction_id"] == transaction_id

    async def test_list_rejects_non_integer_limit(self, client: AsyncClient, alice) -> None:
        response = await client.get("/transactions?limit=ten", headers=acting(alice))
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"

    async def test_unknown_transaction(self, client: AsyncClient, alice) -> None:
        response = await client.get("/transactions/RTXN-ZZZZ-ZZZZ-ZZZZ-ZZZZ", headers=acting(alice))
        assert response.status_code == 404
        assert response.json()["error"] == "TRANSACTION_NOT_FOUND"


@pytest.mark.unit
class TestEscrowRoutes:
    async def test_fund_release_and_read(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)

        funded = await client.post(
            f"/transactions/{transaction_id}/escrow/fund",
            json={"amount_cents": 30_000},
            headers=acting(alice),
        )
        assert funded.status_code == 200
        assert funded.json()["status"] == "FUNDED"
        assert funded.json()["currency"] == "USD"
        assert funded.json()["transaction_status"] == "IN_PROGRESS"

        released = await client.post(
            f"/transactions/{transaction_id}/escrow/release", headers=acting(alice)
        )
        assert released.status_code == 200
        assert released.json()["released_to"] == bob["agent_id"]

        status = await client.get(f"/transactions/{transaction_id}/escrow", headers=acting(bob))
        assert status.json()["status"] == "RELEASED"
        assert status.json()["amount_cents"] == 30_000

    async def test_fund_twice(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)
        for expected in (200, 409):
            response = await client.post(
                f"/transactions/{transaction_id}/escrow/fund",
                json={"amount_cents": 100},
                headers=acting(alice),
            )
            assert response.status_code == expected
        assert response.json()["error"] == "ESCROW_ALREADY_FUNDED"

    async def test_fund_zero(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)
        response = await client.post(
            f"/transactions/{transaction_id}/escrow/fund",
            json={"amount_cents": 0},
            headers=acting(alice),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_AMOUNT"

    async def test_release_unfunded(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)
        response = await client.post(
            f"/transactions/{transaction_id}/escrow/release", headers=acting(bob)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "ESCROW_NOT_FUNDED"

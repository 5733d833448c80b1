"""Health endpoint tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.unit.routers.conftest import accepted_transaction, filed_dispute

if TYPE_CHECKING:
    from httpx import AsyncClient


@pytest.mark.unit
class TestHealth:
    async def test_health_schema(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert isinstance(data["uptime_seconds"], (int, float))
        assert data["started_at"].endswith("Z")
        assert data["total_transactions"] == 0
        assert data["total_disputes"] == 0
        assert data["active_disputes"] == 0
        assert data["sweeps_running"] is False

    async def test_counters_follow_activity(self, client: AsyncClient, alice, bob) -> None:
        transaction_id = await accepted_transaction(client, alice, bob)
        await filed_dispute(client, transaction_id, alice)

        data = (await client.get("/health")).json()
        assert data["total_transactions"] == 1
        assert data["total_disputes"] == 1
        assert data["active_disputes"] == 1

    async def test_post_not_allowed(self, client: AsyncClient) -> None:
        response = await client.post("/health")
        assert response.status_code == 405
        assert response.json()["error"] == "METHOD_NOT_ALLOWED"

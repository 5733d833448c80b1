"""Content-Type, body size, JSON and routing error tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.unit.routers.conftest import acting

if TYPE_CHECKING:
    from httpx import AsyncClient


@pytest.mark.unit
class TestRequestValidation:
    async def test_wrong_content_type(self, client: AsyncClient, alice) -> None:
        response = await client.post(
            "/transactions",
            content=b"receiver_id=x",
            headers={**acting(alice), "Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response.status_code == 415
        assert response.json() == {
            "error": "UNSUPPORTED_MEDIA_TYPE",
            "message": "Content-Type must be application/json",
            "details": {},
        }

    async def test_body_too_large(self, client: AsyncClient, alice) -> None:
        response = await client.post(
            "/disputes",
            content=b'{"claim_summary": "' + b"x" * 1_100_000 + b'"}',
            headers={**acting(alice), "Content-Type": "application/json"},
        )
        assert response.status_code == 413
        assert response.json()["error"] == "PAYLOAD_TOO_LARGE"

    async def test_malformed_json(self, client: AsyncClient, alice) -> None:
        response = await client.post(
            "/transactions",
            content=b"{not json",
            headers={**acting(alice), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"

    async def test_json_array_rejected(self, client: AsyncClient, alice) -> None:
        response = await client.post("/transactions", json=[1, 2], headers=acting(alice))
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"

    async def test_blank_agent_header(self, client: AsyncClient) -> None:
        response = await client.get("/disputes", headers={"X-Agent-ID": "   "})
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_AGENT_ID"

    async def test_unregistered_agent(self, client: AsyncClient) -> None:
        response = await client.get(
            "/transactions", headers={"X-Agent-ID": "RAGENT-ZZZZ-ZZZZ-ZZZZ-ZZZZ"}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "AGENT_NOT_FOUND"

    async def test_bodyless_actions_skip_content_type_check(
        self, client: AsyncClient, alice
    ) -> None:
        response = await client.post(
            "/transactions/RTXN-ZZZZ-ZZZZ-ZZZZ-ZZZZ/complete", headers=acting(alice)
        )
        assert response.status_code == 404
        assert response.json()["error"] == "TRANSACTION_NOT_FOUND"

    async def test_method_not_allowed(self, client: AsyncClient) -> None:
        response = await client.delete("/transactions")
        assert response.status_code == 405
        assert response.json()["error"] == "METHOD_NOT_ALLOWED"

    async def test_unknown_route(self, client: AsyncClient) -> None:
        response = await client.get("/nowhere")
        assert response.status_code == 404
        assert response.json()["error"] == "HTTP_ERROR"

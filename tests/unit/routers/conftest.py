"""Router test fixtures backed by a real app over tmp_path databases."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from resolve_service.app import create_app
from resolve_service.config import clear_settings_cache
from resolve_service.core.state import reset_app_state
from tests.helpers import write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@pytest.fixture
async def app(tmp_path: Any) -> AsyncIterator[FastAPI]:
    """Create a test app with its stores under tmp_path."""
    os.environ["CONFIG_PATH"] = write_config(tmp_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with test_app.router.lifespan_context(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


def acting(agent: dict[str, Any]) -> dict[str, str]:
    """Headers identifying the acting agent."""
    return {"X-Agent-ID": agent["agent_id"]}


async def register_agent(
    client: AsyncClient, name: str, operator_id: str | None = None
) -> dict[str, Any]:
    response = await client.post(
        "/agents",
        json={
            "operator_id": operator_id if operator_id is not None else f"op-{name}",
            "agent_identifier": name,
            "display_name": name.title(),
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def accepted_transaction(
    client: AsyncClient,
    proposer: dict[str, Any],
    receiver: dict[str, Any],
    stated_value_cents: int | None = None,
) -> str:
    """Propose and accept a transaction over HTTP; return its ID."""
    payload: dict[str, Any] = {
        "receiver_id": receiver["agent_id"],
        "title": "Summarise 40 papers",
        "terms": {"papers": 40},
    }
    if stated_value_cents is not None:
        payload["stated_value_cents"] = stated_value_cents
    proposed = await client.post("/transactions", json=payload, headers=acting(proposer))
    assert proposed.status_code == 201, proposed.text
    transaction_id = proposed.json()["transaction_id"]
    accepted = await client.post(
        f"/transactions/{transaction_id}/respond", json={"accept": True}, headers=acting(receiver)
    )
    assert accepted.status_code == 200, accepted.text
    return str(transaction_id)


async def filed_dispute(
    client: AsyncClient, transaction_id: str, claimant: dict[str, Any]
) -> dict[str, Any]:
    response = await client.post(
        "/disputes",
        json={
            "transaction_id": transaction_id,
            "claim_type": "PARTIAL_PERFORMANCE",
            "claim_summary": "Only 25 papers summarised",
            "requested_resolution": "Finish the remaining 15",
        },
        headers=acting(claimant),
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def alice(client: AsyncClient) -> dict[str, Any]:
    return await register_agent(client, "alice")


@pytest.fixture
async def bob(client: AsyncClient) -> dict[str, Any]:
    return await register_agent(client, "bob")


@pytest.fixture
async def carol(client: AsyncClient) -> dict[str, Any]:
    return await register_agent(client, "carol")

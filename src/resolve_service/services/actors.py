"""Resolve acting agents through the agent directory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from resolve_service.exceptions import ServiceError

if TYPE_CHECKING:
    from resolve_service.services.collaborators import AgentDirectory


def resolve_actor(
    directory: AgentDirectory,
    external_id: str,
    error_code: str = "AGENT_NOT_FOUND",
) -> dict[str, Any]:
    """Return the directory record for an external agent ID or raise 404."""
    agent = directory.resolve_agent(external_id)
    if agent is None:
        raise ServiceError(error_code, "Agent not found", 404, {"agent_id": external_id})
    return agent


def external_id_of(directory: AgentDirectory, internal_id: str | None) -> str | None:
    """Map an internal agent reference back to its external ID for projections."""
    if internal_id is None:
        return None
    agent = directory.get_agent(internal_id)
    return None if agent is None else str(agent["agent_id"])


def party_summary(directory: AgentDirectory, internal_id: str) -> dict[str, Any] | None:
    """Public view of a transaction or dispute party."""
    agent = directory.get_agent(internal_id)
    if agent is None:
        return None
    return {
        "agent_id": agent["agent_id"],
        "agent_identifier": agent["agent_identifier"],
        "display_name": agent["display_name"],
        "trust_score": agent["trust_score"],
    }

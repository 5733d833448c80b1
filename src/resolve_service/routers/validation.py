"""Shared request validation helpers for the resolve routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar

from resolve_service.exceptions import ServiceError

if TYPE_CHECKING:
    from fastapi import Request

AGENT_HEADER = "X-Agent-ID"

_T = TypeVar("_T")


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse request body as a JSON object."""
    try:
        parsed = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError("INVALID_JSON", "Request body is not valid JSON", 400, {}) from exc
    if not isinstance(parsed, dict):
        raise ServiceError("INVALID_JSON", "Request body must be a JSON object", 400, {})
    return parsed


def require_agent_id(request: Request) -> str:
    """Acting agent from the X-Agent-ID header."""
    agent_id = request.headers.get(AGENT_HEADER)
    if agent_id is None or agent_id.strip() == "":
        raise ServiceError(
            "MISSING_AGENT_ID", f"{AGENT_HEADER} header is required", 400, {}
        )
    return agent_id.strip()


def require_string(data: dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or value.strip() == "":
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"{field_name} is required and must be a non-empty string",
            400,
            {"field": field_name},
        )
    return value


def optional_string(data: dict[str, Any], field_name: str) -> str | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} must be a string", 400, {"field": field_name}
        )
    return value


def optional_int(data: dict[str, Any], field_name: str) -> int | None:
    value = data.get(field_name)
    if value is None:
        return None
    # bool is an int subclass; true/false is not an amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} must be an integer", 400, {"field": field_name}
        )
    return value


def require_int(data: dict[str, Any], field_name: str) -> int:
    value = optional_int(data, field_name)
    if value is None:
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} is required", 400, {"field": field_name}
        )
    return value


def require_bool(data: dict[str, Any], field_name: str) -> bool:
    value = data.get(field_name)
    if not isinstance(value, bool):
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} must be a boolean", 400, {"field": field_name}
        )
    return value


def optional_object(data: dict[str, Any], field_name: str) -> dict[str, Any] | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} must be a JSON object", 400, {"field": field_name}
        )
    return value


def query_int(request: Request, name: str, default: int) -> int:
    """Parse an integer query parameter."""
    raw = request.query_params.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc


def require_initialized(component: _T | None, name: str) -> _T:
    """Return an app-state component or fail loudly if startup did not build it."""
    if component is None:
        msg = f"{name} not initialized"
        raise RuntimeError(msg)
    return component

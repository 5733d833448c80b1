"""Service error type shared by every layer."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """
    A failure with a stable machine-readable code.

    Raised by the lifecycle managers and collaborators; rendered at the
    HTTP boundary as ``{"error", "message", "details"}`` with ``status_code``.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    def __repr__(self) -> str:
        return f"ServiceError({self.error!r}, {self.message!r}, {self.status_code})"

"""Best-effort event notifications."""

from __future__ import annotations

from typing import Any

import httpx

from resolve_service.logging import get_logger

logger = get_logger(__name__)


class WebhookNotifier:
    """
    POSTs lifecycle events to a webhook URL.

    Delivery is fire-and-forget: failures are logged and never reach the
    caller, so a broken receiver cannot block a state transition.
    """

    def __init__(self, webhook_url: str, timeout_seconds: int) -> None:
        self._webhook_url = webhook_url
        self._client = httpx.AsyncClient(timeout=float(timeout_seconds))

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event."""
        try:
            response = await self._client.post(
                self._webhook_url,
                json={"event": event, "data": payload},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification delivery failed",
                extra={"event": event, "error": str(exc)},
            )
            return

        if response.status_code >= 400:
            logger.warning(
                "Notification rejected by receiver",
                extra={"event": event, "status_code": response.status_code},
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class NullNotifier:
    """Notifier used when no webhook is configured."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Notification skipped", extra={"event": event})

    async def close(self) -> None:
        return None

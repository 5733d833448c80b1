"""Best-effort side effects that run after a state change has committed."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from resolve_service.services.collaborators import Notifier


async def notify_safely(
    notifier: Notifier, logger: Logger, event: str, payload: dict[str, Any]
) -> None:
    """Deliver an event; a failing notifier never fails the operation."""
    try:
        await notifier.notify(event, payload)
    except Exception as exc:
        logger.warning("Notification failed", extra={"event": event, "error": str(exc)})


def after_commit(
    logger: Logger, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> None:
    """Call a collaborator once the state transition is durable."""
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Collaborator update failed after commit", extra={"operation": operation})

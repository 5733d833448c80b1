"""Clock helpers and the lazy deadline guard.

Deadlines are never enforced by a timer. Every read and write path calls
``resolve_deadline`` first, so a record whose deadline has passed behaves
as already transitioned whether or not a sweep has run.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, NamedTuple

from resolve_service.services.models import DisputeStatus, TransactionStatus

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    """Render a datetime as ISO 8601 with microseconds and a Z suffix."""
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse a timestamp produced by to_iso()."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def add_days(moment: datetime, days: int) -> str:
    return to_iso(moment + timedelta(days=days))


def add_hours(moment: datetime, hours: int) -> str:
    return to_iso(moment + timedelta(hours=hours))


class DeadlineResolution(NamedTuple):
    """Outcome of applying a deadline rule at a given instant."""

    status: str
    transitioned: bool


# status waiting on a deadline -> status it falls into once the deadline passes
_TRANSACTION_DEADLINE_RULES: dict[str, str] = {
    TransactionStatus.PROPOSED: TransactionStatus.EXPIRED,
}
_DISPUTE_DEADLINE_RULES: dict[str, str] = {
    DisputeStatus.AWAITING_RESPONSE: DisputeStatus.IN_ARBITRATION,
}


def resolve_deadline(
    status: str,
    deadline: str | None,
    now: datetime,
    rules: dict[str, str],
) -> DeadlineResolution:
    """
    Work out the logical status of a record at ``now``.

    Pure: nothing is persisted. ``transitioned`` is True when the stored
    status is stale and the caller must persist the returned status.
    A deadline equal to ``now`` counts as passed.
    """
    target = rules.get(status)
    if target is None or deadline is None:
        return DeadlineResolution(status, False)
    if now >= parse_iso(deadline):
        return DeadlineResolution(target, True)
    return DeadlineResolution(status, False)


def resolve_transaction(transaction: dict[str, Any], now: datetime) -> DeadlineResolution:
    """Apply the proposal expiry rule to a transaction row."""
    return resolve_deadline(
        transaction["status"], transaction["expires_at"], now, _TRANSACTION_DEADLINE_RULES
    )


def resolve_dispute(dispute: dict[str, Any], now: datetime) -> DeadlineResolution:
    """Apply the response deadline rule to a dispute row."""
    return resolve_deadline(
        dispute["status"], dispute["response_deadline"], now, _DISPUTE_DEADLINE_RULES
    )

"""SQLite-backed escalation storage."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resolve_service.services.database import Database


class DuplicateEscalationError(Exception):
    """Raised when a dispute already has an escalation."""


class EscalationStore:
    """Persistence for escalations. At most one per dispute."""

    _COLUMNS: tuple[str, ...] = (
        "id",
        "escalation_id",
        "dispute_id",
        "requested_by",
        "reason",
        "status",
        "arbitrator_ruling",
        "arbitrator_reasoning",
        "arbitrator_notes",
        "credits_charged",
        "requested_at",
        "assigned_at",
        "decided_at",
        "closed_at",
    )
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM escalations"  # nosec B608

    def __init__(self, database: Database) -> None:
        self._database = database
        self._database.executescript(
            """
            CREATE TABLE IF NOT EXISTS escalations (
                id TEXT PRIMARY KEY,
                escalation_id TEXT NOT NULL UNIQUE,
                dispute_id TEXT NOT NULL UNIQUE REFERENCES disputes(id),
                requested_by TEXT NOT NULL,
                reason TEXT NOT NULL,
                status TEXT NOT NULL,
                arbitrator_ruling TEXT,
                arbitrator_reasoning TEXT,
                arbitrator_notes TEXT,
                credits_charged INTEGER NOT NULL,
                requested_at TEXT NOT NULL,
                assigned_at TEXT,
                decided_at TEXT,
                closed_at TEXT
            );
            """
        )

    def _row_to_escalation(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._COLUMNS}

    def insert(self, escalation: dict[str, Any]) -> None:
        """Insert an escalation; the UNIQUE dispute_id enforces one per dispute."""
        try:
            self._database.execute(
                "INSERT INTO escalations (" + ", ".join(self._COLUMNS) + ") "  # nosec B608
                "VALUES (" + ", ".join("?" for _ in self._COLUMNS) + ")",
                tuple(escalation[column] for column in self._COLUMNS),
            )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateEscalationError(
                    f"Dispute {escalation['dispute_id']} has already been escalated"
                ) from exc
            raise

    def get_by_dispute(self, dispute_internal_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            self._SELECT_SQL + " WHERE dispute_id = ?", (dispute_internal_id,)
        )
        return None if row is None else self._row_to_escalation(row)

    def get_by_external_id(self, escalation_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            self._SELECT_SQL + " WHERE escalation_id = ?", (escalation_id,)
        )
        return None if row is None else self._row_to_escalation(row)

    def update(
        self,
        internal_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Conditionally update an escalation and return the affected row count."""
        if any(column not in self._COLUMNS or column == "id" for column in updates):
            msg = "Attempted to update unknown escalation column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = "UPDATE escalations SET " + set_clause + " WHERE id = ?"  # nosec B608
        params.append(internal_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        return self._database.execute(query, params)

"""SQLite-backed dispute storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from resolve_service.services.models import Decision, DisputeStatus

if TYPE_CHECKING:
    from resolve_service.services.database import Database


class DuplicateDisputeError(Exception):
    """Raised when inserting a dispute whose ID already exists."""


class DisputeStore:
    """Persistence for disputes."""

    _COLUMNS: tuple[str, ...] = (
        "id",
        "dispute_id",
        "transaction_id",
        "claimant_id",
        "respondent_id",
        "claim_type",
        "claim_summary",
        "claim_details",
        "requested_resolution",
        "response_summary",
        "response_details",
        "response_deadline",
        "response_submitted_at",
        "status",
        "ruling",
        "ruling_reasoning",
        "ruling_details",
        "ruled_at",
        "claimant_score_change",
        "respondent_score_change",
        "stated_value_cents",
        "credits_charged",
        "was_free",
        "claimant_decision",
        "respondent_decision",
        "claimant_decision_at",
        "respondent_decision_at",
        "rejection_reason",
        "decision_deadline",
        "closed_at",
        "evidence_count",
        "claimant_submission_complete",
        "respondent_submission_complete",
        "claimant_submission_completed_at",
        "respondent_submission_completed_at",
        "filed_at",
    )
    _FLAG_COLUMNS: frozenset[str] = frozenset(
        {"was_free", "claimant_submission_complete", "respondent_submission_complete"}
    )
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM disputes"  # nosec B608
    _INSERT_SQL = (
        "INSERT INTO disputes ("  # nosec B608
        + ", ".join(_COLUMNS)
        + ") VALUES ("
        + ", ".join("?" for _ in _COLUMNS)
        + ")"
    )

    def __init__(self, database: Database) -> None:
        self._database = database
        self._init_schema()

    def _init_schema(self) -> None:
        self._database.executescript(
            """
            CREATE TABLE IF NOT EXISTS disputes (
                id TEXT PRIMARY KEY,
                dispute_id TEXT NOT NULL UNIQUE,
                transaction_id TEXT NOT NULL REFERENCES transactions(id),
                claimant_id TEXT NOT NULL,
                respondent_id TEXT NOT NULL,
                claim_type TEXT NOT NULL,
                claim_summary TEXT NOT NULL,
                claim_details TEXT,
                requested_resolution TEXT NOT NULL,
                response_summary TEXT,
                response_details TEXT,
                response_deadline TEXT NOT NULL,
                response_submitted_at TEXT,
                status TEXT NOT NULL,
                ruling TEXT,
                ruling_reasoning TEXT,
                ruling_details TEXT,
                ruled_at TEXT,
                claimant_score_change INTEGER,
                respondent_score_change INTEGER,
                stated_value_cents INTEGER,
                credits_charged INTEGER NOT NULL DEFAULT 0,
                was_free INTEGER NOT NULL DEFAULT 1,
                claimant_decision TEXT NOT NULL DEFAULT 'UNDECIDED',
                respondent_decision TEXT NOT NULL DEFAULT 'UNDECIDED',
                claimant_decision_at TEXT,
                respondent_decision_at TEXT,
                rejection_reason TEXT,
                decision_deadline TEXT,
                closed_at TEXT,
                evidence_count INTEGER NOT NULL DEFAULT 0,
                claimant_submission_complete INTEGER NOT NULL DEFAULT 0,
                respondent_submission_complete INTEGER NOT NULL DEFAULT 0,
                claimant_submission_completed_at TEXT,
                respondent_submission_completed_at TEXT,
                filed_at TEXT NOT NULL,
                CHECK (claimant_id != respondent_id),
                CHECK (credits_charged = 0 OR was_free = 0)
            );

            CREATE INDEX IF NOT EXISTS idx_disputes_transaction
                ON disputes(transaction_id, claimant_id);
            CREATE INDEX IF NOT EXISTS idx_disputes_status ON disputes(status, response_deadline);
            """
        )

    def _row_to_dispute(self, row: sqlite3.Row) -> dict[str, Any]:
        record = {column: row[column] for column in self._COLUMNS}
        if record["ruling_details"] is not None:
            record["ruling_details"] = json.loads(record["ruling_details"])
        for column in self._FLAG_COLUMNS:
            record[column] = bool(record[column])
        return record

    def _encode(self, column: str, value: Any) -> Any:
        if column == "ruling_details" and value is not None:
            return json.dumps(value)
        if column in self._FLAG_COLUMNS:
            return int(bool(value))
        return value

    def insert(self, dispute: dict[str, Any]) -> None:
        """Insert a new dispute row."""
        values = tuple(self._encode(column, dispute[column]) for column in self._COLUMNS)
        try:
            self._database.execute(self._INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateDisputeError(
                    f"A dispute with dispute_id={dispute['dispute_id']} already exists"
                ) from exc
            raise

    def get_by_id(self, internal_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(self._SELECT_SQL + " WHERE id = ?", (internal_id,))
        return None if row is None else self._row_to_dispute(row)

    def get_by_external_id(self, dispute_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(self._SELECT_SQL + " WHERE dispute_id = ?", (dispute_id,))
        return None if row is None else self._row_to_dispute(row)

    def update(
        self,
        internal_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """
        Conditionally update a dispute and return the affected row count.

        ``expected`` adds equality guards on further columns, e.g. a party's
        decision still being UNDECIDED.
        """
        if len(updates) == 0:
            return 0
        guarded = list(updates) + list(expected or {})
        if any(column not in self._COLUMNS or column == "id" for column in guarded):
            msg = "Attempted to update unknown dispute column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]
        query = "UPDATE disputes SET " + set_clause + " WHERE id = ?"  # nosec B608
        params.append(internal_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        for column, value in (expected or {}).items():
            query += f" AND {column} = ?"
            params.append(self._encode(column, value))
        return self._database.execute(query, params)

    def increment_evidence_count(self, internal_id: str) -> int:
        return self._database.execute(
            "UPDATE disputes SET evidence_count = evidence_count + 1 WHERE id = ?",
            (internal_id,),
        )

    def find_active(self, transaction_id: str, claimant_id: str) -> dict[str, Any] | None:
        """
        Return the claimant's active dispute on a transaction, if any.

        Active means not CLOSED and not a RULED dispute both parties have
        already decided on.
        """
        row = self._database.fetch_one(
            self._SELECT_SQL + " WHERE transaction_id = ? AND claimant_id = ? "
            "AND status != ? "
            "AND NOT (status = ? AND claimant_decision != ? AND respondent_decision != ?) "
            "ORDER BY filed_at DESC LIMIT 1",
            (
                transaction_id,
                claimant_id,
                DisputeStatus.CLOSED,
                DisputeStatus.RULED,
                Decision.UNDECIDED,
                Decision.UNDECIDED,
            ),
        )
        return None if row is None else self._row_to_dispute(row)

    def list_overdue(self, now_iso: str) -> list[dict[str, Any]]:
        """Disputes still awaiting a response after their deadline."""
        rows = self._database.fetch_all(
            self._SELECT_SQL + " WHERE status = ? AND response_deadline <= ? ORDER BY filed_at",
            (DisputeStatus.AWAITING_RESPONSE, now_iso),
        )
        return [self._row_to_dispute(row) for row in rows]

    def list_by_statuses(self, statuses: tuple[str, ...]) -> list[dict[str, Any]]:
        placeholders = ", ".join("?" for _ in statuses)
        rows = self._database.fetch_all(
            self._SELECT_SQL + f" WHERE status IN ({placeholders}) ORDER BY filed_at",
            statuses,
        )
        return [self._row_to_dispute(row) for row in rows]

    def _agent_filter(
        self, agent_id: str, role: str, status: str | None
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if role == "claimant":
            clauses.append("claimant_id = ?")
            params.append(agent_id)
        elif role == "respondent":
            clauses.append("respondent_id = ?")
            params.append(agent_id)
        else:
            clauses.append("(claimant_id = ? OR respondent_id = ?)")
            params.extend([agent_id, agent_id])
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        return " WHERE " + " AND ".join(clauses), params

    def list_for_agent(
        self,
        agent_id: str,
        *,
        role: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List an agent's disputes, newest first."""
        where, params = self._agent_filter(agent_id, role, status)
        query = self._SELECT_SQL + where + " ORDER BY filed_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [self._row_to_dispute(row) for row in self._database.fetch_all(query, params)]

    def count_for_agent(self, agent_id: str, *, role: str, status: str | None) -> int:
        where, params = self._agent_filter(agent_id, role, status)
        return self._database.fetch_scalar(
            "SELECT COUNT(*) FROM disputes" + where,  # nosec B608
            params,
        )

    def count_disputes(self) -> int:
        """Count total disputes."""
        return self._database.fetch_scalar("SELECT COUNT(*) FROM disputes")

    def count_active(self) -> int:
        """Count disputes that are not closed."""
        return self._database.fetch_scalar(
            "SELECT COUNT(*) FROM disputes WHERE status != ?", (DisputeStatus.CLOSED,)
        )

"""SQLite-backed storage for party feedback on rulings."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resolve_service.services.database import Database


class DuplicateFeedbackError(Exception):
    """Raised when a party rates the same dispute twice."""


class FeedbackStore:
    """Persistence for ruling feedback. One row per party per dispute."""

    _COLUMNS: tuple[str, ...] = (
        "feedback_id",
        "dispute_id",
        "agent_id",
        "party_role",
        "was_winner",
        "fairness_rating",
        "reasoning_rating",
        "evidence_rating",
        "comment",
        "created_at",
    )

    def __init__(self, database: Database) -> None:
        self._database = database
        self._database.executescript(
            """
            CREATE TABLE IF NOT EXISTS dispute_feedback (
                feedback_id TEXT PRIMARY KEY,
                dispute_id TEXT NOT NULL REFERENCES disputes(id),
                agent_id TEXT NOT NULL,
                party_role TEXT NOT NULL CHECK (party_role IN ('CLAIMANT', 'RESPONDENT')),
                was_winner INTEGER NOT NULL,
                fairness_rating INTEGER NOT NULL CHECK (fairness_rating BETWEEN 1 AND 5),
                reasoning_rating INTEGER NOT NULL CHECK (reasoning_rating BETWEEN 1 AND 5),
                evidence_rating INTEGER NOT NULL CHECK (evidence_rating BETWEEN 1 AND 5),
                comment TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (dispute_id, agent_id)
            );
            """
        )

    def insert(self, feedback: dict[str, Any]) -> None:
        values = tuple(
            int(feedback[column]) if column == "was_winner" else feedback[column]
            for column in self._COLUMNS
        )
        try:
            self._database.execute(
                "INSERT INTO dispute_feedback (" + ", ".join(self._COLUMNS) + ") "  # nosec B608
                "VALUES (" + ", ".join("?" for _ in self._COLUMNS) + ")",
                values,
            )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateFeedbackError(
                    f"Feedback from {feedback['agent_id']} already recorded"
                ) from exc
            raise

    def list_for_dispute(self, dispute_internal_id: str) -> list[dict[str, Any]]:
        rows = self._database.fetch_all(
            "SELECT " + ", ".join(self._COLUMNS) + " FROM dispute_feedback "  # nosec B608
            "WHERE dispute_id = ? ORDER BY created_at, rowid",
            (dispute_internal_id,),
        )
        records = [{column: row[column] for column in self._COLUMNS} for row in rows]
        for record in records:
            record["was_winner"] = bool(record["was_winner"])
        return records

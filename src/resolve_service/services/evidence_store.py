"""SQLite-backed evidence storage. Append-only."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resolve_service.services.database import Database


class EvidenceStore:
    """Persistence for evidence attached to disputes."""

    _COLUMNS: tuple[str, ...] = (
        "evidence_id",
        "dispute_id",
        "submitted_by",
        "submitter_id",
        "evidence_type",
        "title",
        "content",
        "created_at",
    )

    def __init__(self, database: Database) -> None:
        self._database = database
        self._database.executescript(
            """
            CREATE TABLE IF NOT EXISTS evidence (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                evidence_id TEXT NOT NULL UNIQUE,
                dispute_id TEXT NOT NULL REFERENCES disputes(id),
                submitted_by TEXT NOT NULL CHECK (submitted_by IN ('CLAIMANT', 'RESPONDENT')),
                submitter_id TEXT NOT NULL,
                evidence_type TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_evidence_dispute ON evidence(dispute_id, seq);
            """
        )

    def insert(self, evidence: dict[str, Any]) -> None:
        self._database.execute(
            "INSERT INTO evidence (" + ", ".join(self._COLUMNS) + ") "  # nosec B608
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            tuple(evidence[column] for column in self._COLUMNS),
        )

    def list_for_dispute(self, dispute_internal_id: str) -> list[dict[str, Any]]:
        """Evidence for a dispute in submission order."""
        rows = self._database.fetch_all(
            "SELECT " + ", ".join(self._COLUMNS) + " FROM evidence "  # nosec B608
            "WHERE dispute_id = ? ORDER BY seq",
            (dispute_internal_id,),
        )
        return [{column: row[column] for column in self._COLUMNS} for row in rows]

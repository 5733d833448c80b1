"""SQLite-backed transaction storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from resolve_service.services.models import TransactionStatus

if TYPE_CHECKING:
    from resolve_service.services.database import Database


class DuplicateTransactionError(Exception):
    """Raised when inserting a transaction whose ID already exists."""


class TransactionStore:
    """Persistence for transactions and their nested escrow state."""

    _COLUMNS: tuple[str, ...] = (
        "id",
        "transaction_id",
        "proposer_id",
        "receiver_id",
        "title",
        "description",
        "terms",
        "stated_value_cents",
        "currency",
        "metadata",
        "status",
        "proposed_at",
        "responded_at",
        "completed_at",
        "expires_at",
        "has_disputes",
        "escrow_amount_cents",
        "escrow_currency",
        "escrow_status",
        "escrow_funded_at",
        "escrow_released_at",
        "escrow_released_to",
    )
    _JSON_COLUMNS: frozenset[str] = frozenset({"terms", "metadata"})
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM transactions"  # nosec B608
    _INSERT_SQL = (
        "INSERT INTO transactions ("  # nosec B608
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
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL UNIQUE,
                proposer_id TEXT NOT NULL,
                receiver_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                terms TEXT NOT NULL,
                stated_value_cents INTEGER,
                currency TEXT NOT NULL DEFAULT 'USD',
                metadata TEXT,
                status TEXT NOT NULL,
                proposed_at TEXT NOT NULL,
                responded_at TEXT,
                completed_at TEXT,
                expires_at TEXT NOT NULL,
                has_disputes INTEGER NOT NULL DEFAULT 0,
                escrow_amount_cents INTEGER,
                escrow_currency TEXT,
                escrow_status TEXT NOT NULL DEFAULT 'NONE',
                escrow_funded_at TEXT,
                escrow_released_at TEXT,
                escrow_released_to TEXT,
                CHECK (proposer_id != receiver_id),
                CHECK (escrow_amount_cents IS NULL OR escrow_amount_cents > 0)
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_proposer ON transactions(proposer_id);
            CREATE INDEX IF NOT EXISTS idx_transactions_receiver ON transactions(receiver_id);
            CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status, expires_at);
            """
        )

    def _row_to_transaction(self, row: sqlite3.Row) -> dict[str, Any]:
        record = {column: row[column] for column in self._COLUMNS}
        for column in self._JSON_COLUMNS:
            if record[column] is not None:
                record[column] = json.loads(record[column])
        record["has_disputes"] = bool(record["has_disputes"])
        return record

    def insert(self, transaction: dict[str, Any]) -> None:
        """Insert a new transaction row."""
        values = tuple(
            json.dumps(transaction[column])
            if column in self._JSON_COLUMNS and transaction[column] is not None
            else transaction[column]
            for column in self._COLUMNS
        )
        try:
            self._database.execute(self._INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTransactionError(
                    f"A transaction with transaction_id={transaction['transaction_id']} "
                    "already exists"
                ) from exc
            raise

    def get_by_id(self, internal_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(self._SELECT_SQL + " WHERE id = ?", (internal_id,))
        return None if row is None else self._row_to_transaction(row)

    def get_by_external_id(self, transaction_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            self._SELECT_SQL + " WHERE transaction_id = ?", (transaction_id,)
        )
        return None if row is None else self._row_to_transaction(row)

    def update(
        self,
        internal_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected_escrow_status: str | None = None,
    ) -> int:
        """
        Conditionally update a transaction and return the affected row count.

        A zero result means another caller moved the row first.
        """
        if len(updates) == 0:
            return 0
        if any(column not in self._COLUMNS or column == "id" for column in updates):
            msg = "Attempted to update unknown transaction column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            json.dumps(value) if column in self._JSON_COLUMNS and value is not None else value
            for column, value in updates.items()
        ]
        query = "UPDATE transactions SET " + set_clause + " WHERE id = ?"  # nosec B608
        params.append(internal_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        if expected_escrow_status is not None:
            query += " AND escrow_status = ?"
            params.append(expected_escrow_status)
        return self._database.execute(query, params)

    def mark_disputed(self, internal_id: str) -> int:
        """Move an eligible transaction to DISPUTED and flag it."""
        return self._database.execute(
            "UPDATE transactions SET status = ?, has_disputes = 1 "
            "WHERE id = ? AND status IN (?, ?, ?)",
            (
                TransactionStatus.DISPUTED,
                internal_id,
                TransactionStatus.ACCEPTED,
                TransactionStatus.IN_PROGRESS,
                TransactionStatus.COMPLETED,
            ),
        )

    def expire_stale(self, now_iso: str) -> int:
        """Bulk-expire PROPOSED transactions whose expiry has passed."""
        return self._database.execute(
            "UPDATE transactions SET status = ? WHERE status = ? AND expires_at <= ?",
            (TransactionStatus.EXPIRED, TransactionStatus.PROPOSED, now_iso),
        )

    def _agent_filter(
        self, agent_id: str, role: str, status: str | None
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if role == "proposer":
            clauses.append("proposer_id = ?")
            params.append(agent_id)
        elif role == "receiver":
            clauses.append("receiver_id = ?")
            params.append(agent_id)
        else:
            clauses.append("(proposer_id = ? OR receiver_id = ?)")
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
        """List an agent's transactions, newest first."""
        where, params = self._agent_filter(agent_id, role, status)
        query = self._SELECT_SQL + where + " ORDER BY proposed_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self._database.fetch_all(query, params)
        return [self._row_to_transaction(row) for row in rows]

    def count_for_agent(self, agent_id: str, *, role: str, status: str | None) -> int:
        where, params = self._agent_filter(agent_id, role, status)
        return self._database.fetch_scalar(
            "SELECT COUNT(*) FROM transactions" + where,  # nosec B608
            params,
        )

    def count_transactions(self) -> int:
        """Count total transactions."""
        return self._database.fetch_scalar("SELECT COUNT(*) FROM transactions")

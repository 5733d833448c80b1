"""SQLite-backed agent directory and trust scoring."""

from __future__ import annotations

import contextlib
import sqlite3
import uuid
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.collaborators import DisputeLimit
from resolve_service.services.deadlines import parse_iso, to_iso, utc_now
from resolve_service.services.identifiers import generate_agent_id
from resolve_service.services.models import AgentStatus, Ruling

if TYPE_CHECKING:
    from resolve_service.services.deadlines import Clock

logger = get_logger(__name__)

INITIAL_TRUST_SCORE = 50
MIN_TRUST_SCORE = 0
MAX_TRUST_SCORE = 100
MONTHLY_DISPUTE_LIMIT = 5

TRUST_CHANGE_TRANSACTION_COMPLETE = 1
TRUST_CHANGE_DISPUTE_WIN = 2
TRUST_CHANGE_DISPUTE_LOSS_SMALL = -3
TRUST_CHANGE_DISPUTE_LOSS_MEDIUM = -5
TRUST_CHANGE_DISPUTE_LOSS_LARGE = -10
TRUST_CHANGE_SPLIT_RULING = -1
TRUST_CHANGE_DISMISSED = -5
TRUST_CHANGE_ESCALATION_FAVORABLE = 15
TRUST_CHANGE_ESCALATION_UNFAVORABLE = -25


def calculate_trust_impact(ruling: str, stated_value_cents: int | None, is_winner: bool) -> int:
    """
    Trust score delta for one party of a ruled dispute.

    Losses scale with the stated value: under $100, under $1000, and above.
    On a DISMISSED ruling the respondent counts as the winner.
    """
    value_cents = stated_value_cents or 0
    if ruling in (Ruling.CLAIMANT, Ruling.RESPONDENT):
        if is_winner:
            return TRUST_CHANGE_DISPUTE_WIN
        if value_cents < 10_000:
            return TRUST_CHANGE_DISPUTE_LOSS_SMALL
        if value_cents < 100_000:
            return TRUST_CHANGE_DISPUTE_LOSS_MEDIUM
        return TRUST_CHANGE_DISPUTE_LOSS_LARGE
    if ruling == Ruling.SPLIT:
        return TRUST_CHANGE_SPLIT_RULING
    if ruling == Ruling.DISMISSED:
        return 0 if is_winner else TRUST_CHANGE_DISMISSED
    return 0


class AgentDirectory:
    """
    Registry of agents with activity counters and a clamped trust score.

    Every score change is written to ``trust_history`` in the same
    transaction as the score update.
    """

    _COLUMNS: tuple[str, ...] = (
        "id",
        "agent_id",
        "operator_id",
        "agent_identifier",
        "display_name",
        "description",
        "status",
        "trust_score",
        "total_transactions",
        "completed_transactions",
        "disputes_as_claimant",
        "disputes_as_respondent",
        "disputes_won",
        "disputes_lost",
        "disputes_this_month",
        "monthly_dispute_reset_at",
        "created_at",
    )
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM agents"  # nosec B608

    def __init__(
        self,
        db_path: str,
        *,
        initial_trust_score: int = INITIAL_TRUST_SCORE,
        monthly_dispute_limit: int = MONTHLY_DISPUTE_LIMIT,
        clock: Clock = utc_now,
    ) -> None:
        self._lock = RLock()
        self._initial_trust_score = initial_trust_score
        self._monthly_dispute_limit = monthly_dispute_limit
        self._clock = clock
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS agents (
                    id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL UNIQUE,
                    operator_id TEXT NOT NULL,
                    agent_identifier TEXT NOT NULL,
                    display_name TEXT,
                    description TEXT,
                    status TEXT NOT NULL,
                    trust_score INTEGER NOT NULL CHECK (trust_score BETWEEN 0 AND 100),
                    total_transactions INTEGER NOT NULL DEFAULT 0,
                    completed_transactions INTEGER NOT NULL DEFAULT 0,
                    disputes_as_claimant INTEGER NOT NULL DEFAULT 0,
                    disputes_as_respondent INTEGER NOT NULL DEFAULT 0,
                    disputes_won INTEGER NOT NULL DEFAULT 0,
                    disputes_lost INTEGER NOT NULL DEFAULT 0,
                    disputes_this_month INTEGER NOT NULL DEFAULT 0,
                    monthly_dispute_reset_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE(operator_id, agent_identifier)
                );

                CREATE TABLE IF NOT EXISTS trust_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL REFERENCES agents(id),
                    previous_score INTEGER NOT NULL,
                    new_score INTEGER NOT NULL,
                    change_amount INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    reference_id TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    def _row_to_agent(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._COLUMNS}

    def _require(self, agent_id: str) -> dict[str, Any]:
        agent = self.get_agent(agent_id)
        if agent is None:
            raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id})
        return agent

    def _increment(self, agent_id: str, assignments: str) -> None:
        with self._lock:
            cursor = self._db.execute(
                "UPDATE agents SET " + assignments + " WHERE id = ?",  # nosec B608
                (agent_id,),
            )
            self._db.commit()
        if cursor.rowcount == 0:
            raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id})

    def register_agent(
        self,
        operator_id: str,
        agent_identifier: str,
        display_name: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Register an agent for an operator. Identifiers are unique per operator."""
        now_iso = to_iso(self._clock())
        agent = {
            "id": f"agt-{uuid.uuid4()}",
            "agent_id": generate_agent_id(),
            "operator_id": operator_id,
            "agent_identifier": agent_identifier,
            "display_name": display_name,
            "description": description,
            "status": AgentStatus.ACTIVE.value,
            "trust_score": self._initial_trust_score,
            "total_transactions": 0,
            "completed_transactions": 0,
            "disputes_as_claimant": 0,
            "disputes_as_respondent": 0,
            "disputes_won": 0,
            "disputes_lost": 0,
            "disputes_this_month": 0,
            "monthly_dispute_reset_at": now_iso,
            "created_at": now_iso,
        }
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    "INSERT INTO agents (" + ", ".join(self._COLUMNS) + ") "  # nosec B608
                    "VALUES (" + ", ".join("?" for _ in self._COLUMNS) + ")",
                    tuple(agent[column] for column in self._COLUMNS),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise ServiceError(
                    "AGENT_ALREADY_REGISTERED",
                    "Agent is already registered",
                    409,
                    {"operator_id": operator_id, "agent_identifier": agent_identifier},
                ) from exc

        logger.info(
            "Agent registered",
            extra={"agent_id": agent["agent_id"], "operator_id": operator_id},
        )
        return agent

    def resolve_agent(self, external_id: str) -> dict[str, Any] | None:
        """Look up an agent by its external identifier."""
        with self._lock:
            row = self._db.execute(
                self._SELECT_SQL + " WHERE agent_id = ?", (external_id,)
            ).fetchone()
        return None if row is None else self._row_to_agent(row)

    def get_agent(self, agent_id: str) -> dict[str, Any] | None:
        """Look up an agent by its internal ID."""
        with self._lock:
            row = self._db.execute(self._SELECT_SQL + " WHERE id = ?", (agent_id,)).fetchone()
        return None if row is None else self._row_to_agent(row)

    def agent_status(self, agent_id: str) -> str:
        return str(self._require(agent_id)["status"])

    def set_status(self, agent_id: str, status: AgentStatus) -> None:
        with self._lock:
            cursor = self._db.execute(
                "UPDATE agents SET status = ? WHERE id = ?", (status.value, agent_id)
            )
            self._db.commit()
        if cursor.rowcount == 0:
            raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id})
        logger.info("Agent status changed", extra={"agent": agent_id, "status": status.value})

    def increment_transaction_count(self, agent_id: str) -> None:
        self._increment(agent_id, "total_transactions = total_transactions + 1")

    def record_transaction_completion(self, agent_id: str) -> None:
        """Count a completed transaction and reward it with a small trust bump."""
        self._increment(agent_id, "completed_transactions = completed_transactions + 1")
        self.update_trust_score(
            agent_id, TRUST_CHANGE_TRANSACTION_COMPLETE, "Transaction completed successfully"
        )

    def check_dispute_limit(self, agent_id: str) -> DisputeLimit:
        """
        Report the agent's disputes this calendar month.

        The monthly counter resets lazily the first time it is read in a
        new calendar month.
        """
        agent = self._require(agent_id)
        now = self._clock()
        reset_at = parse_iso(agent["monthly_dispute_reset_at"])
        disputes_this_month = int(agent["disputes_this_month"])
        if (now.year, now.month) != (reset_at.year, reset_at.month):
            with self._lock:
                self._db.execute(
                    "UPDATE agents SET disputes_this_month = 0, monthly_dispute_reset_at = ? "
                    "WHERE id = ? AND monthly_dispute_reset_at = ?",
                    (to_iso(now), agent_id, agent["monthly_dispute_reset_at"]),
                )
                self._db.commit()
            disputes_this_month = 0
        return DisputeLimit(
            disputes_this_month=disputes_this_month,
            can_file=disputes_this_month < self._monthly_dispute_limit,
            limit=self._monthly_dispute_limit,
        )

    def increment_dispute_count(self, agent_id: str, *, as_claimant: bool) -> None:
        """Count a dispute; only filing one counts toward the monthly total."""
        if as_claimant:
            # bring the month window up to date before counting into it
            self.check_dispute_limit(agent_id)
            self._increment(
                agent_id,
                "disputes_as_claimant = disputes_as_claimant + 1, "
                "disputes_this_month = disputes_this_month + 1",
            )
        else:
            self._increment(agent_id, "disputes_as_respondent = disputes_as_respondent + 1")

    def record_dispute_outcome(self, agent_id: str, *, won: bool) -> None:
        if won:
            self._increment(agent_id, "disputes_won = disputes_won + 1")
        else:
            self._increment(agent_id, "disputes_lost = disputes_lost + 1")

    def update_trust_score(
        self, agent_id: str, delta: int, reason: str, reference_id: str | None = None
    ) -> int:
        """Apply a clamped trust change, record it, and return the new score."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    "SELECT trust_score FROM agents WHERE id = ?", (agent_id,)
                ).fetchone()
                if row is None:
                    raise ServiceError(
                        "AGENT_NOT_FOUND", "Agent not found", 404, {"agent_id": agent_id}
                    )
                previous_score = int(row["trust_score"])
                new_score = max(MIN_TRUST_SCORE, min(MAX_TRUST_SCORE, previous_score + delta))
                self._db.execute(
                    "UPDATE agents SET trust_score = ? WHERE id = ?", (new_score, agent_id)
                )
                self._db.execute(
                    "INSERT INTO trust_history (agent_id, previous_score, new_score, "
                    "change_amount, reason, reference_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        agent_id,
                        previous_score,
                        new_score,
                        delta,
                        reason,
                        reference_id,
                        to_iso(self._clock()),
                    ),
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

        logger.info(
            "Trust score updated",
            extra={
                "agent": agent_id,
                "previous_score": previous_score,
                "new_score": new_score,
                "change": delta,
                "reason": reason,
            },
        )
        return new_score

    def get_trust_history(self, agent_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent trust changes first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT previous_score, new_score, change_amount, reason, reference_id, "
                "created_at FROM trust_history WHERE agent_id = ? ORDER BY seq DESC LIMIT ?",
                (agent_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

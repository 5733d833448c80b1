"""Operator credit ledger: balances and an append-only audit trail."""

from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, cast

from resolve_service.exceptions import ServiceError
from resolve_service.logging import get_logger
from resolve_service.services.deadlines import to_iso, utc_now

if TYPE_CHECKING:
    from resolve_service.services.deadlines import Clock

logger = get_logger(__name__)


class CreditLedger:
    """
    Manages operator credit accounts.

    Every balance mutation and its ledger entry happen in a single
    database transaction. Debits are conditional on the balance covering
    the amount, so a balance can never go negative.
    """

    def __init__(self, db_path: str, *, clock: Clock = utc_now) -> None:
        self._lock = RLock()
        self._clock = clock
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ledger_entries (
                    entry_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(account_id),
                    type TEXT NOT NULL CHECK (type IN ('CREDIT', 'DEDUCTION', 'REFUND')),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    balance_before INTEGER NOT NULL,
                    balance_after INTEGER NOT NULL,
                    description TEXT NOT NULL,
                    reference_type TEXT,
                    reference_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_ledger_entries_account
                    ON ledger_entries(account_id, created_at, entry_id);
                """
            )
            self._db.commit()

    def _now(self) -> str:
        return to_iso(self._clock())

    def _new_entry_id(self) -> str:
        return f"led-{uuid.uuid4()}"

    def create_account(self, account_id: str, initial_balance: int = 0) -> dict[str, object]:
        """
        Create a new account.

        Raises:
            ServiceError: ACCOUNT_EXISTS, INVALID_AMOUNT.
        """
        if initial_balance < 0:
            raise ServiceError("INVALID_AMOUNT", "Initial balance must be non-negative", 400, {})

        now = self._now()
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    "INSERT INTO accounts (account_id, balance, created_at) VALUES (?, ?, ?)",
                    (account_id, 0, now),
                )
                if initial_balance > 0:
                    self._apply(
                        account_id, initial_balance, "CREDIT", "Initial balance", None, None, now
                    )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._db.rollback()
                raise ServiceError(
                    "ACCOUNT_EXISTS", "Account already exists", 409, {"account_id": account_id}
                ) from exc
            except Exception:
                self._db.rollback()
                raise

        return {"account_id": account_id, "balance": initial_balance, "created_at": now}

    def ensure_account(self, account_id: str, initial_balance: int = 0) -> bool:
        """Open an account unless it already exists. Returns True when created."""
        try:
            self.create_account(account_id, initial_balance)
        except ServiceError as exc:
            if exc.error != "ACCOUNT_EXISTS":
                raise
            return False
        return True

    def get_balance(self, account_id: str) -> int:
        """
        Current balance of an account.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND.
        """
        with self._lock:
            row = self._db.execute(
                "SELECT balance FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
        if row is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {})
        return cast("int", row[0])

    def _apply(
        self,
        account_id: str,
        amount: int,
        entry_type: str,
        description: str,
        reference_type: str | None,
        reference_id: str | None,
        now: str,
    ) -> dict[str, object]:
        """Move the balance and log the entry. Caller holds an open transaction."""
        row = self._db.execute(
            "SELECT balance FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {})
        balance_before = cast("int", row[0])

        if entry_type == "DEDUCTION":
            cursor = self._db.execute(
                "UPDATE accounts SET balance = balance - ? WHERE account_id = ? AND balance >= ?",
                (amount, account_id, amount),
            )
            if cursor.rowcount == 0:
                raise ServiceError(
                    "INSUFFICIENT_CREDITS",
                    f"Insufficient credits. Required: {amount}, available: {balance_before}",
                    402,
                    {"required": amount, "available": balance_before},
                )
            balance_after = balance_before - amount
        else:
            self._db.execute(
                "UPDATE accounts SET balance = balance + ? WHERE account_id = ?",
                (amount, account_id),
            )
            balance_after = balance_before + amount

        entry_id = self._new_entry_id()
        self._db.execute(
            "INSERT INTO ledger_entries (entry_id, account_id, type, amount, balance_before, "
            "balance_after, description, reference_type, reference_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry_id,
                account_id,
                entry_type,
                amount,
                balance_before,
                balance_after,
                description,
                reference_type,
                reference_id,
                now,
            ),
        )
        return {
            "entry_id": entry_id,
            "balance_before": balance_before,
            "balance_after": balance_after,
        }

    def _post(
        self,
        account_id: str,
        amount: int,
        entry_type: str,
        description: str,
        reference_type: str | None,
        reference_id: str | None,
    ) -> dict[str, object]:
        if amount <= 0:
            raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                result = self._apply(
                    account_id,
                    amount,
                    entry_type,
                    description,
                    reference_type,
                    reference_id,
                    self._now(),
                )
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise

        logger.info(
            "Ledger entry posted",
            extra={
                "account_id": account_id,
                "type": entry_type,
                "amount": amount,
                "reference_type": reference_type,
                "reference_id": reference_id,
                "balance_after": result["balance_after"],
            },
        )
        return result

    def add_credits(
        self, account_id: str, amount: int, description: str = "Credit purchase"
    ) -> dict[str, object]:
        """Top up an account."""
        return self._post(account_id, amount, "CREDIT", description, None, None)

    def deduct_credits(
        self,
        account_id: str,
        amount: int,
        description: str,
        reference_type: str,
        reference_id: str | None = None,
    ) -> dict[str, object]:
        """
        Debit an account, all or nothing.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND, INVALID_AMOUNT, INSUFFICIENT_CREDITS.
        """
        return self._post(account_id, amount, "DEDUCTION", description, reference_type, reference_id)

    def refund_credits(
        self,
        account_id: str,
        amount: int,
        description: str,
        reference_type: str,
        reference_id: str | None = None,
    ) -> dict[str, object]:
        """Return credits taken by an earlier deduction."""
        return self._post(account_id, amount, "REFUND", description, reference_type, reference_id)

    def list_entries(self, account_id: str) -> list[dict[str, object]]:
        """
        Ledger entries for an account, oldest first.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND.
        """
        self.get_balance(account_id)
        with self._lock:
            cursor = self._db.execute(
                "SELECT entry_id, type, amount, balance_before, balance_after, description, "
                "reference_type, reference_id, created_at FROM ledger_entries "
                "WHERE account_id = ? ORDER BY created_at, rowid",
                (account_id,),
            )
            return [
                {
                    "entry_id": row[0],
                    "type": row[1],
                    "amount": row[2],
                    "balance_before": row[3],
                    "balance_after": row[4],
                    "description": row[5],
                    "reference_type": row[6],
                    "reference_id": row[7],
                    "created_at": row[8],
                }
                for row in cursor.fetchall()
            ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

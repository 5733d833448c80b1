"""Shared SQLite connection with unit-of-work support."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class Database:
    """
    One SQLite connection shared by the entity stores.

    Each store write runs inside ``transaction()``. A store call made while
    an outer ``transaction()`` is open joins it, so several store writes
    commit or roll back together. Callers must not await inside a
    transaction block: the lock is re-entrant per thread.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")

    def executescript(self, script: str) -> None:
        """Run DDL. Used by stores to create their tables."""
        with self._lock:
            self._db.executescript(script)
            self._db.commit()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Open a BEGIN IMMEDIATE transaction, or join the one already open."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            else:
                self._db.commit()
            finally:
                self._depth = 0

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self.transaction():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
        return row

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._db.execute(query, params).fetchall())

    def fetch_scalar(self, query: str, params: Sequence[Any] = ()) -> int:
        row = self.fetch_one(query, params)
        return int(row[0]) if row is not None and row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

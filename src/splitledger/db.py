"""SQLite database operations for SplitLedger."""

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .exceptions import ConflictError, InfrastructureError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    email TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS group_members (
    group_id TEXT NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id),
    joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (group_id, user_id)
);

-- scope_id '' is the global (unscoped) ledger
CREATE TABLE IF NOT EXISTS balance_edges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    debtor_id TEXT NOT NULL,
    creditor_id TEXT NOT NULL,
    scope_id TEXT NOT NULL DEFAULT '',
    net_milliunits INTEGER NOT NULL DEFAULT 0,
    last_updated TIMESTAMP NOT NULL,
    created_at TIMESTAMP NOT NULL,
    UNIQUE (debtor_id, creditor_id, scope_id)
);
CREATE INDEX IF NOT EXISTS idx_edges_creditor ON balance_edges (creditor_id);

CREATE TABLE IF NOT EXISTS expenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    description TEXT NOT NULL,
    amount TEXT NOT NULL,
    paid_by TEXT NOT NULL,
    split_type TEXT NOT NULL,
    participants TEXT NOT NULL,
    group_id TEXT,
    category TEXT NOT NULL DEFAULT 'general',
    notes TEXT NOT NULL DEFAULT '',
    expense_date TIMESTAMP NOT NULL,
    created_by TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_expenses_group ON expenses (group_id, expense_date);
CREATE INDEX IF NOT EXISTS idx_expenses_payer ON expenses (paid_by, expense_date);

CREATE TABLE IF NOT EXISTS settlements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    paid_by TEXT NOT NULL,
    paid_to TEXT NOT NULL,
    amount TEXT NOT NULL,
    group_id TEXT,
    note TEXT NOT NULL DEFAULT '',
    payment_method TEXT NOT NULL,
    payment_status TEXT NOT NULL,
    external_reference TEXT,
    settled_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_settlements_paid_by ON settlements (paid_by, created_at);
CREATE INDEX IF NOT EXISTS idx_settlements_paid_to ON settlements (paid_to, created_at);

CREATE TABLE IF NOT EXISTS audit_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    target_user_id TEXT,
    group_id TEXT,
    expense_id INTEGER,
    settlement_id INTEGER,
    description TEXT NOT NULL DEFAULT '',
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_entries (actor_id, created_at);
CREATE INDEX IF NOT EXISTS idx_audit_group ON audit_entries (group_id, created_at);

CREATE TRIGGER IF NOT EXISTS audit_entries_no_update
BEFORE UPDATE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete
BEFORE DELETE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;
"""


class UnitOfWork:
    """
    A single all-or-nothing transaction on its own connection.

    Every ledger-mutating call takes a UnitOfWork explicitly. Callbacks
    registered with `after_commit` run only once the transaction has been
    committed, outside of it.
    """

    def __init__(self, conn: sqlite3.Connection, writable: bool):
        """Wrap an open connection."""
        self.conn = conn
        self.writable = writable
        self._after_commit: list[Callable[[], Any]] = []

    def execute(self, sql: str, params: tuple | dict = ()) -> sqlite3.Cursor:
        """Execute a statement inside this unit of work."""
        return self.conn.execute(sql, params)

    def after_commit(self, callback: Callable[[], Any]):
        """Run `callback` after a successful commit."""
        self._after_commit.append(callback)

    def _begin(self):
        self.conn.execute("BEGIN IMMEDIATE" if self.writable else "BEGIN DEFERRED")

    def _commit(self):
        self.conn.execute("COMMIT")

    def _rollback(self):
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def _run_after_commit(self):
        for callback in self._after_commit:
            try:
                callback()
            except Exception:
                logger.exception("After-commit callback failed")


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """Initialize database and schema."""
        self.db_path = db_path
        self.timeout = timeout
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        conn = self.connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    def connect(self) -> sqlite3.Connection:
        """Open a new connection; transactions are managed explicitly."""
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def unit_of_work(self, writable: bool = True) -> Iterator[UnitOfWork]:
        """
        Open an atomic unit of work.

        Writable units take the database write lock up front, so concurrent
        operations are fully serialized and a read made inside the unit
        reflects every previously committed unit. Any exception (including
        cancellation) rolls the unit back before it propagates. Read-only
        units always roll back.

        Raises:
            ConflictError: If the write lock could not be acquired in time
            InfrastructureError: If SQLite fails for any other reason
        """
        try:
            conn = self.connect()
        except sqlite3.Error as e:
            raise InfrastructureError("Could not open the ledger database") from e

        uow = UnitOfWork(conn, writable)
        committed = False
        try:
            uow._begin()
            yield uow
            if writable:
                uow._commit()
                committed = True
        except sqlite3.Error as e:
            uow._rollback()
            raise _translate_sqlite_error(e) from e
        except BaseException:
            uow._rollback()
            logger.debug("Unit of work rolled back", exc_info=True)
            raise
        else:
            uow._rollback()
        finally:
            conn.close()

        if committed:
            uow._run_after_commit()


def _translate_sqlite_error(error: sqlite3.Error) -> Exception:
    message = str(error).lower()
    if isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    ):
        logger.warning(f"Unit of work aborted on lock contention: {error}")
        return ConflictError("The ledger is busy, please retry")
    logger.error(f"Unit of work aborted on storage failure: {error}")
    return InfrastructureError("Ledger storage failure")

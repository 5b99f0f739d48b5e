"""Expense and settlement records."""

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from pydantic import TypeAdapter

from .db import UnitOfWork
from .exceptions import NotFoundError
from .models import Expense, ParticipantShare, Settlement, utcnow

logger = logging.getLogger(__name__)

_participants_adapter = TypeAdapter(list[ParticipantShare])


def _optional_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ExpenseStore:
    """Persistence for expenses. Participants are embedded as JSON."""

    _COLUMNS = """
        id, description, amount, paid_by, split_type, participants, group_id,
        category, notes, expense_date, created_by, created_at, updated_at
    """

    def add(self, uow: UnitOfWork, expense: Expense) -> Expense:
        """Insert an expense and return it with its id."""
        cursor = uow.execute(
            """
            INSERT INTO expenses (
                description, amount, paid_by, split_type, participants,
                group_id, category, notes, expense_date, created_by,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                expense.description,
                str(expense.amount),
                expense.paid_by,
                expense.split_type,
                _participants_adapter.dump_json(expense.participants).decode(),
                expense.group_id,
                expense.category,
                expense.notes,
                expense.date.isoformat(),
                expense.created_by,
                expense.created_at.isoformat(),
                expense.updated_at.isoformat(),
            ),
        )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert expense record")
        return expense.model_copy(update={"id": row_id})

    def update(self, uow: UnitOfWork, expense: Expense) -> Expense:
        """Overwrite an existing expense."""
        updated = expense.model_copy(update={"updated_at": utcnow()})
        cursor = uow.execute(
            """
            UPDATE expenses SET
                description = ?, amount = ?, paid_by = ?, split_type = ?,
                participants = ?, category = ?, notes = ?, expense_date = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                updated.description,
                str(updated.amount),
                updated.paid_by,
                updated.split_type,
                _participants_adapter.dump_json(updated.participants).decode(),
                updated.category,
                updated.notes,
                updated.date.isoformat(),
                updated.updated_at.isoformat(),
                updated.id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("expense", expense.id)
        return updated

    def delete(self, uow: UnitOfWork, expense_id: int):
        """Remove an expense."""
        cursor = uow.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("expense", expense_id)

    def get(self, uow: UnitOfWork, expense_id: int) -> Expense:
        """Get an expense by id."""
        row = uow.execute(
            f"SELECT {self._COLUMNS} FROM expenses WHERE id = ?", (expense_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("expense", expense_id)
        return self._row_to_expense(row)

    def list_for_user(
        self,
        uow: UnitOfWork,
        user_id: str,
        group_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        """Expenses the user paid for or takes part in, newest first."""
        sql = f"""
            SELECT {self._COLUMNS} FROM expenses
            WHERE (paid_by = ? OR EXISTS (
                SELECT 1 FROM json_each(expenses.participants)
                WHERE json_extract(json_each.value, '$.user_id') = ?
            ))
        """
        params: tuple = (user_id, user_id)
        if group_id is not None:
            sql += " AND group_id = ?"
            params += (group_id,)
        sql += " ORDER BY expense_date DESC, id DESC LIMIT ? OFFSET ?"
        rows = uow.execute(sql, params + (limit, offset)).fetchall()
        return [self._row_to_expense(row) for row in rows]

    def list_for_group(self, uow: UnitOfWork, group_id: str) -> list[Expense]:
        """Every expense in a group, newest first."""
        rows = uow.execute(
            f"""
            SELECT {self._COLUMNS} FROM expenses
            WHERE group_id = ?
            ORDER BY expense_date DESC, id DESC
            """,
            (group_id,),
        ).fetchall()
        return [self._row_to_expense(row) for row in rows]

    @staticmethod
    def _row_to_expense(row: sqlite3.Row) -> Expense:
        return Expense(
            id=row["id"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            paid_by=row["paid_by"],
            split_type=row["split_type"],
            participants=_participants_adapter.validate_json(row["participants"]),
            group_id=row["group_id"],
            category=row["category"],
            notes=row["notes"],
            date=datetime.fromisoformat(row["expense_date"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SettlementStore:
    """Persistence for settlements and their payment state."""

    _COLUMNS = """
        id, paid_by, paid_to, amount, group_id, note, payment_method,
        payment_status, external_reference, settled_at, created_at
    """

    def add(self, uow: UnitOfWork, settlement: Settlement) -> Settlement:
        """Insert a settlement and return it with its id."""
        cursor = uow.execute(
            """
            INSERT INTO settlements (
                paid_by, paid_to, amount, group_id, note, payment_method,
                payment_status, external_reference, settled_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                settlement.paid_by,
                settlement.paid_to,
                str(settlement.amount),
                settlement.group_id,
                settlement.note,
                settlement.payment_method,
                settlement.payment_status,
                settlement.external_reference,
                settlement.settled_at.isoformat() if settlement.settled_at else None,
                settlement.created_at.isoformat(),
            ),
        )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert settlement record")
        return settlement.model_copy(update={"id": row_id})

    def update_status(self, uow: UnitOfWork, settlement: Settlement) -> Settlement:
        """Persist a settlement's payment state."""
        uow.execute(
            """
            UPDATE settlements SET
                payment_status = ?, external_reference = ?, settled_at = ?
            WHERE id = ?
            """,
            (
                settlement.payment_status,
                settlement.external_reference,
                settlement.settled_at.isoformat() if settlement.settled_at else None,
                settlement.id,
            ),
        )
        return settlement

    def get(self, uow: UnitOfWork, settlement_id: int) -> Settlement:
        """Get a settlement by id."""
        row = uow.execute(
            f"SELECT {self._COLUMNS} FROM settlements WHERE id = ?", (settlement_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("settlement", settlement_id)
        return self._row_to_settlement(row)

    def list_for_user(
        self,
        uow: UnitOfWork,
        user_id: str,
        group_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        """Settlements the user paid or received, newest first."""
        sql = f"""
            SELECT {self._COLUMNS} FROM settlements
            WHERE (paid_by = ? OR paid_to = ?)
        """
        params: tuple = (user_id, user_id)
        if group_id is not None:
            sql += " AND group_id = ?"
            params += (group_id,)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        rows = uow.execute(sql, params + (limit, offset)).fetchall()
        return [self._row_to_settlement(row) for row in rows]

    @staticmethod
    def _row_to_settlement(row: sqlite3.Row) -> Settlement:
        return Settlement(
            id=row["id"],
            paid_by=row["paid_by"],
            paid_to=row["paid_to"],
            amount=Decimal(row["amount"]),
            group_id=row["group_id"],
            note=row["note"],
            payment_method=row["payment_method"],
            payment_status=row["payment_status"],
            external_reference=row["external_reference"],
            settled_at=_optional_datetime(row["settled_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

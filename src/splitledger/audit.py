"""Append-only audit trail of ledger-affecting actions."""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

from .db import UnitOfWork
from .models import AuditEntry, AuditEventType

logger = logging.getLogger(__name__)

_metadata_adapter = TypeAdapter(dict[str, Any])


class AuditLog:
    """
    Records audit entries inside the same unit of work as the ledger writes.

    Entries are never updated or deleted; the table rejects both.
    """

    def record(
        self,
        uow: UnitOfWork,
        event_type: AuditEventType,
        actor_id: str,
        group_id: str | None = None,
        *,
        target_user_id: str | None = None,
        expense_id: int | None = None,
        settlement_id: int | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append an entry and return it with its id."""
        entry = AuditEntry(
            event_type=event_type,
            actor_id=actor_id,
            target_user_id=target_user_id,
            group_id=group_id,
            expense_id=expense_id,
            settlement_id=settlement_id,
            description=description,
            metadata=metadata or {},
        )
        cursor = uow.execute(
            """
            INSERT INTO audit_entries (
                event_type, actor_id, target_user_id, group_id, expense_id,
                settlement_id, description, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.event_type,
                entry.actor_id,
                entry.target_user_id,
                entry.group_id,
                entry.expense_id,
                entry.settlement_id,
                entry.description,
                _metadata_adapter.dump_json(entry.metadata).decode(),
                entry.created_at.isoformat(),
            ),
        )
        logger.debug(f"Audit {event_type} by {actor_id}: {description}")
        return entry.model_copy(update={"id": cursor.lastrowid})

    def list_entries(
        self,
        uow: UnitOfWork,
        user_id: str,
        group_id: str | None = None,
        event_type: AuditEventType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Entries where the user is the actor or the target, newest first."""
        sql = """
            SELECT id, event_type, actor_id, target_user_id, group_id,
                   expense_id, settlement_id, description, metadata, created_at
            FROM audit_entries
            WHERE (actor_id = ? OR target_user_id = ?)
        """
        params: tuple = (user_id, user_id)
        if group_id is not None:
            sql += " AND group_id = ?"
            params += (group_id,)
        if event_type is not None:
            sql += " AND event_type = ?"
            params += (event_type,)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"

        rows = uow.execute(sql, params + (limit, offset)).fetchall()
        return [_row_to_entry(row) for row in rows]

    def entries_for_expense(self, uow: UnitOfWork, expense_id: int) -> list[AuditEntry]:
        """Every entry about one expense, oldest first."""
        rows = uow.execute(
            """
            SELECT id, event_type, actor_id, target_user_id, group_id,
                   expense_id, settlement_id, description, metadata, created_at
            FROM audit_entries
            WHERE expense_id = ?
            ORDER BY id
            """,
            (expense_id,),
        ).fetchall()
        return [_row_to_entry(row) for row in rows]


def _row_to_entry(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        event_type=row["event_type"],
        actor_id=row["actor_id"],
        target_user_id=row["target_user_id"],
        group_id=row["group_id"],
        expense_id=row["expense_id"],
        settlement_id=row["settlement_id"],
        description=row["description"],
        metadata=_metadata_adapter.validate_json(row["metadata"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )

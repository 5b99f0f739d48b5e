"""Directed balance edges between pairs of users."""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from .db import UnitOfWork
from .exceptions import ValidationError
from .models import (
    BalanceDelta,
    BalanceEdge,
    BalanceSummary,
    DirectedAmount,
    Expense,
    utcnow,
)
from .money import ZERO, from_milliunits, sum_amounts, to_milliunits

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = ""

_EDGE_COLUMNS = """
    id, debtor_id, creditor_id, scope_id, net_milliunits, last_updated, created_at
"""


def expense_deltas(expense: Expense) -> list[BalanceDelta]:
    """
    Derive the ledger effect of an expense.

    Every participant other than the payer owes the payer their share.
    Reversing an expense applies the negation of exactly these deltas.
    """
    return [
        BalanceDelta(
            debtor_id=participant.user_id,
            creditor_id=expense.paid_by,
            group_id=expense.group_id,
            amount=participant.share,
        )
        for participant in expense.participants
        if participant.user_id != expense.paid_by
    ]


def _scope_key(group_id: str | None) -> str:
    return group_id if group_id is not None else GLOBAL_SCOPE


def _row_to_edge(row: sqlite3.Row) -> BalanceEdge:
    return BalanceEdge(
        id=row["id"],
        debtor_id=row["debtor_id"],
        creditor_id=row["creditor_id"],
        group_id=row["scope_id"] or None,
        net_amount=from_milliunits(row["net_milliunits"]),
        last_updated=datetime.fromisoformat(row["last_updated"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class LedgerStore:
    """Owns every balance edge. All methods run inside a caller's unit of work."""

    # ========================================================================
    # Writes
    # ========================================================================

    def apply_delta(
        self,
        uow: UnitOfWork,
        debtor_id: str,
        creditor_id: str,
        group_id: str | None,
        delta: Decimal,
    ) -> BalanceEdge:
        """
        Atomically create the edge or increment its net amount by `delta`.

        The increment is done by SQLite itself, never read-then-write, so
        concurrent deltas on the same edge cannot lose updates. The result
        may be negative; see `BalanceEdge.resolve`.
        """
        if debtor_id == creditor_id:
            raise ValidationError("A user cannot owe themselves")

        now = utcnow().isoformat()
        uow.execute(
            """
            INSERT INTO balance_edges (
                debtor_id, creditor_id, scope_id, net_milliunits,
                last_updated, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(debtor_id, creditor_id, scope_id) DO UPDATE SET
                net_milliunits = net_milliunits + excluded.net_milliunits,
                last_updated = excluded.last_updated
            """,
            (
                debtor_id,
                creditor_id,
                _scope_key(group_id),
                to_milliunits(delta),
                now,
                now,
            ),
        )

        edge = self.get_edge(uow, debtor_id, creditor_id, group_id)
        assert edge is not None, "Edge missing after upsert"
        logger.debug(
            f"Applied {delta} to {debtor_id}->{creditor_id} "
            f"[{group_id or 'global'}], now {edge.net_amount}"
        )
        return edge

    def apply(self, uow: UnitOfWork, deltas: Iterable[BalanceDelta]):
        """Apply deltas in order."""
        for delta in deltas:
            self.apply_delta(
                uow, delta.debtor_id, delta.creditor_id, delta.group_id, delta.amount
            )

    # ========================================================================
    # Reads
    # ========================================================================

    def get_edge(
        self,
        uow: UnitOfWork,
        debtor_id: str,
        creditor_id: str,
        group_id: str | None = None,
    ) -> BalanceEdge | None:
        """Get the edge for one (debtor, creditor, scope) triple."""
        row = uow.execute(
            f"""
            SELECT {_EDGE_COLUMNS} FROM balance_edges
            WHERE debtor_id = ? AND creditor_id = ? AND scope_id = ?
            """,
            (debtor_id, creditor_id, _scope_key(group_id)),
        ).fetchone()
        return _row_to_edge(row) if row else None

    def edges_between(
        self,
        uow: UnitOfWork,
        debtor_id: str,
        creditor_id: str,
        group_id: str | None = None,
        all_scopes: bool = False,
    ) -> list[BalanceEdge]:
        """
        Get edges stored in the debtor -> creditor direction.

        With `all_scopes` every scope is included (global and groups);
        otherwise only the edge for `group_id` is returned. Results are in
        edge creation order.
        """
        if all_scopes:
            rows = uow.execute(
                f"""
                SELECT {_EDGE_COLUMNS} FROM balance_edges
                WHERE debtor_id = ? AND creditor_id = ?
                ORDER BY id
                """,
                (debtor_id, creditor_id),
            ).fetchall()
        else:
            rows = uow.execute(
                f"""
                SELECT {_EDGE_COLUMNS} FROM balance_edges
                WHERE debtor_id = ? AND creditor_id = ? AND scope_id = ?
                ORDER BY id
                """,
                (debtor_id, creditor_id, _scope_key(group_id)),
            ).fetchall()
        return [_row_to_edge(row) for row in rows]

    def edges_for_user(
        self, uow: UnitOfWork, user_id: str, group_id: str | None = None
    ) -> list[BalanceEdge]:
        """Get every edge touching a user, optionally limited to one group."""
        sql = f"""
            SELECT {_EDGE_COLUMNS} FROM balance_edges
            WHERE (debtor_id = ? OR creditor_id = ?)
        """
        params: tuple = (user_id, user_id)
        if group_id is not None:
            sql += " AND scope_id = ?"
            params += (group_id,)
        rows = uow.execute(sql + " ORDER BY id", params).fetchall()
        return [_row_to_edge(row) for row in rows]

    def balances_for_user(
        self, uow: UnitOfWork, user_id: str, group_id: str | None = None
    ) -> tuple[list[DirectedAmount], list[DirectedAmount]]:
        """
        Split a user's non-zero balances by direction.

        Returns:
            Tuple of (amounts the user owes, amounts owed to the user)
        """
        owes: list[DirectedAmount] = []
        owed: list[DirectedAmount] = []
        for edge in self.edges_for_user(uow, user_id, group_id):
            resolved = edge.resolve()
            if resolved.amount <= ZERO:
                continue
            if resolved.debtor_id == user_id:
                owes.append(resolved)
            else:
                owed.append(resolved)
        return owes, owed

    def sum_net_by_user(
        self, uow: UnitOfWork, user_id: str, group_id: str | None = None
    ) -> BalanceSummary:
        """Total what a user owes and is owed, counting only positive amounts."""
        owes, owed = self.balances_for_user(uow, user_id, group_id)
        return BalanceSummary(
            user_id=user_id,
            you_owe=sum_amounts(b.amount for b in owes),
            youre_owed=sum_amounts(b.amount for b in owed),
            owed_count=len(owes),
            owed_by_count=len(owed),
        )

"""MCP server for SplitLedger: exposes expenses, settlements and balances as tools."""

import logging
from dataclasses import dataclass

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .db import Database
from .directory import DatabaseDirectory
from .exceptions import InfrastructureError, describe_failure
from .models import ExpenseRequest, ParticipantInput
from .money import parse_amount
from .notifications import NotificationDispatcher
from .service import LedgerService

logger = logging.getLogger(__name__)

mcp_app = FastMCP("splitledger")

# ---------------------------------------------------------------------------
# Session state: one MCP server process serves one conversation
# ---------------------------------------------------------------------------

WORKFLOW_INSTRUCTIONS = """\
You are helping a group of people track shared expenses. Follow these rules:

1. Before recording anything, call get_balances for the acting user so you
   know the current state.
2. To record an expense call add_expense. Participants are given as
   `user` or `user=share`; shares are amounts for exact splits and
   percentages for percentage splits.
3. To pay someone back call settle_up. It is rejected when the payer owes
   nothing or pays more than they owe; report the message to the user.
4. Use list_activity to explain how a balance came about.

Always show amounts in accounting format. Negative = you owe, \
positive = you are owed.\
"""


@dataclass
class SessionState:
    """Holds state between MCP tool calls within a single conversation."""

    service: LedgerService | None = None
    db: Database | None = None
    notifier: NotificationDispatcher | None = None


_state = SessionState()


def _ensure_service() -> LedgerService:
    """Lazily initialize the LedgerService (loads .env config)."""
    if _state.service is None:
        settings = load_settings()
        _state.db = Database(
            settings.database_path, timeout=settings.busy_timeout_seconds
        )
        directory = DatabaseDirectory(_state.db)
        _state.notifier = NotificationDispatcher(
            webhook_url=settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
            max_workers=settings.notification_workers,
        )
        _state.service = LedgerService(_state.db, directory, directory, _state.notifier)
    return _state.service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_amount(amount) -> str:
    """Format an amount as accounting-style dollar string."""
    if amount < 0:
        return f"(${abs(amount):,.2f})"
    return f"${amount:,.2f}"


def _parse_participants(participants: list[str]) -> list[ParticipantInput]:
    parsed = []
    for item in participants:
        user_id, _, share = item.partition("=")
        parsed.append(
            ParticipantInput(
                user_id=user_id.strip(),
                share=parse_amount(share) if share.strip() else None,
            )
        )
    return parsed


def _error(action: str, error: Exception) -> str:
    failure = describe_failure(error)
    if failure.code == InfrastructureError.code:
        logger.exception(f"Failed to {action}")
    suffix = " (temporary, retry)" if failure.retryable else ""
    return f"Error: {failure.message}{suffix}"


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------


@mcp_app.tool()
def add_expense(
    actor_id: str,
    description: str,
    amount: str,
    participants: list[str],
    split_type: str = "equal",
    paid_by: str | None = None,
    group_id: str | None = None,
    category: str = "general",
) -> str:
    """Record a shared expense.

    Args:
        actor_id: User recording the expense.
        description: What the money was spent on.
        amount: Total amount as a decimal string, e.g. "42.50".
        participants: Entries of the form "user" or "user=share".
        split_type: "equal", "exact" or "percentage".
        paid_by: Who paid; defaults to actor_id.
        group_id: Optional group the expense belongs to.
        category: Spending category.
    """
    try:
        service = _ensure_service()
        expense = service.create_expense(
            actor_id,
            ExpenseRequest(
                description=description,
                amount=parse_amount(amount),
                participants=_parse_participants(participants),
                split_type=split_type,
                paid_by=paid_by,
                group_id=group_id,
                category=category,
            ),
        )
        lines = [
            f"Recorded expense #{expense.id}: {expense.description} "
            f"({_format_amount(expense.amount)}, paid by {expense.paid_by})",
            "Shares:",
        ]
        for p in expense.participants:
            lines.append(f"  - {p.user_id}: {_format_amount(p.share)}")
        return "\n".join(lines)
    except Exception as e:
        return _error("add expense", e)


@mcp_app.tool()
def settle_up(
    actor_id: str,
    recipient_id: str,
    amount: str,
    group_id: str | None = None,
    note: str = "",
) -> str:
    """Record a payment from the acting user to another user.

    Args:
        actor_id: User making the payment.
        recipient_id: User receiving it.
        amount: Amount paid as a decimal string.
        group_id: Settle only debts in this group; omit to settle across all.
        note: Optional note.
    """
    try:
        service = _ensure_service()
        settlement, result = service.record_settlement(
            actor_id, recipient_id, parse_amount(amount), group_id, note
        )
        return (
            f"Recorded payment #{settlement.id} of "
            f"{_format_amount(settlement.amount)} to {recipient_id}. "
            f"Debt went from {_format_amount(result.previous_debt)} "
            f"to {_format_amount(result.remaining_debt)}."
        )
    except Exception as e:
        return _error("settle up", e)


@mcp_app.tool()
def get_balances(user_id: str, group_id: str | None = None) -> str:
    """Show what a user owes and is owed, per counterparty.

    Args:
        user_id: User to report on.
        group_id: Optional group to limit the report to.
    """
    try:
        service = _ensure_service()
        summary = service.balance_summary(user_id, group_id)
        owes, owed = service.detailed_balances(user_id, group_id)

        lines = [f"Balances for {user_id}:"]
        for d in owes:
            scope = f" [{d.group_id}]" if d.group_id else ""
            lines.append(f"  owes {d.creditor_id}{scope}: {_format_amount(-d.amount)}")
        for d in owed:
            scope = f" [{d.group_id}]" if d.group_id else ""
            lines.append(f"  owed by {d.debtor_id}{scope}: {_format_amount(d.amount)}")
        if not owes and not owed:
            lines.append("  All settled up.")
        lines.append(f"Net: {_format_amount(summary.net_balance)}")
        return "\n".join(lines)
    except Exception as e:
        return _error("get balances", e)


@mcp_app.tool()
def list_activity(user_id: str, group_id: str | None = None, limit: int = 20) -> str:
    """List recent ledger activity involving a user.

    Args:
        user_id: User whose activity to list.
        group_id: Optional group filter.
        limit: Maximum number of entries.
    """
    try:
        service = _ensure_service()
        entries = service.activity(user_id, group_id, limit=limit)
        if not entries:
            return f"No activity for {user_id}."

        lines = [f"Recent activity for {user_id}:"]
        for entry in entries:
            lines.append(
                f"  - {entry.created_at:%Y-%m-%d %H:%M} | {entry.event_type} | "
                f"{entry.actor_id} | {entry.description}"
            )
        return "\n".join(lines)
    except Exception as e:
        return _error("list activity", e)


# ---------------------------------------------------------------------------
# MCP Prompt
# ---------------------------------------------------------------------------


@mcp_app.prompt()
def ledger_workflow() -> str:
    """Instructions for recording expenses and settling debts."""
    return WORKFLOW_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_server():
    """Start the MCP server (stdio transport)."""
    try:
        mcp_app.run(transport="stdio")
    finally:
        if _state.notifier is not None:
            _state.notifier.close()

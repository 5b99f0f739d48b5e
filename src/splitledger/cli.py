"""CLI for SplitLedger using Typer."""

import logging
import sys
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .db import Database
from .directory import DatabaseDirectory
from .exceptions import ValidationError, describe_failure
from .mcp_server import run_server
from .models import ExpenseRequest, ExpenseUpdate, ParticipantInput, UserProfile
from . import money
from .notifications import NotificationDispatcher
from .service import LedgerService

app = typer.Typer(
    name="splitledger",
    help="Track shared expenses and settle debts between users",
)
expense_app = typer.Typer(help="Create, edit and delete expenses")
payment_app = typer.Typer(help="Two-step external payments")
app.add_typer(expense_app, name="expense")
app.add_typer(payment_app, name="payment")

console = Console()

SPLIT_TYPES = ("equal", "exact", "percentage")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class _Context:
    """Wires the service to the configured database and notifier."""

    def __init__(self):
        settings = load_settings()
        self.db = Database(settings.database_path, timeout=settings.busy_timeout_seconds)
        self.directory = DatabaseDirectory(self.db)
        self.notifier = NotificationDispatcher(
            webhook_url=settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
            max_workers=settings.notification_workers,
        )
        self.service = LedgerService(
            self.db, self.directory, self.directory, self.notifier
        )

    def close(self):
        self.notifier.close()


def _fail(error: Exception, verbose: bool):
    failure = describe_failure(error)
    console.print(f"\n[bold red]Error:[/bold red] {failure.message}")
    if failure.retryable:
        console.print("[yellow]This is temporary; try again.[/yellow]")
    if verbose:
        raise error
    sys.exit(1)


def parse_amount(value: str) -> Decimal:
    """Parse a money amount given on the command line."""
    try:
        return money.parse_amount(value.strip().lstrip("$").replace(",", ""))
    except ValidationError:
        raise typer.BadParameter(f"Not a valid amount: {value}") from None


def parse_split_type(value: str | None) -> str | None:
    """Check a split type given on the command line."""
    if value is not None and value not in SPLIT_TYPES:
        raise typer.BadParameter(
            f"Unknown split type: {value} (choose from {', '.join(SPLIT_TYPES)})"
        )
    return value


def parse_participant(value: str) -> ParticipantInput:
    """
    Parse `user` or `user=share`.

    The share is an amount for exact splits and a percentage for percentage
    splits; leaving it out means an equal part of what is left.
    """
    user_id, sep, share = value.partition("=")
    user_id = user_id.strip()
    if not user_id:
        raise typer.BadParameter(f"Missing user id in participant: {value}")
    if not sep or not share.strip():
        return ParticipantInput(user_id=user_id)
    return ParticipantInput(user_id=user_id, share=parse_amount(share))


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format money in accounting style.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"($[red]{abs_amount:,.2f}[/red])"
        return f"(${abs_amount:,.2f})"
    if use_color:
        return f" [green]${abs_amount:,.2f}[/green] "
    return f" ${abs_amount:,.2f} "


def display_expense(expense):
    """Show an expense and its resolved shares."""
    console.print(
        f"\n[bold]Expense #{expense.id}:[/bold] {expense.description} "
        f"({expense.split_type} split)"
    )
    console.print(f"  Paid by: {expense.paid_by}")
    console.print(f"  Total: {format_money(expense.amount)}")
    if expense.group_id:
        console.print(f"  Group: {expense.group_id}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Participant", style="cyan")
    table.add_column("Share", justify="right", width=14)
    for p in expense.participants:
        table.add_row(p.user_id, format_money(p.share))
    console.print(table)


ActorOption = typer.Option(..., "--as", help="User performing the action")
GroupOption = typer.Option(None, "--group", "-g", help="Limit to one group")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


# ============================================================================
# Directory commands
# ============================================================================


@app.command("add-user")
def add_user(
    user_id: str = typer.Argument(..., help="Unique user id"),
    display_name: str = typer.Argument(..., help="Name shown to other users"),
    email: str | None = typer.Option(None, "--email", help="Contact address"),
    verbose: bool = VerboseOption,
):
    """Create or update a user."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        ctx.directory.save_user(
            UserProfile(id=user_id, display_name=display_name, email=email)
        )
        console.print(f"[green]✓ Saved user {user_id}[/green]")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@app.command("add-member")
def add_member(
    group_id: str = typer.Argument(..., help="Group id"),
    user_id: str = typer.Argument(..., help="User to add"),
    verbose: bool = VerboseOption,
):
    """Add a user to a group."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        if ctx.directory.resolve_user(user_id) is None:
            console.print(f"[yellow]Unknown user {user_id}; run add-user first.[/yellow]")
            raise typer.Exit(1)
        ctx.directory.add_member(group_id, user_id)
        console.print(f"[green]✓ Added {user_id} to {group_id}[/green]")
    except typer.Exit:
        raise
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


# ============================================================================
# Expense commands
# ============================================================================


@expense_app.command("add")
def expense_add(
    description: str = typer.Argument(..., help="What the money was spent on"),
    amount: str = typer.Argument(..., help="Total amount, e.g. 42.50"),
    actor: str = ActorOption,
    participants: list[str] = typer.Option(
        ..., "--with", "-w", help="Participant as `user` or `user=share` (repeatable)"
    ),
    split_type: str = typer.Option(
        "equal", "--split", "-s", help="equal, exact or percentage"
    ),
    paid_by: str | None = typer.Option(None, "--paid-by", help="Defaults to --as"),
    group_id: str | None = GroupOption,
    category: str = typer.Option("general", "--category", "-c"),
    notes: str = typer.Option("", "--notes"),
    verbose: bool = VerboseOption,
):
    """Record a shared expense."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        expense = ctx.service.create_expense(
            actor,
            ExpenseRequest(
                description=description,
                amount=parse_amount(amount),
                participants=[parse_participant(p) for p in participants],
                split_type=parse_split_type(split_type),
                paid_by=paid_by,
                group_id=group_id,
                category=category,
                notes=notes,
            ),
        )
        display_expense(expense)
        console.print("[green]✓ Expense recorded[/green]\n")
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@expense_app.command("edit")
def expense_edit(
    expense_id: int = typer.Argument(..., help="Expense to edit"),
    actor: str = ActorOption,
    description: str | None = typer.Option(None, "--description", "-d"),
    amount: str | None = typer.Option(None, "--amount", "-a"),
    participants: list[str] | None = typer.Option(
        None, "--with", "-w", help="Replace participants (repeatable)"
    ),
    split_type: str | None = typer.Option(None, "--split", "-s"),
    category: str | None = typer.Option(None, "--category", "-c"),
    notes: str | None = typer.Option(None, "--notes"),
    verbose: bool = VerboseOption,
):
    """Edit an expense you created."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        update = ExpenseUpdate(
            description=description,
            amount=parse_amount(amount) if amount is not None else None,
            split_type=parse_split_type(split_type),
            participants=(
                [parse_participant(p) for p in participants] if participants else None
            ),
            category=category,
            notes=notes,
        )
        expense = ctx.service.edit_expense(actor, expense_id, update)
        display_expense(expense)
        console.print("[green]✓ Expense updated[/green]\n")
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@expense_app.command("delete")
def expense_delete(
    expense_id: int = typer.Argument(..., help="Expense to delete"),
    actor: str = ActorOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    verbose: bool = VerboseOption,
):
    """Delete an expense you created and reverse its balances."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        if not yes:
            expense = ctx.service.get_expense(actor, expense_id)
            display_expense(expense)
            if not typer.confirm("Delete this expense?"):
                console.print("[yellow]Cancelled.[/yellow]")
                return
        expense = ctx.service.delete_expense(actor, expense_id)
        console.print(f"[green]✓ Deleted expense #{expense.id}[/green]")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@expense_app.command("change-payer")
def expense_change_payer(
    expense_id: int = typer.Argument(..., help="Expense to change"),
    new_payer: str = typer.Argument(..., help="Participant who actually paid"),
    actor: str = ActorOption,
    verbose: bool = VerboseOption,
):
    """Move an expense to a different payer, keeping every share."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        expense = ctx.service.change_payer(actor, expense_id, new_payer)
        display_expense(expense)
        console.print("[green]✓ Payer changed[/green]\n")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@expense_app.command("list")
def expense_list(
    actor: str = ActorOption,
    group_id: str | None = GroupOption,
    limit: int = typer.Option(20, "--limit", "-n"),
    verbose: bool = VerboseOption,
):
    """List expenses you paid for or take part in."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        expenses = ctx.service.list_expenses(actor, group_id, limit=limit)
        if not expenses:
            console.print("[yellow]No expenses found.[/yellow]")
            return

        table = Table(title="Expenses", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim", width=6)
        table.add_column("Date", width=10)
        table.add_column("Description", style="cyan", width=32)
        table.add_column("Paid by")
        table.add_column("Total", justify="right", width=14)
        table.add_column("Your share", justify="right", width=14)
        for e in expenses:
            share = next((p.share for p in e.participants if p.user_id == actor), None)
            table.add_row(
                str(e.id),
                str(e.date.date()),
                e.description[:32],
                e.paid_by,
                format_money(e.amount),
                format_money(share) if share is not None else "[dim]-[/dim]",
            )
        console.print(table)
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


# ============================================================================
# Settlement commands
# ============================================================================


@app.command()
def settle(
    recipient: str = typer.Argument(..., help="User you are paying"),
    amount: str = typer.Argument(..., help="Amount paid"),
    actor: str = ActorOption,
    group_id: str | None = GroupOption,
    note: str = typer.Option("", "--note"),
    verbose: bool = VerboseOption,
):
    """Record a payment you made to another user."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        settlement, result = ctx.service.record_settlement(
            actor, recipient, parse_amount(amount), group_id, note
        )
        console.print(
            f"[green]✓ Paid {format_money(settlement.amount, use_color=False).strip()} "
            f"to {recipient}[/green]"
        )
        console.print(f"  Previous debt: {format_money(result.previous_debt)}")
        console.print(f"  Remaining debt: {format_money(result.remaining_debt)}")
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@payment_app.command("start")
def payment_start(
    recipient: str = typer.Argument(..., help="User you are paying"),
    amount: str = typer.Argument(..., help="Amount being paid"),
    actor: str = ActorOption,
    group_id: str | None = GroupOption,
    reference: str | None = typer.Option(None, "--reference", help="External id"),
    verbose: bool = VerboseOption,
):
    """Start an external payment; balances change only once it is confirmed."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        settlement = ctx.service.initiate_payment(
            actor, recipient, parse_amount(amount), group_id, reference
        )
        console.print(
            f"[green]✓ Payment #{settlement.id} pending[/green]\n"
            f"  Confirm with: [cyan]splitledger payment confirm {settlement.id} "
            f"--as {actor}[/cyan]"
        )
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@payment_app.command("confirm")
def payment_confirm(
    settlement_id: int = typer.Argument(..., help="Pending payment id"),
    actor: str = ActorOption,
    reference: str | None = typer.Option(None, "--reference", help="External id"),
    verbose: bool = VerboseOption,
):
    """Confirm a pending payment and apply it to balances."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        settlement, result = ctx.service.confirm_settlement(
            actor, settlement_id, reference
        )
        console.print(f"[green]✓ Payment #{settlement.id} completed[/green]")
        console.print(f"  Remaining debt: {format_money(result.remaining_debt)}")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@payment_app.command("cancel")
def payment_cancel(
    settlement_id: int = typer.Argument(..., help="Pending payment id"),
    actor: str = ActorOption,
    verbose: bool = VerboseOption,
):
    """Cancel a pending payment."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        settlement = ctx.service.cancel_settlement(actor, settlement_id)
        console.print(f"[yellow]Payment #{settlement.id} cancelled[/yellow]")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


# ============================================================================
# Read commands
# ============================================================================


@app.command()
def balances(
    actor: str = ActorOption,
    group_id: str | None = GroupOption,
    verbose: bool = VerboseOption,
):
    """Show what you owe and what you are owed."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        summary = ctx.service.balance_summary(actor, group_id)
        owes, owed = ctx.service.detailed_balances(actor, group_id)

        table = Table(title="Balances", show_header=True, header_style="bold magenta")
        table.add_column("Counterparty", style="cyan")
        table.add_column("Group", style="dim")
        table.add_column("Amount", justify="right", width=14)
        for d in owes:
            table.add_row(d.creditor_id, d.group_id or "-", format_money(-d.amount))
        for d in owed:
            table.add_row(d.debtor_id, d.group_id or "-", format_money(d.amount))
        if owes or owed:
            console.print(table)

        console.print(f"\n  You owe:      {format_money(-summary.you_owe)}")
        console.print(f"  You're owed:  {format_money(summary.youre_owed)}")
        console.print(f"  [bold]Net:[/bold]          {format_money(summary.net_balance)}\n")
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@app.command()
def activity(
    actor: str = ActorOption,
    group_id: str | None = GroupOption,
    limit: int = typer.Option(20, "--limit", "-n"),
    verbose: bool = VerboseOption,
):
    """Show recent ledger activity involving you."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        entries = ctx.service.activity(actor, group_id, limit=limit)
        if not entries:
            console.print("[yellow]No activity yet.[/yellow]")
            return

        table = Table(title="Activity", show_header=True, header_style="bold magenta")
        table.add_column("When", width=19)
        table.add_column("Event", style="yellow")
        table.add_column("By", style="cyan")
        table.add_column("Description")
        for entry in entries:
            table.add_row(
                entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                entry.event_type,
                entry.actor_id,
                entry.description,
            )
        console.print(table)
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@app.command()
def stats(
    group_id: str = typer.Argument(..., help="Group to summarize"),
    actor: str = ActorOption,
    verbose: bool = VerboseOption,
):
    """Show spending statistics for a group."""
    setup_logging(verbose)
    ctx = None
    try:
        ctx = _Context()
        members = ctx.directory.group_members(group_id)
        report = ctx.service.group_statistics(actor, group_id, members)

        console.print(f"\n[bold]Group {group_id}[/bold]")
        console.print(f"  Total spent: {format_money(report.total_spent)}")
        console.print(f"  Expenses: {report.expense_count}")
        console.print(f"  Average per member: {format_money(report.average_per_member)}")
        if report.top_spender:
            console.print(
                f"  Top spender: {report.top_spender.user_id} "
                f"({report.top_spender.percentage}%)"
            )

        table = Table(title="Members", show_header=True, header_style="bold magenta")
        table.add_column("Member", style="cyan")
        table.add_column("Paid", justify="right", width=14)
        table.add_column("%", justify="right", width=6)
        for m in report.member_spending:
            table.add_row(m.user_id, format_money(m.amount), str(m.percentage))
        console.print(table)

        if report.category_breakdown:
            table = Table(title="Categories", show_header=True, header_style="bold magenta")
            table.add_column("Category", style="yellow")
            table.add_column("Amount", justify="right", width=14)
            for c in report.category_breakdown:
                table.add_row(c.category, format_money(c.amount))
            console.print(table)
    except Exception as e:
        _fail(e, verbose)
    finally:
        if ctx:
            ctx.close()


@app.command()
def mcp():
    """Start the MCP server."""
    run_server()


if __name__ == "__main__":
    app()

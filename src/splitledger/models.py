"""Pydantic domain models for SplitLedger."""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

SplitType = Literal["equal", "exact", "percentage"]
PaymentStatus = Literal["pending", "completed", "failed"]
PaymentMethod = Literal["manual", "external"]
AuditEventType = Literal[
    "expense_added",
    "expense_edited",
    "expense_deleted",
    "settlement_added",
]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Directory Models
# ============================================================================


class UserProfile(BaseModel):
    """A user as seen through the identity provider."""

    id: str
    display_name: str
    email: str | None = None


# ============================================================================
# Expense Models
# ============================================================================


class ParticipantInput(BaseModel):
    """A participant as supplied by the caller.

    For `exact` splits `share` is an amount, for `percentage` splits it is a
    percentage. `None` means "take an equal part of whatever is left".
    """

    user_id: str
    share: Decimal | None = None


class ParticipantShare(BaseModel):
    """A participant with a resolved share of the expense total."""

    user_id: str
    share: Decimal = Field(ge=0)
    requested: Decimal | None = None  # raw input, kept so edits can re-resolve


class Expense(BaseModel):
    """A shared cost paid by one user and divided among participants."""

    id: int | None = None
    description: str
    amount: Decimal = Field(gt=0)
    paid_by: str
    split_type: SplitType = "equal"
    participants: list[ParticipantShare]
    group_id: str | None = None
    category: str = "general"
    notes: str = ""
    date: datetime = Field(default_factory=utcnow)
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def participant_ids(self) -> list[str]:
        """User ids of all participants, in order."""
        return [p.user_id for p in self.participants]

    def participant_inputs(self) -> list[ParticipantInput]:
        """Rebuild the caller inputs this expense was resolved from."""
        return [
            ParticipantInput(user_id=p.user_id, share=p.requested)
            for p in self.participants
        ]


class ExpenseRequest(BaseModel):
    """Input for creating an expense. `paid_by` defaults to the actor."""

    description: str
    amount: Decimal
    participants: list[ParticipantInput]
    split_type: SplitType = "equal"
    paid_by: str | None = None
    group_id: str | None = None
    category: str = "general"
    notes: str = ""
    date: datetime | None = None


class ExpenseUpdate(BaseModel):
    """Partial update of an expense. Unset fields keep their value."""

    description: str | None = None
    amount: Decimal | None = None
    split_type: SplitType | None = None
    participants: list[ParticipantInput] | None = None
    category: str | None = None
    notes: str | None = None
    date: datetime | None = None

    def changes_shares(self) -> bool:
        """Whether applying this update requires re-resolving shares."""
        return (
            self.amount is not None
            or self.split_type is not None
            or self.participants is not None
        )


# ============================================================================
# Ledger Models
# ============================================================================


class BalanceDelta(BaseModel):
    """A signed change to one directed balance edge."""

    debtor_id: str
    creditor_id: str
    group_id: str | None = None
    amount: Decimal

    def negated(self) -> "BalanceDelta":
        """The exact reversal: same edge, opposite sign."""
        return self.model_copy(update={"amount": -self.amount})


class DirectedAmount(BaseModel):
    """An unambiguous debt: `debtor_id` owes `creditor_id` a non-negative amount."""

    debtor_id: str
    creditor_id: str
    group_id: str | None = None
    amount: Decimal = Field(ge=0)


class BalanceEdge(BaseModel):
    """A stored directed balance.

    `net_amount` is signed: positive means the debtor owes the creditor,
    negative means the creditor owes the debtor. Use `resolve()` rather than
    reading the sign directly.
    """

    id: int
    debtor_id: str
    creditor_id: str
    group_id: str | None = None
    net_amount: Decimal
    last_updated: datetime
    created_at: datetime

    def resolve(self) -> DirectedAmount:
        """Return the edge as a direction plus a magnitude."""
        if self.net_amount < 0:
            return DirectedAmount(
                debtor_id=self.creditor_id,
                creditor_id=self.debtor_id,
                group_id=self.group_id,
                amount=-self.net_amount,
            )
        return DirectedAmount(
            debtor_id=self.debtor_id,
            creditor_id=self.creditor_id,
            group_id=self.group_id,
            amount=self.net_amount,
        )


class BalanceSummary(BaseModel):
    """Totals of what a user owes and is owed across all edges."""

    user_id: str
    you_owe: Decimal = Decimal("0")
    youre_owed: Decimal = Decimal("0")
    owed_count: int = 0  # edges where the user owes someone
    owed_by_count: int = 0  # edges where someone owes the user

    @property
    def net_balance(self) -> Decimal:
        """Positive when the user is owed more than they owe."""
        return self.youre_owed - self.you_owe


# ============================================================================
# Settlement Models
# ============================================================================


class Settlement(BaseModel):
    """A payment from one user to another."""

    id: int | None = None
    paid_by: str
    paid_to: str
    amount: Decimal = Field(gt=0)
    group_id: str | None = None
    note: str = ""
    payment_method: PaymentMethod = "manual"
    payment_status: PaymentStatus = "completed"
    external_reference: str | None = None
    settled_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class SettlementResult(BaseModel):
    """Outcome of applying a settlement to the ledger."""

    previous_debt: Decimal
    settled_amount: Decimal
    remaining_debt: Decimal


# ============================================================================
# Audit Models
# ============================================================================


class AuditEntry(BaseModel):
    """An immutable record of a ledger-affecting action."""

    id: int | None = None
    event_type: AuditEventType
    actor_id: str
    target_user_id: str | None = None
    group_id: str | None = None
    expense_id: int | None = None
    settlement_id: int | None = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Report Models
# ============================================================================


class CategoryTotal(BaseModel):
    """Spending for one expense category."""

    category: str
    amount: Decimal


class MemberSpending(BaseModel):
    """How much one group member paid for."""

    user_id: str
    amount: Decimal
    percentage: Decimal


class GroupStatistics(BaseModel):
    """Aggregate spending figures for a group."""

    group_id: str
    total_spent: Decimal
    expense_count: int
    average_per_member: Decimal
    top_spender: MemberSpending | None = None
    category_breakdown: list[CategoryTotal] = Field(default_factory=list)
    member_spending: list[MemberSpending] = Field(default_factory=list)

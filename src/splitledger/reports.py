"""Spending statistics for a group."""

from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal

from .models import CategoryTotal, Expense, GroupStatistics, MemberSpending
from .money import ZERO, sum_amounts, to_cents


def summarize_group(
    group_id: str, expenses: list[Expense], member_ids: list[str]
) -> GroupStatistics:
    """
    Compute spending figures for a group.

    This is a pure function over already-loaded expenses.

    Args:
        group_id: The group the expenses belong to
        expenses: Every expense of the group
        member_ids: Current group members

    Returns:
        Totals, top spender, category breakdown and per-member spending
    """
    total_spent = sum_amounts(e.amount for e in expenses)

    paid_by: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for expense in expenses:
        paid_by[expense.paid_by] += expense.amount
        by_category[expense.category or "general"] += expense.amount

    def spending(user_id: str) -> MemberSpending:
        amount = paid_by.get(user_id, ZERO)
        percentage = (
            (amount / total_spent * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
            if total_spent > ZERO
            else ZERO
        )
        return MemberSpending(user_id=user_id, amount=amount, percentage=percentage)

    top_spender = None
    if paid_by:
        top_id = max(paid_by, key=lambda uid: (paid_by[uid], uid))
        top_spender = spending(top_id)

    average = to_cents(total_spent / len(member_ids)) if member_ids else ZERO

    return GroupStatistics(
        group_id=group_id,
        total_spent=total_spent,
        expense_count=len(expenses),
        average_per_member=average,
        top_spender=top_spender,
        category_breakdown=sorted(
            (CategoryTotal(category=c, amount=a) for c, a in by_category.items()),
            key=lambda c: (-c.amount, c.category),
        ),
        member_spending=sorted(
            (spending(uid) for uid in member_ids),
            key=lambda m: (-m.amount, m.user_id),
        ),
    )

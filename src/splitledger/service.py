"""Service layer that runs every ledger-affecting operation as one unit of work.

Each write operation validates its input, then opens a single unit of work
covering the source record, the balance deltas and the audit entry. Either
all of them commit or none do. Notifications are handed off only after the
commit.
"""

import logging
from decimal import Decimal
from functools import partial

from .audit import AuditLog
from .db import Database, UnitOfWork
from .directory import IdentityProvider, MembershipOracle
from .exceptions import AuthorizationError, NotFoundError, ValidationError
from .ledger import LedgerStore, expense_deltas
from .models import (
    AuditEntry,
    AuditEventType,
    BalanceSummary,
    DirectedAmount,
    Expense,
    ExpenseRequest,
    ExpenseUpdate,
    GroupStatistics,
    ParticipantInput,
    Settlement,
    SettlementResult,
    UserProfile,
    utcnow,
)
from .money import ZERO, require_cents
from .notifications import NotificationDispatcher
from .records import ExpenseStore, SettlementStore
from .reports import summarize_group
from .settlement import SettlementEngine
from .splits import compute_shares

logger = logging.getLogger(__name__)


def _share_map(expense: Expense) -> dict[str, str]:
    return {p.user_id: str(p.share) for p in expense.participants}


class LedgerService:
    """Coordinates expenses, settlements, the ledger and the audit trail."""

    def __init__(
        self,
        database: Database,
        identity: IdentityProvider,
        membership: MembershipOracle,
        notifier: NotificationDispatcher | None = None,
    ):
        """Initialize the service."""
        self.db = database
        self.identity = identity
        self.membership = membership
        self.notifier = notifier
        self.ledger = LedgerStore()
        self.engine = SettlementEngine(self.ledger)
        self.expenses = ExpenseStore()
        self.settlements = SettlementStore()
        self.audit = AuditLog()

    # ========================================================================
    # Expense operations
    # ========================================================================

    def create_expense(self, actor_id: str, request: ExpenseRequest) -> Expense:
        """
        Record a new expense and its effect on the ledger.

        Args:
            actor_id: The user creating the expense
            request: Expense details; `paid_by` defaults to the actor

        Returns:
            The stored expense with resolved shares

        Raises:
            ValidationError, AuthorizationError, NotFoundError,
            InvalidSplitError: Before anything is written
        """
        description = request.description.strip()
        if not description:
            raise ValidationError("Description is required")
        self._require_amount(request.amount)
        if not request.participants:
            raise ValidationError("At least one participant is required")

        payer_id = request.paid_by or actor_id
        user_ids = [payer_id] + [p.user_id for p in request.participants]
        self._require_users(user_ids)
        if request.group_id:
            self._require_group_access(request.group_id, actor_id, user_ids)

        shares = compute_shares(request.amount, request.split_type, request.participants)
        expense = Expense(
            description=description,
            amount=request.amount,
            paid_by=payer_id,
            split_type=request.split_type,
            participants=shares,
            group_id=request.group_id,
            category=request.category or "general",
            notes=request.notes,
            date=request.date or utcnow(),
            created_by=actor_id,
        )

        with self.db.unit_of_work() as uow:
            self.ledger.apply(uow, expense_deltas(expense))
            expense = self.expenses.add(uow, expense)
            self.audit.record(
                uow,
                "expense_added",
                actor_id,
                expense.group_id,
                expense_id=expense.id,
                description=f"Added expense: {expense.description}",
                metadata={
                    "amount": str(expense.amount),
                    "category": expense.category,
                    "paid_by": expense.paid_by,
                    "split_type": expense.split_type,
                    "shares": _share_map(expense),
                },
            )
            uow.after_commit(partial(self._notify_expense, "expense_added", expense, actor_id))

        logger.info(
            f"Created expense {expense.id} ({expense.amount}) paid by "
            f"{expense.paid_by} among {len(expense.participants)} participant(s)"
        )
        return expense

    def edit_expense(
        self, actor_id: str, expense_id: int, update: ExpenseUpdate
    ) -> Expense:
        """
        Edit an expense by reversing its old ledger effect and applying the new one.

        Only the creator may edit. Amount, split type or participant changes
        re-resolve the shares with the same calculator used on creation.
        """
        with self.db.unit_of_work() as uow:
            current = self.expenses.get(uow, expense_id)
            self._require_creator(current, actor_id, "edit")
            updated = self._apply_update(current, update)

            self.ledger.apply(uow, [d.negated() for d in expense_deltas(current)])
            self.ledger.apply(uow, expense_deltas(updated))
            updated = self.expenses.update(uow, updated)

            self.audit.record(
                uow,
                "expense_edited",
                actor_id,
                updated.group_id,
                expense_id=updated.id,
                description=f"Edited expense: {updated.description}",
                metadata={
                    "previous": current.model_dump(mode="json"),
                    "current": updated.model_dump(mode="json"),
                },
            )

        logger.info(f"Edited expense {expense_id}")
        return updated

    def delete_expense(self, actor_id: str, expense_id: int) -> Expense:
        """Delete an expense and reverse its ledger effect. Only the creator may delete."""
        with self.db.unit_of_work() as uow:
            expense = self.expenses.get(uow, expense_id)
            self._require_creator(expense, actor_id, "delete")

            self.ledger.apply(uow, [d.negated() for d in expense_deltas(expense)])
            self.expenses.delete(uow, expense_id)

            self.audit.record(
                uow,
                "expense_deleted",
                actor_id,
                expense.group_id,
                expense_id=expense.id,
                description=f"Deleted expense: {expense.description}",
                metadata={"expense": expense.model_dump(mode="json")},
            )
            uow.after_commit(
                partial(self._notify_expense, "expense_deleted", expense, actor_id)
            )

        logger.info(f"Deleted expense {expense_id}")
        return expense

    def change_payer(
        self, actor_id: str, expense_id: int, new_payer_id: str
    ) -> Expense:
        """
        Move an expense to a different payer, keeping every share.

        Raises:
            ValidationError: If the new payer is already the payer or is not
                a participant of the expense
        """
        with self.db.unit_of_work() as uow:
            expense = self.expenses.get(uow, expense_id)
            self._require_creator(expense, actor_id, "change the payer of")

            if new_payer_id == expense.paid_by:
                raise ValidationError(f"{new_payer_id} is already the payer")
            if new_payer_id not in expense.participant_ids():
                raise ValidationError(
                    f"New payer {new_payer_id} must be a participant of the expense"
                )

            updated = expense.model_copy(update={"paid_by": new_payer_id})
            self.ledger.apply(uow, [d.negated() for d in expense_deltas(expense)])
            self.ledger.apply(uow, expense_deltas(updated))
            updated = self.expenses.update(uow, updated)

            self.audit.record(
                uow,
                "expense_edited",
                actor_id,
                updated.group_id,
                expense_id=updated.id,
                description=f"Changed payer for expense: {updated.description}",
                metadata={
                    "previous_payer": expense.paid_by,
                    "new_payer": new_payer_id,
                    "previous": expense.model_dump(mode="json"),
                    "current": updated.model_dump(mode="json"),
                },
            )

        logger.info(
            f"Changed payer of expense {expense_id} from {expense.paid_by} "
            f"to {new_payer_id}"
        )
        return updated

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def record_settlement(
        self,
        actor_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None = None,
        note: str = "",
    ) -> tuple[Settlement, SettlementResult]:
        """
        Record a direct payment from the actor to the recipient.

        The payment is applied to the ledger immediately.

        Raises:
            NoDebtError: If the actor owes the recipient nothing
            OverSettlementError: If amount exceeds what the actor owes
        """
        recipient = self._validate_settlement(actor_id, recipient_id, amount, group_id)

        with self.db.unit_of_work() as uow:
            result = self.engine.settle(uow, actor_id, recipient_id, amount, group_id)
            settlement = self.settlements.add(
                uow,
                Settlement(
                    paid_by=actor_id,
                    paid_to=recipient_id,
                    amount=amount,
                    group_id=group_id,
                    note=note,
                    payment_method="manual",
                    payment_status="completed",
                    settled_at=utcnow(),
                ),
            )
            self._audit_settlement(uow, settlement, recipient, result)
            uow.after_commit(partial(self._notify_settlement, settlement, recipient))

        logger.info(f"Recorded settlement {settlement.id}")
        return settlement, result

    def initiate_payment(
        self,
        actor_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None = None,
        external_reference: str | None = None,
    ) -> Settlement:
        """
        Start a payment made outside the ledger (e.g. a bank transfer).

        The settlement is stored as pending and has no ledger effect until
        it is confirmed.
        """
        self._validate_settlement(actor_id, recipient_id, amount, group_id)

        with self.db.unit_of_work() as uow:
            self.engine.check(uow, actor_id, recipient_id, amount, group_id)
            settlement = self.settlements.add(
                uow,
                Settlement(
                    paid_by=actor_id,
                    paid_to=recipient_id,
                    amount=amount,
                    group_id=group_id,
                    note="External payment",
                    payment_method="external",
                    payment_status="pending",
                    external_reference=external_reference,
                ),
            )

        logger.info(f"Initiated pending payment {settlement.id}")
        return settlement

    def confirm_settlement(
        self,
        actor_id: str,
        settlement_id: int,
        external_reference: str | None = None,
    ) -> tuple[Settlement, SettlementResult]:
        """
        Confirm a pending payment and apply it to the ledger.

        If the ledger no longer allows the payment, nothing is committed and
        the settlement stays pending.
        """
        with self.db.unit_of_work() as uow:
            settlement = self.settlements.get(uow, settlement_id)
            if settlement.paid_by != actor_id:
                raise AuthorizationError("Only the payer can confirm payment")
            if settlement.payment_status == "completed":
                raise ValidationError("Payment already confirmed")
            if settlement.payment_status == "failed":
                raise ValidationError("Payment was cancelled and cannot be confirmed")

            result = self.engine.settle(
                uow,
                settlement.paid_by,
                settlement.paid_to,
                settlement.amount,
                settlement.group_id,
            )
            settlement = self.settlements.update_status(
                uow,
                settlement.model_copy(
                    update={
                        "payment_status": "completed",
                        "settled_at": utcnow(),
                        "external_reference": external_reference
                        or settlement.external_reference,
                    }
                ),
            )
            recipient = self._require_user(settlement.paid_to)
            self._audit_settlement(uow, settlement, recipient, result)
            uow.after_commit(partial(self._notify_settlement, settlement, recipient))

        logger.info(f"Confirmed payment {settlement_id}")
        return settlement, result

    def cancel_settlement(self, actor_id: str, settlement_id: int) -> Settlement:
        """Cancel a pending payment. It never affects the ledger."""
        with self.db.unit_of_work() as uow:
            settlement = self.settlements.get(uow, settlement_id)
            if settlement.paid_by != actor_id:
                raise AuthorizationError("Only the payer can cancel payment")
            if settlement.payment_status != "pending":
                raise ValidationError("Can only cancel pending payments")

            settlement = self.settlements.update_status(
                uow, settlement.model_copy(update={"payment_status": "failed"})
            )

        logger.info(f"Cancelled payment {settlement_id}")
        return settlement

    # ========================================================================
    # Read operations
    # ========================================================================

    def get_expense(self, actor_id: str, expense_id: int) -> Expense:
        """Get an expense the actor paid for or takes part in."""
        with self.db.unit_of_work(writable=False) as uow:
            expense = self.expenses.get(uow, expense_id)
        if actor_id != expense.paid_by and actor_id not in expense.participant_ids():
            raise AuthorizationError("Unauthorized")
        return expense

    def list_expenses(
        self,
        user_id: str,
        group_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        """Expenses involving a user, newest first."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.expenses.list_for_user(uow, user_id, group_id, limit, offset)

    def list_settlements(
        self,
        user_id: str,
        group_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        """Settlements paid or received by a user, newest first."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.settlements.list_for_user(uow, user_id, group_id, limit, offset)

    def balance_summary(
        self, user_id: str, group_id: str | None = None
    ) -> BalanceSummary:
        """What a user owes and is owed in total."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.ledger.sum_net_by_user(uow, user_id, group_id)

    def detailed_balances(
        self, user_id: str, group_id: str | None = None
    ) -> tuple[list[DirectedAmount], list[DirectedAmount]]:
        """Per-counterparty balances as (you owe, you're owed)."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.ledger.balances_for_user(uow, user_id, group_id)

    def net_debt(
        self, payer_id: str, recipient_id: str, group_id: str | None = None
    ) -> Decimal:
        """Net amount the payer owes the recipient (negative if reversed)."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.engine.net_debt(uow, payer_id, recipient_id, group_id)

    def activity(
        self,
        user_id: str,
        group_id: str | None = None,
        event_type: AuditEventType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Audit entries where the user is the actor or the target."""
        with self.db.unit_of_work(writable=False) as uow:
            return self.audit.list_entries(
                uow, user_id, group_id, event_type, limit, offset
            )

    def group_statistics(
        self, actor_id: str, group_id: str, member_ids: list[str]
    ) -> GroupStatistics:
        """Spending figures for a group the actor belongs to."""
        if not self.membership.is_member(group_id, actor_id):
            raise AuthorizationError("You are not a member of this group")
        with self.db.unit_of_work(writable=False) as uow:
            expenses = self.expenses.list_for_group(uow, group_id)
        return summarize_group(group_id, expenses, member_ids)

    # ========================================================================
    # Validation helpers
    # ========================================================================

    @staticmethod
    def _require_amount(amount: Decimal):
        if amount <= ZERO:
            raise ValidationError("Amount must be positive")
        require_cents(amount)

    def _require_user(self, user_id: str) -> UserProfile:
        user = self.identity.resolve_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def _require_users(self, user_ids: list[str]):
        for user_id in dict.fromkeys(user_ids):
            self._require_user(user_id)

    def _require_group_access(
        self, group_id: str, actor_id: str, user_ids: list[str]
    ):
        if not self.membership.is_member(group_id, actor_id):
            raise AuthorizationError("Not a group member")
        for user_id in dict.fromkeys(user_ids):
            if not self.membership.is_member(group_id, user_id):
                raise ValidationError(f"{user_id} is not a member of group {group_id}")

    @staticmethod
    def _require_creator(expense: Expense, actor_id: str, action: str):
        if expense.created_by != actor_id:
            raise AuthorizationError(f"Only the creator can {action} this expense")

    def _validate_settlement(
        self,
        actor_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None,
    ) -> UserProfile:
        self._require_amount(amount)
        if actor_id == recipient_id:
            raise ValidationError("Cannot settle with yourself")
        recipient = self._require_user(recipient_id)
        if group_id:
            self._require_group_access(group_id, actor_id, [recipient_id])
        return recipient

    def _apply_update(self, current: Expense, update: ExpenseUpdate) -> Expense:
        """Build the edited expense. Raises before anything is written."""
        changes: dict = {}

        if update.description is not None:
            description = update.description.strip()
            if not description:
                raise ValidationError("Description is required")
            changes["description"] = description
        if update.category is not None:
            changes["category"] = update.category or "general"
        if update.notes is not None:
            changes["notes"] = update.notes
        if update.date is not None:
            changes["date"] = update.date

        if update.changes_shares():
            amount = update.amount if update.amount is not None else current.amount
            self._require_amount(amount)
            split_type = update.split_type or current.split_type

            if update.participants is not None:
                inputs = update.participants
            elif split_type != current.split_type:
                # Old explicit shares mean something else under another split type
                inputs = [ParticipantInput(user_id=uid) for uid in current.participant_ids()]
            else:
                inputs = current.participant_inputs()

            user_ids = [p.user_id for p in inputs]
            if update.participants is not None:
                self._require_users(user_ids)
                if current.group_id:
                    self._require_group_access(
                        current.group_id, current.created_by, user_ids
                    )

            changes["amount"] = amount
            changes["split_type"] = split_type
            changes["participants"] = compute_shares(amount, split_type, inputs)

        return current.model_copy(update=changes)

    # ========================================================================
    # Audit and notification helpers
    # ========================================================================

    def _audit_settlement(
        self,
        uow: UnitOfWork,
        settlement: Settlement,
        recipient: UserProfile,
        result: SettlementResult,
    ):
        self.audit.record(
            uow,
            "settlement_added",
            settlement.paid_by,
            settlement.group_id,
            target_user_id=settlement.paid_to,
            settlement_id=settlement.id,
            description=f"Settled {settlement.amount} with {recipient.display_name}",
            metadata={
                "amount": str(settlement.amount),
                "payment_method": settlement.payment_method,
                "external_reference": settlement.external_reference,
                "previous_debt": str(result.previous_debt),
                "remaining_debt": str(result.remaining_debt),
            },
        )

    def _notify_expense(self, kind: str, expense: Expense, actor_id: str):
        if self.notifier is None:
            return
        for user_id in expense.participant_ids():
            if user_id in (actor_id, expense.paid_by):
                continue
            recipient = self.identity.resolve_user(user_id)
            if recipient is None:
                continue
            self.notifier.dispatch(
                kind,
                recipient,
                {
                    "expense_id": expense.id,
                    "description": expense.description,
                    "amount": expense.amount,
                    "paid_by": expense.paid_by,
                    "group_id": expense.group_id,
                },
            )

    def _notify_settlement(self, settlement: Settlement, recipient: UserProfile):
        if self.notifier is None:
            return
        self.notifier.dispatch(
            "settlement_received",
            recipient,
            {
                "settlement_id": settlement.id,
                "amount": settlement.amount,
                "paid_by": settlement.paid_by,
                "group_id": settlement.group_id,
            },
        )

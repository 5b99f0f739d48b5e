"""Apply payments against the accumulated net debt between two users."""

import logging
from decimal import Decimal

from .db import UnitOfWork
from .exceptions import NoDebtError, OverSettlementError, ValidationError
from .ledger import LedgerStore
from .models import BalanceEdge, SettlementResult
from .money import ZERO, exceeds, require_cents, sum_amounts

logger = logging.getLogger(__name__)


class SettlementEngine:
    """Validates a settlement and distributes it over the payer's debts."""

    def __init__(self, ledger: LedgerStore):
        """Initialize the engine."""
        self.ledger = ledger

    def payer_debts(
        self,
        uow: UnitOfWork,
        payer_id: str,
        recipient_id: str,
        group_id: str | None = None,
    ) -> tuple[list[BalanceEdge], Decimal, Decimal]:
        """
        Collect the edges between two users in both stored directions.

        When `group_id` is None every scope between the pair is included.

        Returns:
            Tuple of (edges where the payer owes the recipient,
            total the payer owes, total the recipient owes)
        """
        all_scopes = group_id is None
        edges = self.ledger.edges_between(
            uow, payer_id, recipient_id, group_id, all_scopes
        ) + self.ledger.edges_between(
            uow, recipient_id, payer_id, group_id, all_scopes
        )

        payer_owes: list[BalanceEdge] = []
        recipient_owes: list[Decimal] = []
        for edge in edges:
            resolved = edge.resolve()
            if resolved.amount <= ZERO:
                continue
            if resolved.debtor_id == payer_id:
                payer_owes.append(edge)
            else:
                recipient_owes.append(resolved.amount)

        total_payer_owes = sum_amounts(e.resolve().amount for e in payer_owes)
        return payer_owes, total_payer_owes, sum_amounts(recipient_owes)

    def net_debt(
        self,
        uow: UnitOfWork,
        payer_id: str,
        recipient_id: str,
        group_id: str | None = None,
    ) -> Decimal:
        """What the payer owes the recipient after offsetting the reverse debt."""
        _, payer_total, recipient_total = self.payer_debts(
            uow, payer_id, recipient_id, group_id
        )
        return payer_total - recipient_total

    def check(
        self,
        uow: UnitOfWork,
        payer_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None = None,
    ) -> Decimal:
        """
        Validate a settlement without touching the ledger.

        Returns:
            The current net debt

        Raises:
            ValidationError: If the amount is not positive, finer than a cent,
                or payer is recipient
            NoDebtError: If the payer owes the recipient nothing
            OverSettlementError: If amount exceeds the net debt
        """
        _, net_debt = self._check(uow, payer_id, recipient_id, amount, group_id)
        return net_debt

    def _check(
        self,
        uow: UnitOfWork,
        payer_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None,
    ) -> tuple[list[BalanceEdge], Decimal]:
        if amount <= ZERO:
            raise ValidationError("Settlement amount must be positive")
        require_cents(amount, "Settlement amount")
        if payer_id == recipient_id:
            raise ValidationError("Cannot settle with yourself")

        edges, payer_total, recipient_total = self.payer_debts(
            uow, payer_id, recipient_id, group_id
        )
        net_debt = payer_total - recipient_total

        if net_debt == ZERO:
            raise NoDebtError(
                net_debt,
                f"You are already settled up with {recipient_id}; nothing to pay",
            )
        if net_debt < ZERO:
            raise NoDebtError(
                net_debt,
                f"You don't owe {recipient_id} anything; they owe you {-net_debt}",
            )
        if exceeds(amount, net_debt):
            raise OverSettlementError(amount, net_debt)

        return edges, net_debt

    def settle(
        self,
        uow: UnitOfWork,
        payer_id: str,
        recipient_id: str,
        amount: Decimal,
        group_id: str | None = None,
    ) -> SettlementResult:
        """
        Reduce the payer's debt to the recipient by `amount`.

        The amount is taken from the largest outstanding edge first; equal
        edges are drained in creation order. Edges that reach zero are kept.

        Args:
            uow: The caller's unit of work
            payer_id: User paying off debt
            recipient_id: User receiving the payment
            amount: Positive payment amount
            group_id: Limit to one group; None settles across every scope

        Returns:
            Previous debt, settled amount and remaining debt

        Raises:
            NoDebtError: If the payer owes the recipient nothing
            OverSettlementError: If amount exceeds the net debt
        """
        edges, net_debt = self._check(uow, payer_id, recipient_id, amount, group_id)

        reductions = self._distribute(edges, amount)
        for edge, reduction in reductions:
            # Reducing the payer's side of an edge stored the other way round
            # means moving its signed value towards zero from below
            signed = -reduction if edge.debtor_id == payer_id else reduction
            self.ledger.apply_delta(
                uow, edge.debtor_id, edge.creditor_id, edge.group_id, signed
            )

        result = SettlementResult(
            previous_debt=net_debt,
            settled_amount=amount,
            remaining_debt=net_debt - amount,
        )
        logger.info(
            f"Settled {amount} from {payer_id} to {recipient_id} "
            f"across {len(reductions)} edge(s), {result.remaining_debt} remaining"
        )
        return result

    @staticmethod
    def _distribute(
        edges: list[BalanceEdge], amount: Decimal
    ) -> list[tuple[BalanceEdge, Decimal]]:
        """
        Split `amount` across edges, largest debt first.

        The reductions always add up to exactly `amount`. An amount accepted
        within tolerance above the total debt puts its excess on the largest
        edge.
        """
        ordered = sorted(edges, key=lambda e: (-e.resolve().amount, e.id))

        reductions: list[tuple[BalanceEdge, Decimal]] = []
        remaining = amount
        for edge in ordered:
            if remaining <= ZERO:
                break
            reduction = min(edge.resolve().amount, remaining)
            reductions.append((edge, reduction))
            remaining -= reduction

        if remaining > ZERO and reductions:
            edge, reduction = reductions[0]
            reductions[0] = (edge, reduction + remaining)

        return reductions

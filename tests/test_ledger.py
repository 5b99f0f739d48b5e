"""Tests for the balance edge store."""

from decimal import Decimal

import pytest

from splitledger.exceptions import ValidationError
from splitledger.ledger import LedgerStore, expense_deltas
from splitledger.models import BalanceDelta, Expense, ParticipantShare


@pytest.fixture
def ledger():
    """Create a LedgerStore instance."""
    return LedgerStore()


def apply(db, ledger, debtor, creditor, amount, group_id=None):
    with db.unit_of_work() as uow:
        return ledger.apply_delta(uow, debtor, creditor, group_id, Decimal(amount))


class TestApplyDelta:
    """Test atomic edge increments."""

    def test_creates_edge(self, db, ledger):
        """The first delta creates the edge."""
        edge = apply(db, ledger, "bob", "alice", "30.00")
        assert edge.debtor_id == "bob"
        assert edge.creditor_id == "alice"
        assert edge.group_id is None
        assert edge.net_amount == Decimal("30.00")

    def test_increments_existing_edge(self, db, ledger):
        """Later deltas add to the same record."""
        first = apply(db, ledger, "bob", "alice", "30.00")
        second = apply(db, ledger, "bob", "alice", "12.50")
        assert second.id == first.id
        assert second.net_amount == Decimal("42.50")

    def test_negative_result_is_kept_signed(self, db, ledger):
        """Edges may go negative; resolve() reports the flipped direction."""
        apply(db, ledger, "bob", "alice", "10.00")
        edge = apply(db, ledger, "bob", "alice", "-25.00")
        assert edge.net_amount == Decimal("-15.00")

        resolved = edge.resolve()
        assert resolved.debtor_id == "alice"
        assert resolved.creditor_id == "bob"
        assert resolved.amount == Decimal("15.00")

    def test_round_trip_returns_to_zero_and_keeps_edge(self, db, ledger):
        """Applying a delta and its negation leaves a zero edge behind."""
        apply(db, ledger, "bob", "alice", "33.33")
        edge = apply(db, ledger, "bob", "alice", "-33.33")
        assert edge.net_amount == Decimal("0")

        with db.unit_of_work(writable=False) as uow:
            assert ledger.get_edge(uow, "bob", "alice") is not None

    def test_reverse_direction_is_independent(self, db, ledger):
        """(a, b) and (b, a) are separate records."""
        apply(db, ledger, "bob", "alice", "20.00")
        apply(db, ledger, "alice", "bob", "5.00")

        with db.unit_of_work(writable=False) as uow:
            forward = ledger.get_edge(uow, "bob", "alice")
            backward = ledger.get_edge(uow, "alice", "bob")
        assert forward.net_amount == Decimal("20.00")
        assert backward.net_amount == Decimal("5.00")
        assert forward.id != backward.id

    def test_scopes_are_independent(self, db, ledger):
        """The same pair carries separate debts per group."""
        apply(db, ledger, "bob", "alice", "10.00")
        apply(db, ledger, "bob", "alice", "7.00", group_id="trip")

        with db.unit_of_work(writable=False) as uow:
            assert ledger.get_edge(uow, "bob", "alice").net_amount == Decimal("10.00")
            assert ledger.get_edge(uow, "bob", "alice", "trip").net_amount == Decimal(
                "7.00"
            )
            assert len(ledger.edges_between(uow, "bob", "alice", all_scopes=True)) == 2

    def test_self_edge_rejected(self, db, ledger):
        """A user cannot owe themselves."""
        with pytest.raises(ValidationError):
            apply(db, ledger, "alice", "alice", "1.00")

    def test_rolled_back_delta_is_not_visible(self, db, ledger):
        """Deltas only become visible when the unit commits."""
        with pytest.raises(RuntimeError):
            with db.unit_of_work() as uow:
                ledger.apply_delta(uow, "bob", "alice", None, Decimal("10"))
                raise RuntimeError("abort")

        with db.unit_of_work(writable=False) as uow:
            assert ledger.get_edge(uow, "bob", "alice") is None


class TestExpenseDeltas:
    """Test deriving deltas from an expense."""

    def test_one_delta_per_non_payer(self):
        """The payer's own share never creates an edge."""
        expense = Expense(
            description="Dinner",
            amount=Decimal("90.00"),
            paid_by="alice",
            participants=[
                ParticipantShare(user_id="alice", share=Decimal("30.00")),
                ParticipantShare(user_id="bob", share=Decimal("30.00")),
                ParticipantShare(user_id="carol", share=Decimal("30.00")),
            ],
            group_id="trip",
            created_by="alice",
        )
        deltas = expense_deltas(expense)
        assert deltas == [
            BalanceDelta(
                debtor_id="bob",
                creditor_id="alice",
                group_id="trip",
                amount=Decimal("30.00"),
            ),
            BalanceDelta(
                debtor_id="carol",
                creditor_id="alice",
                group_id="trip",
                amount=Decimal("30.00"),
            ),
        ]

    def test_negation_keeps_direction(self):
        """Reversal negates the amount on the same directed pair."""
        delta = BalanceDelta(debtor_id="bob", creditor_id="alice", amount=Decimal("5"))
        reversed_delta = delta.negated()
        assert reversed_delta.debtor_id == "bob"
        assert reversed_delta.creditor_id == "alice"
        assert reversed_delta.amount == Decimal("-5")


class TestSummaries:
    """Test balance read models."""

    def test_sum_net_by_user(self, db, ledger):
        """Totals count each edge in its resolved direction."""
        apply(db, ledger, "bob", "alice", "30.00")
        apply(db, ledger, "carol", "alice", "20.00")
        apply(db, ledger, "alice", "dave", "12.00")

        with db.unit_of_work(writable=False) as uow:
            summary = ledger.sum_net_by_user(uow, "alice")
        assert summary.you_owe == Decimal("12.00")
        assert summary.youre_owed == Decimal("50.00")
        assert summary.owed_count == 1
        assert summary.owed_by_count == 2
        assert summary.net_balance == Decimal("38.00")

    def test_negative_edge_counts_in_reverse(self, db, ledger):
        """A negative edge is a debt in the other direction, not a negative one."""
        apply(db, ledger, "bob", "alice", "-8.00")

        with db.unit_of_work(writable=False) as uow:
            alice = ledger.sum_net_by_user(uow, "alice")
            bob = ledger.sum_net_by_user(uow, "bob")
        assert alice.you_owe == Decimal("8.00")
        assert alice.youre_owed == Decimal("0")
        assert bob.youre_owed == Decimal("8.00")

    def test_zero_edges_are_omitted(self, db, ledger):
        """Settled edges do not show up as balances."""
        apply(db, ledger, "bob", "alice", "5.00")
        apply(db, ledger, "bob", "alice", "-5.00")

        with db.unit_of_work(writable=False) as uow:
            owes, owed = ledger.balances_for_user(uow, "bob")
        assert owes == []
        assert owed == []

    def test_group_filter(self, db, ledger):
        """Balances can be limited to one group."""
        apply(db, ledger, "bob", "alice", "10.00")
        apply(db, ledger, "bob", "alice", "4.00", group_id="trip")

        with db.unit_of_work(writable=False) as uow:
            everywhere = ledger.sum_net_by_user(uow, "bob")
            trip = ledger.sum_net_by_user(uow, "bob", "trip")
        assert everywhere.you_owe == Decimal("14.00")
        assert trip.you_owe == Decimal("4.00")

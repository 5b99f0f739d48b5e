"""Tests for the split calculator."""

from decimal import Decimal

import pytest

from splitledger.exceptions import InvalidSplitError, SplitMismatchError, ValidationError
from splitledger.models import ParticipantInput
from splitledger.splits import compute_shares


def people(*entries) -> list[ParticipantInput]:
    """Build participants from user ids or (user_id, share) tuples."""
    result = []
    for entry in entries:
        if isinstance(entry, tuple):
            user_id, share = entry
            result.append(
                ParticipantInput(
                    user_id=user_id,
                    share=Decimal(share) if share is not None else None,
                )
            )
        else:
            result.append(ParticipantInput(user_id=entry))
    return result


def shares_of(shares) -> dict[str, Decimal]:
    return {s.user_id: s.share for s in shares}


class TestEqualSplit:
    """Test equal splits."""

    def test_even_split(self):
        """90 among three is 30 each."""
        shares = compute_shares(Decimal("90.00"), "equal", people("a", "b", "c"))
        assert shares_of(shares) == {
            "a": Decimal("30.00"),
            "b": Decimal("30.00"),
            "c": Decimal("30.00"),
        }

    def test_uneven_split_sums_exactly(self):
        """Leftover cents are assigned deterministically."""
        shares = compute_shares(Decimal("100.00"), "equal", people("a", "b", "c"))
        assert [s.share for s in shares] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]
        assert sum(s.share for s in shares) == Decimal("100.00")

    def test_order_is_preserved(self):
        """Shares come back in participant order."""
        shares = compute_shares(Decimal("10"), "equal", people("z", "a", "m"))
        assert [s.user_id for s in shares] == ["z", "a", "m"]

    def test_supplied_shares_are_ignored(self):
        """Equal splits never look at explicit shares."""
        shares = compute_shares(
            Decimal("20"), "equal", people(("a", "15"), ("b", "5"))
        )
        assert shares_of(shares) == {"a": Decimal("10.00"), "b": Decimal("10.00")}
        assert all(s.requested is None for s in shares)


class TestExactSplit:
    """Test exact-amount splits."""

    def test_all_supplied(self):
        """Shares that already sum to the total are kept as given."""
        shares = compute_shares(
            Decimal("50.00"), "exact", people(("a", "35.00"), ("b", "15.00"))
        )
        assert shares_of(shares) == {"a": Decimal("35.00"), "b": Decimal("15.00")}
        assert shares[0].requested == Decimal("35.00")

    def test_all_supplied_within_tolerance(self):
        """A one-cent discrepancy is accepted."""
        shares = compute_shares(
            Decimal("50.00"), "exact", people(("a", "35.00"), ("b", "14.99"))
        )
        assert shares_of(shares)["b"] == Decimal("14.99")

    def test_remainder_fills_unspecified(self):
        """Participants without a share split what is left."""
        shares = compute_shares(
            Decimal("100.00"), "exact", people(("a", "40"), ("b", "40"), ("c", None))
        )
        assert shares_of(shares)["c"] == Decimal("20.00")
        assert shares[2].requested is None

    def test_remainder_split_among_several(self):
        """The remainder is itself split evenly."""
        shares = compute_shares(
            Decimal("100.00"), "exact", people(("a", "40"), "b", "c")
        )
        assert shares_of(shares) == {
            "a": Decimal("40"),
            "b": Decimal("30.00"),
            "c": Decimal("30.00"),
        }

    def test_none_supplied_falls_back_to_equal(self):
        """Exact split without any share behaves like equal."""
        shares = compute_shares(Decimal("30"), "exact", people("a", "b", "c"))
        assert [s.share for s in shares] == [Decimal("10.00")] * 3

    def test_mismatched_total_rejected(self):
        """Fully specified shares must add up to the total."""
        with pytest.raises(SplitMismatchError, match="must sum to 100"):
            compute_shares(
                Decimal("100"), "exact", people(("a", "30"), ("b", "30"))
            )

    def test_supplied_shares_exceed_total(self):
        """Specified shares above the total leave nothing for the rest."""
        with pytest.raises(SplitMismatchError, match="already exceed"):
            compute_shares(
                Decimal("100"), "exact", people(("a", "60"), ("b", "50"), "c")
            )


class TestPercentageSplit:
    """Test percentage splits."""

    def test_seventy_thirty(self):
        """70/30 of 50 is 35 and 15."""
        shares = compute_shares(
            Decimal("50.00"), "percentage", people(("a", "70"), ("b", "30"))
        )
        assert shares_of(shares) == {"a": Decimal("35.00"), "b": Decimal("15.00")}
        assert shares[0].requested == Decimal("70")

    def test_rounding_residual_absorbed(self):
        """Cent rounding never leaves the total short."""
        shares = compute_shares(
            Decimal("10.00"),
            "percentage",
            people(("a", "33.33"), ("b", "33.33"), ("c", "33.34")),
        )
        assert sum(s.share for s in shares) == Decimal("10.00")
        assert [s.share for s in shares] == [
            Decimal("3.34"),
            Decimal("3.33"),
            Decimal("3.33"),
        ]

    def test_remaining_percentage_split_evenly(self):
        """Unspecified participants share the remaining percentage."""
        shares = compute_shares(
            Decimal("200"), "percentage", people(("a", "50"), "b", "c")
        )
        assert shares_of(shares) == {
            "a": Decimal("100.00"),
            "b": Decimal("50.00"),
            "c": Decimal("50.00"),
        }

    def test_percentages_must_sum_to_hundred(self):
        """Percentages off by more than the tolerance are rejected."""
        with pytest.raises(SplitMismatchError, match="Percentages must sum to 100"):
            compute_shares(
                Decimal("50"), "percentage", people(("a", "70"), ("b", "20"))
            )


class TestInvalidInput:
    """Test inputs that cannot be split."""

    def test_no_participants(self):
        """An expense needs at least one participant."""
        with pytest.raises(InvalidSplitError, match="At least one participant"):
            compute_shares(Decimal("10"), "equal", [])

    def test_non_positive_amount(self):
        """Zero and negative totals are rejected."""
        with pytest.raises(InvalidSplitError, match="positive"):
            compute_shares(Decimal("0"), "equal", people("a"))
        with pytest.raises(InvalidSplitError, match="positive"):
            compute_shares(Decimal("-5"), "equal", people("a"))

    def test_duplicate_participant(self):
        """A participant may only appear once."""
        with pytest.raises(InvalidSplitError, match="listed twice"):
            compute_shares(Decimal("10"), "equal", people("a", "a"))

    def test_negative_share(self):
        """Negative explicit shares are rejected."""
        with pytest.raises(InvalidSplitError, match="cannot be negative"):
            compute_shares(
                Decimal("10"), "exact", people(("a", "-5"), ("b", "15"))
            )

    def test_sub_cent_total(self):
        """Totals finer than a cent cannot be stored exactly."""
        with pytest.raises(ValidationError, match="two decimal places"):
            compute_shares(Decimal("10.005"), "equal", people("a", "b"))

    def test_sub_cent_exact_share(self):
        """Exact shares finer than a cent are rejected even when they sum up."""
        with pytest.raises(ValidationError, match="Share for participant a"):
            compute_shares(
                Decimal("0.01"), "exact", people(("a", "0.0004"), ("b", "0.0096"))
            )

    def test_mismatch_is_an_invalid_split(self):
        """Callers can catch every split problem with one type."""
        assert issubclass(SplitMismatchError, InvalidSplitError)

"""Resolve an expense total into per-participant shares."""

import logging
from decimal import Decimal

from .exceptions import InvalidSplitError, SplitMismatchError
from .models import ParticipantInput, ParticipantShare, SplitType
from .money import (
    ZERO,
    allocate_evenly,
    require_cents,
    sum_amounts,
    to_cents,
    within_tolerance,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def compute_shares(
    total_amount: Decimal,
    split_type: SplitType,
    participants: list[ParticipantInput],
) -> list[ParticipantShare]:
    """
    Resolve the share owed by each participant.

    Used identically when an expense is created and when it is edited.

    Args:
        total_amount: Positive expense total
        split_type: "equal", "exact" or "percentage"
        participants: Ordered participants, optionally with explicit shares

    Returns:
        Participants in the same order with resolved, non-negative shares
        summing to the total within tolerance

    Raises:
        ValidationError: If the total or an exact share is finer than a cent
        InvalidSplitError: If the participant list or a share is unusable
        SplitMismatchError: If the shares cannot be reconciled with the total
    """
    _check_participants(total_amount, participants)

    if split_type == "equal":
        amounts = allocate_evenly(total_amount, len(participants))
    elif split_type == "exact":
        for p in participants:
            if p.share is not None:
                require_cents(p.share, f"Share for participant {p.user_id}")
        amounts = _resolve_parts(
            [p.share for p in participants], total_amount, label="Exact shares"
        )
    elif split_type == "percentage":
        percentages = _resolve_parts(
            [p.share for p in participants], HUNDRED, label="Percentages"
        )
        amounts = _percentages_to_amounts(percentages, total_amount)
    else:
        raise InvalidSplitError(f"Unknown split type: {split_type}")

    if any(amount < ZERO for amount in amounts):
        raise InvalidSplitError("Resolved shares cannot be negative")

    shares = [
        ParticipantShare(
            user_id=p.user_id,
            share=amount,
            requested=p.share if split_type != "equal" else None,
        )
        for p, amount in zip(participants, amounts, strict=True)
    ]

    _verify_shares(shares, total_amount)
    return shares


def _check_participants(
    total_amount: Decimal, participants: list[ParticipantInput]
) -> None:
    if total_amount <= ZERO:
        raise InvalidSplitError("Amount must be positive")
    require_cents(total_amount)
    if not participants:
        raise InvalidSplitError("At least one participant is required")

    seen: set[str] = set()
    for p in participants:
        if p.user_id in seen:
            raise InvalidSplitError(f"Participant {p.user_id} is listed twice")
        seen.add(p.user_id)
        if p.share is not None and p.share < ZERO:
            raise InvalidSplitError(
                f"Share for participant {p.user_id} cannot be negative"
            )


def _resolve_parts(
    supplied: list[Decimal | None], target: Decimal, label: str
) -> list[Decimal]:
    """
    Fill in missing parts so that the parts add up to `target`.

    - none supplied: split the target evenly
    - all supplied: they must already sum to the target (within tolerance)
    - some supplied: split what is left evenly among the rest
    """
    missing = [i for i, part in enumerate(supplied) if part is None]

    if len(missing) == len(supplied):
        return allocate_evenly(target, len(supplied))

    given_total = sum_amounts(part for part in supplied if part is not None)

    if not missing:
        if not within_tolerance(given_total, target):
            raise SplitMismatchError(
                f"{label} must sum to {target} (got {given_total})"
            )
        return [part for part in supplied if part is not None]

    remainder = target - given_total
    if remainder < ZERO:
        raise SplitMismatchError(
            f"{label} already exceed {target} (got {given_total}) "
            f"before the {len(missing)} unspecified participant(s)"
        )

    fill = allocate_evenly(remainder, len(missing))
    parts = list(supplied)
    for index, part in zip(missing, fill, strict=True):
        parts[index] = part
    return [part for part in parts if part is not None]


def _percentages_to_amounts(
    percentages: list[Decimal], total_amount: Decimal
) -> list[Decimal]:
    """Convert percentages to cent amounts, absorbing the rounding residual."""
    amounts = [to_cents(pct / HUNDRED * total_amount) for pct in percentages]

    residual = total_amount - sum_amounts(amounts)
    if residual != ZERO:
        # Adjust the largest share, which minimizes relative error impact
        largest = max(range(len(amounts)), key=lambda i: amounts[i])
        amounts[largest] += residual
        logger.debug(
            f"Applied rounding adjustment of {residual} to participant #{largest}"
        )

    return amounts


def _verify_shares(shares: list[ParticipantShare], total_amount: Decimal) -> None:
    resolved_total = sum_amounts(s.share for s in shares)
    if not within_tolerance(resolved_total, total_amount):
        raise SplitMismatchError(
            f"Resolved shares sum to {resolved_total}, expected {total_amount}"
        )

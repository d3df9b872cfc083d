"""Split allocation with exact-sum rounding.

The first participant in the list is always the remainder holder (by
convention the payer/owner). Every other share is computed directly from the
mode; the remainder holder receives ``total - sum(other shares)`` so the shares
always add up to the total exactly.
"""

import logging
from collections.abc import Mapping, Sequence
from decimal import Decimal

from .exceptions import EmptyParticipantSet, InvalidSplitConfig
from .models import ParticipantId, SplitMode, SplitShare
from .money import HUNDRED, ZERO, floor_money, round_money, to_decimal

logger = logging.getLogger(__name__)


def allocate(
    total: Decimal,
    participants: Sequence[ParticipantId],
    mode: SplitMode = "equal",
    params: Mapping[ParticipantId, Decimal] | None = None,
) -> list[SplitShare]:
    """
    Divide a total among participants.

    Args:
        total: Amount to divide (two decimal places, non-negative)
        participants: Ordered participants; the first absorbs the remainder
        mode: "equal", "percentage" or "amount"
        params: Percentages or fixed amounts keyed by participant. The first
                participant's entry is ignored; missing entries count as 0.

    Returns:
        One share per participant, in input order, summing exactly to total

    Raises:
        EmptyParticipantSet: If no participants were supplied
        InvalidSplitConfig: If params cannot be honored without breaking the
                            sum invariant
    """
    total = to_decimal(total)
    _validate_participants(total, participants)

    holder, others = participants[0], list(participants[1:])
    values = _validate_params(total, participants, mode, params or {})

    if mode == "equal":
        per_person = floor_money(total / len(participants))
        other_amounts = [per_person for _ in others]
    elif mode == "percentage":
        other_amounts = [round_money(total * values[p] / HUNDRED) for p in others]
    elif mode == "amount":
        other_amounts = [values[p] for p in others]
    else:
        raise InvalidSplitConfig(f"Unknown split mode: {mode}")

    remainder = total - sum(other_amounts, ZERO)
    if mode == "amount":
        remainder = max(remainder, ZERO)

    shares = [SplitShare(participant=holder, amount=remainder)]
    shares.extend(
        SplitShare(participant=p, amount=amount)
        for p, amount in zip(others, other_amounts, strict=True)
    )

    logger.debug(
        f"Allocated {total} among {len(shares)} participants ({mode}), "
        f"remainder holder {holder} receives {remainder}"
    )

    return shares


def split_equally(
    total: Decimal, participants: Sequence[ParticipantId]
) -> list[SplitShare]:
    """Shorthand for an equal split."""
    return allocate(total, participants, "equal")


def _validate_participants(
    total: Decimal, participants: Sequence[ParticipantId]
) -> None:
    if not participants:
        raise EmptyParticipantSet()
    if len(set(participants)) != len(participants):
        raise InvalidSplitConfig("Each participant may appear only once in a split")
    if total < 0:
        raise InvalidSplitConfig("Split total cannot be negative")


def _validate_params(
    total: Decimal,
    participants: Sequence[ParticipantId],
    mode: SplitMode,
    params: Mapping[ParticipantId, Decimal],
) -> dict[ParticipantId, Decimal]:
    """Check mode parameters for everyone except the remainder holder.

    Returns the parameter value for each non-first participant (0 if absent).
    """
    unknown = [p for p in params if p not in participants]
    if unknown:
        raise InvalidSplitConfig(
            f"Split parameters reference unknown participants: {', '.join(unknown)}"
        )

    others = participants[1:]
    values = {p: to_decimal(params.get(p, ZERO)) for p in others}

    if mode == "percentage":
        for participant, percent in values.items():
            if percent < 0 or percent > HUNDRED:
                raise InvalidSplitConfig(
                    f"Percentage for {participant} must be between 0 and 100"
                )
        if sum(values.values(), ZERO) > HUNDRED:
            raise InvalidSplitConfig("Others' percentages cannot exceed 100%")

    elif mode == "amount":
        for participant, amount in values.items():
            if amount < 0:
                raise InvalidSplitConfig(
                    f"Amount for {participant} cannot be negative"
                )
        others_total = sum(values.values(), ZERO)
        if others_total > total:
            raise InvalidSplitConfig(
                f"Others' amounts ({others_total}) cannot exceed the total ({total})"
            )

    return values

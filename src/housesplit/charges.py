"""Proportional tax and service charge distribution for itemized bills."""

import logging
from collections.abc import Mapping, Sequence
from decimal import Decimal

from .allocator import allocate, split_equally
from .exceptions import EmptyParticipantSet, InvalidChargeSpec
from .models import (
    ChargeDistribution,
    ChargeSpec,
    LineItem,
    ParticipantBreakdown,
    ParticipantId,
    SplitShare,
)
from .money import CENT, HUNDRED, ZERO, floor_money, round_money, to_decimal

logger = logging.getLogger(__name__)


def resolve_charge(spec: ChargeSpec, subtotal: Decimal) -> Decimal:
    """
    Resolve a charge to an absolute amount.

    A percentage, when present, overrides the absolute amount.

    Raises:
        InvalidChargeSpec: If the amount or percentage is negative
    """
    if spec.amount < 0:
        raise InvalidChargeSpec(f"Charge amount cannot be negative: {spec.amount}")
    if spec.percent is not None:
        if spec.percent < 0:
            raise InvalidChargeSpec(
                f"Charge percentage cannot be negative: {spec.percent}"
            )
        return subtotal * spec.percent / HUNDRED
    return spec.amount


def subtotals_by_participant(
    line_items: Sequence[LineItem],
) -> dict[ParticipantId, Decimal]:
    """Sum line items per participant, ordered by first appearance."""
    subtotals: dict[ParticipantId, Decimal] = {}
    for item in line_items:
        if item.unit_amount < 0:
            raise InvalidChargeSpec(
                f"Line item '{item.description}' has a negative amount"
            )
        if item.quantity < 1:
            raise InvalidChargeSpec(
                f"Line item '{item.description}' must have a quantity of at least 1"
            )
        subtotals[item.participant] = (
            subtotals.get(item.participant, ZERO) + item.line_total
        )
    return subtotals


def distribute_charges(
    line_items: Sequence[LineItem],
    tax: ChargeSpec | None = None,
    service: ChargeSpec | None = None,
    subtotal_override: Decimal | None = None,
) -> ChargeDistribution:
    """
    Spread tax and service charge across participants by itemized subtotal.

    Rates are computed against the bill subtotal and applied to each
    participant's subtotal. Values stay unrounded until they are placed in
    the returned breakdown.

    Args:
        line_items: Items, each attributed to one participant
        tax: Tax as an amount or percentage
        service: Service charge as an amount or percentage
        subtotal_override: Receipt subtotal to use instead of the item sum

    Returns:
        Per-participant breakdown plus bill totals
    """
    tax = tax or ChargeSpec()
    service = service or ChargeSpec()

    subtotals = subtotals_by_participant(line_items)

    if subtotal_override is not None:
        subtotal = to_decimal(subtotal_override)
        if subtotal < 0:
            raise InvalidChargeSpec("Subtotal override cannot be negative")
    else:
        subtotal = sum(subtotals.values(), ZERO)

    tax_amount = resolve_charge(tax, subtotal)
    service_amount = resolve_charge(service, subtotal)

    tax_rate = tax_amount / subtotal if subtotal > 0 else ZERO
    service_rate = service_amount / subtotal if subtotal > 0 else ZERO

    breakdown = []
    for participant, participant_subtotal in subtotals.items():
        tax_share = participant_subtotal * tax_rate
        service_share = participant_subtotal * service_rate
        breakdown.append(
            ParticipantBreakdown(
                participant=participant,
                subtotal=round_money(participant_subtotal),
                tax_share=round_money(tax_share),
                service_share=round_money(service_share),
                total=round_money(participant_subtotal + tax_share + service_share),
            )
        )

    grand_total = subtotal + tax_amount + service_amount

    logger.debug(
        f"Distributed charges over {len(breakdown)} participants: "
        f"subtotal {subtotal}, tax {tax_amount}, service {service_amount}"
    )

    return ChargeDistribution(
        subtotal=round_money(subtotal),
        tax_amount=round_money(tax_amount),
        tax_percent=tax.percent,
        service_charge=round_money(service_amount),
        service_percent=service.percent,
        total=round_money(grand_total),
        breakdown=breakdown,
    )


def apportion(
    total: Decimal, weights: Mapping[ParticipantId, Decimal]
) -> dict[ParticipantId, Decimal]:
    """
    Split a cent amount in proportion to weights using largest remainders.

    Every amount is floored to the cent, then the cents left over go to the
    largest fractional remainders. Ties go to the earlier key.
    """
    weight_sum = sum(weights.values(), ZERO)
    if weight_sum <= 0:
        return {participant: ZERO for participant in weights}

    exact = {p: total * weight / weight_sum for p, weight in weights.items()}
    amounts = {p: floor_money(value) for p, value in exact.items()}

    leftover = int((total - sum(amounts.values(), ZERO)) / CENT)
    by_remainder = sorted(weights, key=lambda p: exact[p] - amounts[p], reverse=True)
    for participant in by_remainder[:leftover]:
        amounts[participant] += CENT
    return amounts


def charge_shares(
    distribution: ChargeDistribution, payer: ParticipantId | None = None
) -> list[SplitShare]:
    """
    Turn a charge distribution into split shares summing to its total.

    Tax and service are applied at one rate to everybody, so each share is
    the grand total apportioned by item subtotal. The payer absorbs the
    rounding remainder when they have items on the bill; otherwise the first
    participant on the bill does.

    Raises:
        EmptyParticipantSet: If the distribution has no participants
    """
    if not distribution.breakdown:
        raise EmptyParticipantSet("A split bill needs at least one line item")

    participants = [row.participant for row in distribution.breakdown]
    if payer in participants:
        participants.remove(payer)
        participants.insert(0, payer)

    subtotals = {row.participant: row.subtotal for row in distribution.breakdown}
    amounts = apportion(distribution.total, {p: subtotals[p] for p in participants})
    shares = allocate(distribution.total, participants, "amount", amounts)

    # Present shares in bill order rather than remainder-holder order
    by_participant = {share.participant: share for share in shares}
    return [by_participant[row.participant] for row in distribution.breakdown]


def quick_split(
    total: Decimal,
    participants: Sequence[ParticipantId],
    tax: ChargeSpec | None = None,
    service: ChargeSpec | None = None,
) -> tuple[ChargeDistribution, list[SplitShare]]:
    """
    Apply tax and service to a lump total and split the result equally.

    Args:
        total: Pre-charge amount
        participants: Ordered participants; the first absorbs the remainder

    Returns:
        Tuple of (distribution preview, equal split shares)
    """
    if not participants:
        raise EmptyParticipantSet()

    subtotal = to_decimal(total)
    if subtotal < 0:
        raise InvalidChargeSpec("Quick split total cannot be negative")

    tax = tax or ChargeSpec()
    service = service or ChargeSpec()
    tax_amount = resolve_charge(tax, subtotal)
    service_amount = resolve_charge(service, subtotal)
    grand_total = round_money(subtotal + tax_amount + service_amount)

    shares = split_equally(grand_total, participants)

    # Per-person view mirrors the shares; charges are spread evenly
    count = len(participants)
    breakdown = [
        ParticipantBreakdown(
            participant=share.participant,
            subtotal=round_money(subtotal / count),
            tax_share=round_money(tax_amount / count),
            service_share=round_money(service_amount / count),
            total=share.amount,
        )
        for share in shares
    ]

    distribution = ChargeDistribution(
        subtotal=round_money(subtotal),
        tax_amount=round_money(tax_amount),
        tax_percent=tax.percent,
        service_charge=round_money(service_amount),
        service_percent=service.percent,
        total=grand_total,
        breakdown=breakdown,
    )
    return distribution, shares

"""Balance netting and debt settlement.

Two debt models are exposed side by side and deliberately not unified:

- pairwise balances follow expense splits between two specific people;
- group balances compare what each person paid against an even fair share.

They can disagree for the same pair of participants.
"""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from .allocator import split_equally
from .models import (
    Balance,
    Expense,
    GroupBalanceSummary,
    PairwiseBalance,
    ParticipantId,
    Payment,
    Transfer,
)
from .money import CENT, ZERO, is_settled, round_money

logger = logging.getLogger(__name__)

EPSILON = CENT


def _confirmed(payments: Iterable[Payment]) -> list[Payment]:
    return [p for p in payments if p.is_confirmed]


def _sum_payments(
    payments: Iterable[Payment], sender: ParticipantId, receiver: ParticipantId
) -> Decimal:
    return sum(
        (
            p.amount
            for p in payments
            if p.from_participant == sender and p.to_participant == receiver
        ),
        ZERO,
    )


# ============================================================================
# Pairwise (split-based) debt
# ============================================================================


def pairwise_balance(
    participant: ParticipantId,
    counterparty: ParticipantId,
    expenses: Iterable[Expense],
    payments: Iterable[Payment],
) -> PairwiseBalance:
    """
    Compute what ``participant`` owes ``counterparty`` from splits and payments.

    net = owed_to_counterparty - owed_by_counterparty
          - paid_to_counterparty + received_from_counterparty

    Positive net means participant owes counterparty.
    """
    owed_to = ZERO
    owed_by = ZERO
    for expense in expenses:
        if expense.payer == counterparty:
            owed_to += expense.share_of(participant)
        elif expense.payer == participant:
            owed_by += expense.share_of(counterparty)

    confirmed = _confirmed(payments)
    paid = _sum_payments(confirmed, participant, counterparty)
    received = _sum_payments(confirmed, counterparty, participant)

    return PairwiseBalance(
        participant=participant,
        counterparty=counterparty,
        owed_to_counterparty=owed_to,
        owed_by_counterparty=owed_by,
        paid_to_counterparty=paid,
        received_from_counterparty=received,
        net=owed_to - owed_by - paid + received,
    )


def pairwise_balances(
    participant: ParticipantId,
    others: Iterable[ParticipantId],
    expenses: Sequence[Expense],
    payments: Sequence[Payment],
    epsilon: Decimal = EPSILON,
) -> list[PairwiseBalance]:
    """Pairwise balances against every other participant, settled pairs omitted."""
    results = []
    for counterparty in others:
        if counterparty == participant:
            continue
        balance = pairwise_balance(participant, counterparty, expenses, payments)
        if not is_settled(balance.net, epsilon):
            results.append(balance)
    return results


def payment_balance(
    participant: ParticipantId,
    counterparty: ParticipantId,
    payments: Iterable[Payment],
) -> Decimal:
    """
    Confirmed payments only: what participant paid minus what they received.

    Positive means the counterparty has been paid more than they paid back.
    """
    confirmed = _confirmed(payments)
    return _sum_payments(confirmed, participant, counterparty) - _sum_payments(
        confirmed, counterparty, participant
    )


# ============================================================================
# Group (fair-share) balances
# ============================================================================


def _status(net: Decimal, epsilon: Decimal) -> str:
    if net > epsilon:
        return "owed"
    if net < -epsilon:
        return "owes"
    return "settled"


def group_balances(
    participants: Sequence[ParticipantId],
    expenses: Iterable[Expense],
    payments: Iterable[Payment],
    epsilon: Decimal = EPSILON,
) -> list[Balance]:
    """
    Compute each participant's balance against an even fair share.

    The total is split with ``allocate`` so fair shares are whole cents and
    sum exactly to the total; the first participant absorbs the remainder.
    Nets are therefore exact to the cent and settle to zero.

    Returns:
        One balance per participant in input order. Positive net means the
        group owes that participant.
    """
    if not participants:
        return []

    paid_by: dict[ParticipantId, Decimal] = {}
    total = ZERO
    for expense in expenses:
        paid_by[expense.payer] = paid_by.get(expense.payer, ZERO) + expense.total_amount
        total += expense.total_amount

    fair_shares = {
        share.participant: share.amount
        for share in split_equally(round_money(total), participants)
    }
    nets = {p: paid_by.get(p, ZERO) - fair_shares[p] for p in participants}

    for payment in _confirmed(payments):
        if payment.from_participant in nets:
            nets[payment.from_participant] += payment.amount
        if payment.to_participant in nets:
            nets[payment.to_participant] -= payment.amount

    return [
        Balance(
            participant=p,
            total_paid=paid_by.get(p, ZERO),
            fair_share=fair_shares[p],
            net=nets[p],
            status=_status(nets[p], epsilon),
        )
        for p in participants
    ]


# ============================================================================
# Settlement
# ============================================================================


def settle(balances: Sequence[Balance], epsilon: Decimal = EPSILON) -> list[Transfer]:
    """
    Reduce balances to a short list of transfers that settles everyone.

    Greedy: the largest debtor pays the largest creditor, repeatedly. Sorting
    is stable, so equal amounts keep participant order. Every transfer retires
    at least one party, so there are at most N - 1 transfers.

    Args:
        balances: Group balances (positive net = owed money)
        epsilon: Magnitudes below this count as settled

    Returns:
        Transfers with amounts rounded to the cent; empty when fully settled
    """
    creditors = sorted(
        ([b.participant, b.net] for b in balances if b.net > epsilon),
        key=lambda entry: entry[1],
        reverse=True,
    )
    debtors = sorted(
        ([b.participant, -b.net] for b in balances if b.net < -epsilon),
        key=lambda entry: entry[1],
        reverse=True,
    )

    transfers: list[Transfer] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])

        if amount > epsilon:
            transfers.append(
                Transfer(
                    from_participant=debtor[0],
                    to_participant=creditor[0],
                    amount=round_money(amount),
                )
            )

        debtor[1] -= amount
        creditor[1] -= amount

        if debtor[1] < epsilon:
            i += 1
        if creditor[1] < epsilon:
            j += 1

    if transfers:
        logger.debug(f"Settled {len(balances)} balances with {len(transfers)} transfers")
    else:
        logger.debug("All balances settled, no transfers needed")

    return transfers


def summarize(
    participants: Sequence[ParticipantId],
    expenses: Sequence[Expense],
    payments: Sequence[Payment],
    epsilon: Decimal = EPSILON,
) -> GroupBalanceSummary:
    """Group balances plus the transfers that settle them."""
    balances = group_balances(participants, expenses, payments, epsilon)
    transfers = settle(balances, epsilon)
    total = sum((e.total_amount for e in expenses), ZERO)
    fair_share = total / len(participants) if participants else ZERO

    return GroupBalanceSummary(
        total_expenses=total,
        fair_share=round_money(fair_share),
        member_count=len(participants),
        balances=[
            b.model_copy(
                update={"net": round_money(b.net), "fair_share": round_money(b.fair_share)}
            )
            for b in balances
        ],
        transfers=transfers,
    )

"""Pydantic domain models for HouseSplit."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from .exceptions import InvalidPaymentTransition

ParticipantId = str

SplitMode = Literal["equal", "percentage", "amount"]
Frequency = Literal["daily", "weekly", "monthly", "yearly"]
PaymentStatus = Literal["pending", "confirmed", "rejected"]
BalanceStatus = Literal["owed", "owes", "settled"]


def new_id() -> str:
    """Generate a new record identifier."""
    return uuid4().hex


# ============================================================================
# Split Models
# ============================================================================


class SplitShare(BaseModel):
    """One participant's portion of a total."""

    participant: ParticipantId
    amount: Decimal


class LineItem(BaseModel):
    """An itemized bill line attributed to exactly one participant."""

    description: str = ""
    unit_amount: Decimal
    quantity: int = 1
    participant: ParticipantId

    @property
    def line_total(self) -> Decimal:
        return self.unit_amount * self.quantity


class ChargeSpec(BaseModel):
    """A tax or service charge.

    ``percent`` is authoritative when supplied; ``amount`` is used otherwise.
    """

    amount: Decimal = Decimal("0")
    percent: Decimal | None = None


# ============================================================================
# Split Policies (recurring templates)
# ============================================================================


class EqualAmongActive(BaseModel):
    """Split equally among every active participant, payer first."""

    kind: Literal["equal_active"] = "equal_active"


class EqualAmongMembers(BaseModel):
    """Split equally among a fixed member list; the first member is remainder holder."""

    kind: Literal["equal_members"] = "equal_members"
    members: list[ParticipantId] = Field(min_length=1)


class FixedPercentages(BaseModel):
    """Percentages per member; the first entry absorbs the remainder."""

    kind: Literal["percentages"] = "percentages"
    percentages: dict[ParticipantId, Decimal] = Field(min_length=1)


class FixedAmounts(BaseModel):
    """Fixed amounts per member; the first entry absorbs the remainder."""

    kind: Literal["amounts"] = "amounts"
    amounts: dict[ParticipantId, Decimal] = Field(min_length=1)


SplitPolicy = Annotated[
    EqualAmongActive | EqualAmongMembers | FixedPercentages | FixedAmounts,
    Field(discriminator="kind"),
]


# ============================================================================
# Ledger Records
# ============================================================================


class Participant(BaseModel):
    """A household member."""

    id: ParticipantId
    display_name: str
    is_active: bool = True


class Expense(BaseModel):
    """An expense paid by one participant, optionally split among several."""

    id: str = Field(default_factory=new_id)
    description: str
    total_amount: Decimal = Field(ge=0)
    payer: ParticipantId  # the participant who is owed
    date: date
    splits: list[SplitShare] = Field(default_factory=list)
    recurring_template_id: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _splits_sum_to_total(self) -> "Expense":
        if self.splits:
            split_total = sum((s.amount for s in self.splits), Decimal("0"))
            if split_total != self.total_amount:
                raise ValueError(
                    f"Splits sum to {split_total} but expense total is "
                    f"{self.total_amount}"
                )
        return self

    def share_of(self, participant: ParticipantId) -> Decimal:
        """Get a participant's split amount (0 when they hold no split)."""
        for split in self.splits:
            if split.participant == participant:
                return split.amount
        return Decimal("0")


class Payment(BaseModel):
    """A real-world payment from one participant to another."""

    id: str = Field(default_factory=new_id)
    from_participant: ParticipantId
    to_participant: ParticipantId
    amount: Decimal = Field(gt=0)
    status: PaymentStatus = "pending"
    date: datetime = Field(default_factory=datetime.now)
    description: str | None = None

    @model_validator(mode="after")
    def _distinct_parties(self) -> "Payment":
        if self.from_participant == self.to_participant:
            raise ValueError("Cannot make payment to yourself")
        return self

    @property
    def is_confirmed(self) -> bool:
        return self.status == "confirmed"

    def with_status(self, status: PaymentStatus) -> "Payment":
        """Return a copy moved to a terminal status.

        Only ``pending`` payments can change; confirmed and rejected are final.
        """
        if status == "pending":
            raise InvalidPaymentTransition("Payments cannot be moved back to pending")
        if self.status != "pending":
            raise InvalidPaymentTransition(
                f"Payment {self.id} is already {self.status} and cannot become {status}"
            )
        return self.model_copy(update={"status": status})


class RecurringTemplate(BaseModel):
    """A rule that periodically generates a split expense."""

    id: str = Field(default_factory=new_id)
    description: str
    amount: Decimal = Field(ge=0)
    payer: ParticipantId
    frequency: Frequency
    start_date: date
    next_due_date: date
    end_date: date | None = None
    max_occurrences: int | None = Field(default=None, ge=1)
    occurrences_created: int = Field(default=0, ge=0)
    is_active: bool = True
    split_policy: SplitPolicy = Field(default_factory=EqualAmongActive)
    version: int = 0  # optimistic lock for concurrent processing

    @model_validator(mode="before")
    @classmethod
    def _default_next_due(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("next_due_date") is None:
            data = {**data, "next_due_date": data.get("start_date")}
        return data

    @property
    def cap_reached(self) -> bool:
        return (
            self.max_occurrences is not None
            and self.occurrences_created >= self.max_occurrences
        )


# ============================================================================
# Derived Results
# ============================================================================


class Balance(BaseModel):
    """A participant's fair-share balance. Positive net means the group owes them."""

    participant: ParticipantId
    total_paid: Decimal
    fair_share: Decimal
    net: Decimal
    status: BalanceStatus


class Transfer(BaseModel):
    """A suggested payment that reduces outstanding balances."""

    from_participant: ParticipantId
    to_participant: ParticipantId
    amount: Decimal


class PairwiseBalance(BaseModel):
    """Split-based debt between two specific participants.

    Positive ``net`` means ``participant`` owes ``counterparty``.
    """

    participant: ParticipantId
    counterparty: ParticipantId
    owed_to_counterparty: Decimal
    owed_by_counterparty: Decimal
    paid_to_counterparty: Decimal
    received_from_counterparty: Decimal
    net: Decimal

    @property
    def participant_owes(self) -> bool:
        return self.net > 0


class GroupBalanceSummary(BaseModel):
    """The overall "who owes who" view."""

    total_expenses: Decimal
    fair_share: Decimal
    member_count: int
    balances: list[Balance]
    transfers: list[Transfer]

    @property
    def fully_settled(self) -> bool:
        return not self.transfers


class ParticipantBreakdown(BaseModel):
    """One participant's itemized subtotal plus proportional charges."""

    participant: ParticipantId
    subtotal: Decimal
    tax_share: Decimal
    service_share: Decimal
    total: Decimal


class ChargeDistribution(BaseModel):
    """Preview of an itemized or quick split before it is committed."""

    subtotal: Decimal
    tax_amount: Decimal
    tax_percent: Decimal | None = None
    service_charge: Decimal
    service_percent: Decimal | None = None
    total: Decimal
    breakdown: list[ParticipantBreakdown]


class ProcessResult(BaseModel):
    """Outcome of one "process due" pass over recurring templates."""

    created: list[Expense] = Field(default_factory=list)
    deactivated: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)

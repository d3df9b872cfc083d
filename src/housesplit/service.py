"""Service layer that composes the split engine with the SQLite store.

Engine modules (allocator, charges, settlement, scheduler) stay pure; this
module reads inputs from the database, calls them, and writes results back.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from . import scheduler
from .allocator import allocate
from .charges import charge_shares, distribute_charges, quick_split
from .config import Settings
from .db import Database
from .exceptions import (
    ConcurrentMaterializationConflict,
    HouseSplitError,
    InvalidPayment,
    RecordNotFoundError,
    TemplateNotDue,
)
from .models import (
    ChargeDistribution,
    ChargeSpec,
    EqualAmongActive,
    Expense,
    Frequency,
    GroupBalanceSummary,
    LineItem,
    PairwiseBalance,
    ParticipantId,
    Payment,
    PaymentStatus,
    ProcessResult,
    RecurringTemplate,
    SplitMode,
    SplitPolicy,
)
from .money import round_money, to_decimal
from .settlement import pairwise_balance, pairwise_balances, payment_balance, summarize

logger = logging.getLogger(__name__)

EDITABLE_TEMPLATE_FIELDS = frozenset(
    {
        "description",
        "amount",
        "payer",
        "frequency",
        "start_date",
        "end_date",
        "max_occurrences",
        "split_policy",
        "is_active",
    }
)


class HouseholdService:
    """Service for household expenses, payments, balances and recurring charges."""

    def __init__(self, settings: Settings, database: Database):
        """Initialize the household service."""
        self.settings = settings
        self.db = database

    # ========================================================================
    # Expenses and split bills
    # ========================================================================

    def create_expense(
        self,
        description: str,
        total: Decimal,
        payer: ParticipantId,
        participants: Sequence[ParticipantId] = (),
        mode: SplitMode = "equal",
        params: Mapping[ParticipantId, Decimal] | None = None,
        expense_date: date | None = None,
        notes: str | None = None,
    ) -> Expense:
        """
        Create an expense, split among participants when any are given.

        The first participant absorbs rounding; pass the payer first to follow
        the household convention.
        """
        total = round_money(to_decimal(total))
        splits = allocate(total, participants, mode, params) if participants else []

        expense = Expense(
            description=description,
            total_amount=total,
            payer=payer,
            date=expense_date or date.today(),
            splits=splits,
            notes=notes,
        )
        self.db.save_expense(expense)

        logger.info(
            f"Created expense {expense.id} '{description}' for {total} "
            f"with {len(splits)} splits"
        )
        return expense

    def update_expense(
        self,
        expense_id: str,
        description: str | None = None,
        total: Decimal | None = None,
        payer: ParticipantId | None = None,
        participants: Sequence[ParticipantId] | None = None,
        mode: SplitMode = "equal",
        params: Mapping[ParticipantId, Decimal] | None = None,
        expense_date: date | None = None,
        notes: str | None = None,
    ) -> Expense:
        """
        Edit an expense and replace its splits.

        Splits are recomputed with ``allocate`` when new participants are given
        or the total changes; without new participants the stored split members
        are re-split in their stored order. An empty participant list clears
        the splits.

        Raises:
            RecordNotFoundError: If the expense does not exist
            InvalidSplitConfig: If the new split cannot be allocated
        """
        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise RecordNotFoundError("Expense", expense_id)

        new_total = (
            round_money(to_decimal(total)) if total is not None else existing.total_amount
        )
        splits = existing.splits
        if participants is not None or new_total != existing.total_amount:
            members = (
                list(participants)
                if participants is not None
                else [split.participant for split in existing.splits]
            )
            splits = allocate(new_total, members, mode, params) if members else []

        updated = Expense(
            id=existing.id,
            description=description if description is not None else existing.description,
            total_amount=new_total,
            payer=payer or existing.payer,
            date=expense_date or existing.date,
            splits=splits,
            recurring_template_id=existing.recurring_template_id,
            notes=notes if notes is not None else existing.notes,
        )
        self.db.update_expense(updated)

        logger.info(
            f"Updated expense {expense_id}: total {new_total} with {len(splits)} splits"
        )
        return updated

    def preview_split_bill(
        self,
        items: Sequence[LineItem],
        tax: ChargeSpec | None = None,
        service: ChargeSpec | None = None,
        subtotal_override: Decimal | None = None,
    ) -> ChargeDistribution:
        """Calculate an itemized split without saving anything."""
        return distribute_charges(items, tax, service, subtotal_override)

    def create_split_bill(
        self,
        title: str,
        payer: ParticipantId,
        items: Sequence[LineItem],
        tax: ChargeSpec | None = None,
        service: ChargeSpec | None = None,
        expense_date: date | None = None,
        notes: str | None = None,
    ) -> Expense:
        """
        Create one expense with per-participant splits from an itemized bill.

        Each participant's share is their items plus proportional tax and
        service; shares sum exactly to the rounded grand total.
        """
        distribution = distribute_charges(items, tax, service)
        splits = charge_shares(distribution, payer)

        expense = Expense(
            description=title,
            total_amount=distribution.total,
            payer=payer,
            date=expense_date or date.today(),
            splits=splits,
            notes=notes or f"Split bill - {len(splits)} people",
        )
        self.db.save_expense(expense)

        logger.info(
            f"Created split bill {expense.id} '{title}': subtotal "
            f"{distribution.subtotal}, tax {distribution.tax_amount}, "
            f"service {distribution.service_charge}, total {distribution.total}"
        )
        return expense

    def quick_split(
        self,
        description: str,
        total: Decimal,
        participants: Sequence[ParticipantId],
        payer: ParticipantId | None = None,
        tax: ChargeSpec | None = None,
        service: ChargeSpec | None = None,
        expense_date: date | None = None,
        notes: str | None = None,
    ) -> tuple[Expense, ChargeDistribution]:
        """
        Split a lump total (plus charges) equally and save it as one expense.

        The payer defaults to the first participant and is moved to the front
        so they absorb the rounding remainder.
        """
        ordered = list(participants)
        payer = payer or (ordered[0] if ordered else None)
        if payer in ordered:
            ordered.remove(payer)
            ordered.insert(0, payer)

        distribution, shares = quick_split(total, ordered, tax, service)

        expense = Expense(
            description=description,
            total_amount=distribution.total,
            payer=payer,
            date=expense_date or date.today(),
            splits=shares,
            notes=notes or f"Equal split among {len(shares)} people",
        )
        self.db.save_expense(expense)

        logger.info(
            f"Created quick split {expense.id} '{description}': "
            f"{distribution.total} among {len(shares)} people"
        )
        return expense, distribution

    # ========================================================================
    # Payments
    # ========================================================================

    def record_payment(
        self,
        from_participant: ParticipantId,
        to_participant: ParticipantId,
        amount: Decimal,
        description: str | None = None,
        paid_at: datetime | None = None,
    ) -> Payment:
        """Record a payment; auto-confirmed when the household setting allows it."""
        if from_participant == to_participant:
            raise InvalidPayment("Cannot make payment to yourself")

        status: PaymentStatus = (
            "confirmed" if self.settings.auto_accept_payments else "pending"
        )
        payment = Payment(
            from_participant=from_participant,
            to_participant=to_participant,
            amount=round_money(to_decimal(amount)),
            status=status,
            date=paid_at or datetime.now(),
            description=description,
        )
        self.db.save_payment(payment)

        logger.info(
            f"Recorded payment {payment.id}: {from_participant} -> "
            f"{to_participant} {payment.amount} ({status})"
        )
        return payment

    def _set_payment_status(self, payment_id: str, status: PaymentStatus) -> Payment:
        payment = self.db.get_payment(payment_id)
        if payment is None:
            raise RecordNotFoundError("Payment", payment_id)

        updated = payment.with_status(status)
        self.db.update_payment_status(updated)

        logger.info(f"Payment {payment_id} {status}")
        return updated

    def confirm_payment(self, payment_id: str) -> Payment:
        """Confirm a pending payment."""
        return self._set_payment_status(payment_id, "confirmed")

    def reject_payment(self, payment_id: str) -> Payment:
        """Reject a pending payment."""
        return self._set_payment_status(payment_id, "rejected")

    # ========================================================================
    # Balances
    # ========================================================================

    def balance_summary(
        self, start: date | None = None, end: date | None = None
    ) -> GroupBalanceSummary:
        """Fair-share balances and settling transfers for every participant."""
        participants = [p.id for p in self.db.list_participants()]
        expenses, payments = self.db.snapshot(start=start, end=end)
        return summarize(
            participants, expenses, payments, self.settings.settlement_epsilon
        )

    def pairwise_balances(self, participant: ParticipantId) -> list[PairwiseBalance]:
        """Split-based balances between one participant and everyone else."""
        others = [p.id for p in self.db.list_participants() if p.id != participant]
        expenses, payments = self.db.snapshot()
        return pairwise_balances(
            participant, others, expenses, payments, self.settings.settlement_epsilon
        )

    def pairwise_balance(
        self, participant: ParticipantId, counterparty: ParticipantId
    ) -> PairwiseBalance:
        """Split-based balance between two participants."""
        expenses, payments = self.db.snapshot()
        return pairwise_balance(participant, counterparty, expenses, payments)

    def payment_balance(
        self, participant: ParticipantId, counterparty: ParticipantId
    ) -> Decimal:
        """Confirmed payments from participant to counterparty minus the reverse."""
        _, payments = self.db.snapshot()
        return payment_balance(participant, counterparty, payments)

    # ========================================================================
    # Recurring templates
    # ========================================================================

    def create_template(
        self,
        description: str,
        amount: Decimal,
        payer: ParticipantId,
        frequency: Frequency,
        start_date: date,
        end_date: date | None = None,
        max_occurrences: int | None = None,
        split_policy: SplitPolicy | None = None,
    ) -> RecurringTemplate:
        """Create an active recurring template, first due on its start date."""
        template = RecurringTemplate(
            description=description,
            amount=round_money(to_decimal(amount)),
            payer=payer,
            frequency=frequency,
            start_date=start_date,
            next_due_date=start_date,
            end_date=end_date,
            max_occurrences=max_occurrences,
            split_policy=split_policy or EqualAmongActive(),
        )
        self.db.save_template(template)

        logger.info(
            f"Created {frequency} recurring template {template.id} "
            f"'{description}' for {template.amount} starting {start_date}"
        )
        return template

    def _get_template(self, template_id: str) -> RecurringTemplate:
        template = self.db.get_template(template_id)
        if template is None:
            raise RecordNotFoundError("Recurring template", template_id)
        return template

    def update_template(self, template_id: str, **changes: Any) -> RecurringTemplate:
        """
        Edit a recurring template.

        Moving the start date also moves the next due date to the new start.
        The write is checked against the version read here.

        Args:
            template_id: Template to edit
            **changes: New values for any of ``EDITABLE_TEMPLATE_FIELDS``

        Raises:
            RecordNotFoundError: If the template does not exist
            ConcurrentMaterializationConflict: If the template changed meanwhile
        """
        unknown = set(changes) - EDITABLE_TEMPLATE_FIELDS
        if unknown:
            raise TypeError(f"Cannot edit template fields: {', '.join(sorted(unknown))}")

        template = self._get_template(template_id)
        if "amount" in changes:
            changes["amount"] = round_money(to_decimal(changes["amount"]))
        if "start_date" in changes and changes["start_date"] != template.start_date:
            changes["next_due_date"] = changes["start_date"]

        updated = RecurringTemplate.model_validate(
            template.model_copy(update=changes).model_dump()
        )
        stored = self.db.update_template(updated, template.version)

        logger.info(
            f"Updated recurring template {template_id} "
            f"({', '.join(sorted(changes))}), next due {stored.next_due_date}"
        )
        return stored

    def cancel_template(self, template_id: str) -> RecurringTemplate:
        """Deactivate a template; previously created expenses remain."""
        template = self._get_template(template_id)
        updated = self.db.update_template_state(
            scheduler.cancel(template), template.version
        )
        logger.info(f"Cancelled recurring template {template_id}")
        return updated

    def reactivate_template(
        self, template_id: str, today: date | None = None
    ) -> RecurringTemplate:
        """Reactivate a template at the first scheduled date on or after today."""
        template = self._get_template(template_id)
        reactivated = scheduler.reactivate(template, today or date.today())
        return self.db.update_template_state(reactivated, template.version)

    def process_due(
        self, today: date | None = None, catch_up: bool | None = None
    ) -> ProcessResult:
        """
        Materialize every due recurring template.

        Each occurrence is written together with its template update in one
        transaction. A template that another pass advanced first is reported
        as a conflict and left for the next pass.

        Args:
            today: Processing date (defaults to the current date)
            catch_up: Keep materializing a template until it is no longer due;
                      defaults to the ``recurring_catch_up`` setting

        Returns:
            Created expenses, deactivated template ids and conflicting ids
        """
        today = today or date.today()
        if catch_up is None:
            catch_up = self.settings.recurring_catch_up

        active_participants = [p.id for p in self.db.list_participants(active_only=True)]
        result = ProcessResult()

        for template in self.db.list_templates(active_only=True):
            try:
                self._process_template(template, today, active_participants, catch_up, result)
            except ConcurrentMaterializationConflict as e:
                logger.warning(str(e))
                result.conflicts.append(template.id)
            except HouseSplitError as e:
                # Invalid stored split policy: leave the template due and move on
                logger.error(f"Failed to process recurring template {template.id}: {e}")

        logger.info(
            f"Processed {len(result.created)} recurring expenses "
            f"({len(result.deactivated)} deactivated, {len(result.conflicts)} conflicts)"
        )
        return result

    def _process_template(
        self,
        template: RecurringTemplate,
        today: date,
        active_participants: list[ParticipantId],
        catch_up: bool,
        result: ProcessResult,
    ):
        if scheduler.is_expired(template, today):
            self.db.update_template_state(
                scheduler.expire(template, today), template.version
            )
            result.deactivated.append(template.id)
            return

        current = template
        while True:
            try:
                expense, advanced = scheduler.materialize(
                    current, today, active_participants
                )
            except TemplateNotDue:
                logger.debug(f"Recurring template {current.id} not due")
                return

            # Always continue from the freshly advanced, freshly versioned template
            current = self.db.record_occurrence(expense, advanced, current.version)
            result.created.append(expense)

            logger.info(
                f"Materialized '{current.description}' for {expense.date} "
                f"({current.occurrences_created} created, next due {current.next_due_date})"
            )

            if not current.is_active:
                result.deactivated.append(current.id)
                return
            if not catch_up:
                return

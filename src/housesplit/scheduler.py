"""Recurring obligation scheduling.

Scheduled dates of a template are ``start_date + k * period`` for k = 0, 1, ...
Monthly and yearly steps are anchored on the start date, so a template that
starts on the 31st lands on the last day of shorter months and returns to the
31st afterwards (2024-01-31, 2024-02-29, 2024-03-31).

All functions here are pure: they return new templates and expenses and leave
persistence to the caller.
"""

import logging
from collections.abc import Sequence
from datetime import date

from dateutil.relativedelta import relativedelta

from .allocator import allocate
from .exceptions import EmptyParticipantSet, TemplateNotDue
from .models import (
    EqualAmongActive,
    EqualAmongMembers,
    Expense,
    FixedAmounts,
    FixedPercentages,
    Frequency,
    ParticipantId,
    RecurringTemplate,
    SplitShare,
)

logger = logging.getLogger(__name__)

FREQUENCY_LABELS = {
    "daily": "Daily",
    "weekly": "Weekly",
    "monthly": "Monthly",
    "yearly": "Yearly",
}


def occurrence_date(start_date: date, frequency: Frequency, index: int) -> date:
    """The ``index``-th scheduled date counting from ``start_date`` (index 0)."""
    if frequency == "daily":
        return start_date + relativedelta(days=index)
    if frequency == "weekly":
        return start_date + relativedelta(weeks=index)
    if frequency == "monthly":
        return start_date + relativedelta(months=index)
    if frequency == "yearly":
        return start_date + relativedelta(years=index)
    raise ValueError(f"Unknown frequency: {frequency}")


def _periods_between(start_date: date, target: date, frequency: Frequency) -> int:
    """Whole periods from start to target, never overshooting the true count."""
    if target <= start_date:
        return 0
    if frequency == "daily":
        return (target - start_date).days
    if frequency == "weekly":
        return (target - start_date).days // 7
    months = (target.year - start_date.year) * 12 + target.month - start_date.month
    if frequency == "monthly":
        return max(months - 1, 0)
    return max(months // 12 - 1, 0)


def next_occurrence(start_date: date, current: date, frequency: Frequency) -> date:
    """The first scheduled date strictly after ``current``."""
    index = _periods_between(start_date, current, frequency)
    candidate = occurrence_date(start_date, frequency, index)
    while candidate <= current:
        index += 1
        candidate = occurrence_date(start_date, frequency, index)
    return candidate


def first_occurrence_on_or_after(
    start_date: date, target: date, frequency: Frequency
) -> date:
    """The first scheduled date that is ``>= target``."""
    if target <= start_date:
        return start_date
    return next_occurrence(start_date, target - relativedelta(days=1), frequency)


def upcoming(template: RecurringTemplate, count: int = 3) -> list[date]:
    """The next ``count`` dates this template would materialize on."""
    dates: list[date] = []
    current = template.next_due_date
    occurrences = template.occurrences_created
    while len(dates) < count:
        if template.max_occurrences is not None and occurrences >= template.max_occurrences:
            break
        if template.end_date is not None and current > template.end_date:
            break
        dates.append(current)
        occurrences += 1
        current = next_occurrence(template.start_date, current, template.frequency)
    return dates


# ============================================================================
# State checks and transitions
# ============================================================================


def is_expired(template: RecurringTemplate, today: date) -> bool:
    """True when the template can never materialize again."""
    if template.cap_reached:
        return True
    return template.end_date is not None and template.end_date < today


def is_due(template: RecurringTemplate, today: date) -> bool:
    """True when processing today should create an occurrence."""
    return (
        template.is_active
        and template.next_due_date <= today
        and not is_expired(template, today)
    )


def expire(template: RecurringTemplate, today: date) -> RecurringTemplate:
    """Deactivate a template whose end date or occurrence cap has passed."""
    if template.is_active and is_expired(template, today):
        logger.info(f"Recurring template {template.id} expired, deactivating")
        return template.model_copy(update={"is_active": False})
    return template


def cancel(template: RecurringTemplate) -> RecurringTemplate:
    """Deactivate a template. Expenses already created are untouched."""
    return template.model_copy(update={"is_active": False})


def reactivate(template: RecurringTemplate, today: date) -> RecurringTemplate:
    """
    Reactivate a template at the next sensible date.

    The due date is fast-forwarded from ``start_date`` to the first scheduled
    date on or after today, so no backlog of missed occurrences is created.
    """
    next_due = first_occurrence_on_or_after(
        template.start_date, today, template.frequency
    )
    logger.info(f"Reactivated recurring template {template.id}, next due {next_due}")
    return template.model_copy(update={"is_active": True, "next_due_date": next_due})


def advance(template: RecurringTemplate) -> RecurringTemplate:
    """Record one materialized occurrence and move to the next due date."""
    occurrences = template.occurrences_created + 1
    next_due = next_occurrence(
        template.start_date, template.next_due_date, template.frequency
    )

    is_active = template.is_active
    if template.max_occurrences is not None and occurrences >= template.max_occurrences:
        is_active = False
    if template.end_date is not None and next_due > template.end_date:
        is_active = False

    return template.model_copy(
        update={
            "occurrences_created": occurrences,
            "next_due_date": next_due,
            "is_active": is_active,
        }
    )


# ============================================================================
# Materialization
# ============================================================================


def policy_shares(
    template: RecurringTemplate, active_participants: Sequence[ParticipantId]
) -> list[SplitShare]:
    """
    Compute the split shares for one occurrence of a template.

    Raises:
        EmptyParticipantSet: If an equal-among-active split has nobody to split with
        InvalidSplitConfig: If a stored percentage/amount policy is invalid
    """
    policy = template.split_policy

    if isinstance(policy, EqualAmongActive):
        if not active_participants:
            raise EmptyParticipantSet("No active participants to split with")
        ordered = list(active_participants)
        if template.payer in ordered:
            ordered.remove(template.payer)
            ordered.insert(0, template.payer)
        return allocate(template.amount, ordered, "equal")

    if isinstance(policy, EqualAmongMembers):
        return allocate(template.amount, policy.members, "equal")

    if isinstance(policy, FixedPercentages):
        return allocate(
            template.amount,
            list(policy.percentages),
            "percentage",
            policy.percentages,
        )

    if isinstance(policy, FixedAmounts):
        return allocate(template.amount, list(policy.amounts), "amount", policy.amounts)

    raise TypeError(f"Unhandled split policy: {type(policy).__name__}")


def materialize(
    template: RecurringTemplate,
    today: date,
    active_participants: Sequence[ParticipantId],
) -> tuple[Expense, RecurringTemplate]:
    """
    Create the next occurrence of a due template.

    Args:
        template: The template to process
        today: Processing date
        active_participants: Current active household members, in enumeration order

    Returns:
        Tuple of (new expense dated next_due_date, advanced template)

    Raises:
        TemplateNotDue: If the template is inactive, expired or not yet due
    """
    if not is_due(template, today):
        raise TemplateNotDue(template.id)

    splits = policy_shares(template, active_participants)

    expense = Expense(
        description=template.description,
        total_amount=template.amount,
        payer=template.payer,
        date=template.next_due_date,
        splits=splits,
        recurring_template_id=template.id,
        notes=f"Auto-generated from recurring: {template.description}",
    )

    return expense, advance(template)

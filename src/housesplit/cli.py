"""CLI for HouseSplit using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console

from .config import Settings, load_settings
from .db import Database
from .exceptions import HouseSplitError
from .models import (
    ChargeSpec,
    EqualAmongActive,
    EqualAmongMembers,
    FixedAmounts,
    FixedPercentages,
    LineItem,
    Participant,
    SplitPolicy,
)
from .money import format_money
from .service import HouseholdService
from .ui import (
    show_expense,
    show_members,
    show_pairwise,
    show_preview,
    show_summary,
    show_templates,
)

app = typer.Typer(
    name="housesplit",
    help="Split household expenses, settle balances and run recurring charges",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[tuple[HouseholdService, Settings]]:
    """Load settings, open the database and report errors the same way everywhere."""
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield HouseholdService(settings, db), settings
    except HouseSplitError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


# ============================================================================
# Argument parsing helpers
# ============================================================================


def parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise typer.BadParameter(f"Not a valid amount: {value}") from e


def parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"Dates must be YYYY-MM-DD: {value}") from e


def parse_params(values: list[str]) -> dict[str, Decimal]:
    """Parse ``member=value`` pairs, keeping their order."""
    params: dict[str, Decimal] = {}
    for value in values:
        member, sep, amount = value.partition("=")
        if not sep:
            raise typer.BadParameter(f"Expected member=value, got: {value}")
        params[member.strip()] = parse_amount(amount.strip())
    return params


def parse_item(value: str) -> LineItem:
    """Parse ``member:amount[:quantity][:description]``."""
    parts = value.split(":", 3)
    if len(parts) < 2:
        raise typer.BadParameter(f"Expected member:amount[:qty][:description], got: {value}")
    quantity = 1
    if len(parts) > 2 and parts[2]:
        try:
            quantity = int(parts[2])
        except ValueError as e:
            raise typer.BadParameter(f"Quantity must be a whole number: {parts[2]}") from e
    return LineItem(
        participant=parts[0].strip(),
        unit_amount=parse_amount(parts[1]),
        quantity=quantity,
        description=parts[3] if len(parts) > 3 else "",
    )


def build_charge(amount: str | None, percent: str | None) -> ChargeSpec:
    return ChargeSpec(
        amount=parse_amount(amount) if amount else Decimal("0"),
        percent=parse_amount(percent) if percent else None,
    )


def build_policy(policy: str, members: list[str], params: list[str]) -> SplitPolicy:
    if policy == "equal-active":
        return EqualAmongActive()
    if policy == "equal-members":
        if not members:
            raise typer.BadParameter("--member is required for equal-members")
        return EqualAmongMembers(members=members)
    if policy == "percentages":
        return FixedPercentages(percentages=parse_params(params))
    if policy == "amounts":
        return FixedAmounts(amounts=parse_params(params))
    raise typer.BadParameter(
        "Policy must be equal-active, equal-members, percentages or amounts"
    )


# ============================================================================
# Members
# ============================================================================


@app.command()
def add_member(
    member_id: str = typer.Argument(..., help="Short identifier, e.g. alice"),
    name: str = typer.Option(None, "--name", "-n", help="Display name"),
    inactive: bool = typer.Option(False, "--inactive", help="Mark as inactive"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add or update a household member."""
    with open_service(verbose) as (service, _):
        service.db.add_participant(
            Participant(id=member_id, display_name=name or member_id, is_active=not inactive)
        )
        console.print(f"[green]✓ Saved member {member_id}[/green]")


@app.command()
def members(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List household members."""
    with open_service(verbose) as (service, _):
        show_members(console, service.db.list_participants())


# ============================================================================
# Expenses
# ============================================================================


@app.command()
def add_expense(
    description: str = typer.Argument(...),
    amount: str = typer.Argument(..., help="Total amount"),
    payer: str = typer.Option(..., "--payer", "-p", help="Who paid"),
    split: list[str] = typer.Option(
        [], "--split", "-s", help="Participant to split with (payer first absorbs rounding)"
    ),
    mode: str = typer.Option("equal", "--mode", "-m", help="equal, percentage or amount"),
    param: list[str] = typer.Option([], "--param", help="member=value for percentage/amount"),
    on: str = typer.Option(None, "--date", help="Expense date (YYYY-MM-DD)"),
    notes: str = typer.Option(None, "--notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record an expense, optionally split among members."""
    if mode not in ("equal", "percentage", "amount"):
        raise typer.BadParameter("Mode must be equal, percentage or amount")

    with open_service(verbose) as (service, settings):
        expense = service.create_expense(
            description,
            parse_amount(amount),
            payer,
            participants=split,
            mode=mode,  # type: ignore[arg-type]
            params=parse_params(param),
            expense_date=parse_date(on),
            notes=notes,
        )
        show_expense(console, expense, settings.currency_symbol)


@app.command()
def edit_expense(
    expense_id: str = typer.Argument(...),
    description: str = typer.Option(None, "--description", "-d"),
    amount: str = typer.Option(None, "--amount", "-a", help="New total amount"),
    payer: str = typer.Option(None, "--payer", "-p", help="Who paid"),
    split: list[str] = typer.Option(
        None, "--split", "-s", help="Replace split members (first absorbs rounding)"
    ),
    mode: str = typer.Option("equal", "--mode", "-m", help="equal, percentage or amount"),
    param: list[str] = typer.Option([], "--param", help="member=value for percentage/amount"),
    on: str = typer.Option(None, "--date", help="Expense date (YYYY-MM-DD)"),
    notes: str = typer.Option(None, "--notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit an expense; its splits are recomputed."""
    if mode not in ("equal", "percentage", "amount"):
        raise typer.BadParameter("Mode must be equal, percentage or amount")

    with open_service(verbose) as (service, settings):
        expense = service.update_expense(
            expense_id,
            description=description,
            total=parse_amount(amount) if amount else None,
            payer=payer,
            participants=split or None,
            mode=mode,  # type: ignore[arg-type]
            params=parse_params(param),
            expense_date=parse_date(on),
            notes=notes,
        )
        show_expense(console, expense, settings.currency_symbol)


@app.command(name="quick-split")
def quick_split_command(
    description: str = typer.Argument(...),
    amount: str = typer.Argument(..., help="Amount before tax and service"),
    member: list[str] = typer.Option(..., "--member", "-m", help="Participants"),
    payer: str = typer.Option(None, "--payer", "-p", help="Who paid (defaults to first member)"),
    tax: str = typer.Option(None, "--tax", help="Tax amount"),
    tax_percent: str = typer.Option(None, "--tax-percent", help="Tax percentage"),
    service_charge: str = typer.Option(None, "--service", help="Service charge amount"),
    service_percent: str = typer.Option(None, "--service-percent", help="Service percentage"),
    on: str = typer.Option(None, "--date", help="Expense date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Split a total equally among members and save it."""
    with open_service(verbose) as (service, settings):
        expense, _ = service.quick_split(
            description,
            parse_amount(amount),
            member,
            payer=payer,
            tax=build_charge(tax, tax_percent),
            service=build_charge(service_charge, service_percent),
            expense_date=parse_date(on),
        )
        show_expense(console, expense, settings.currency_symbol)


@app.command()
def preview(
    item: list[str] = typer.Option(
        ..., "--item", "-i", help="member:amount[:qty][:description]"
    ),
    tax: str = typer.Option(None, "--tax", help="Tax amount"),
    tax_percent: str = typer.Option(None, "--tax-percent", help="Tax percentage"),
    service_charge: str = typer.Option(None, "--service", help="Service charge amount"),
    service_percent: str = typer.Option(None, "--service-percent", help="Service percentage"),
    subtotal: str = typer.Option(None, "--subtotal", help="Receipt subtotal override"),
    create: str = typer.Option(
        None, "--create", help="Save as an expense with this title (paid by --payer)"
    ),
    payer: str = typer.Option(None, "--payer", "-p", help="Who paid the bill"),
    on: str = typer.Option(None, "--date", help="Expense date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Preview an itemized split bill with proportional tax and service.

    Nothing is saved unless --create is given.
    """
    items = [parse_item(value) for value in item]
    tax_spec = build_charge(tax, tax_percent)
    service_spec = build_charge(service_charge, service_percent)

    with open_service(verbose) as (service, settings):
        result = service.preview_split_bill(
            items,
            tax_spec,
            service_spec,
            subtotal_override=parse_amount(subtotal) if subtotal else None,
        )
        show_preview(console, result, settings.currency_symbol)

        if create:
            if not payer:
                raise typer.BadParameter("--payer is required with --create")
            expense = service.create_split_bill(
                create, payer, items, tax_spec, service_spec, expense_date=parse_date(on)
            )
            console.print(f"\n[bold green]✓ Created expense {expense.id}[/bold green]\n")


# ============================================================================
# Payments
# ============================================================================


@app.command()
def pay(
    from_member: str = typer.Argument(..., help="Who paid"),
    to_member: str = typer.Argument(..., help="Who received"),
    amount: str = typer.Argument(...),
    description: str = typer.Option(None, "--description", "-d"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a payment between members."""
    with open_service(verbose) as (service, settings):
        payment = service.record_payment(
            from_member, to_member, parse_amount(amount), description, datetime.now()
        )
        console.print(
            f"[green]✓ Payment {payment.id}: {from_member} → {to_member} "
            f"{format_money(payment.amount, settings.currency_symbol)} "
            f"({payment.status})[/green]"
        )


@app.command()
def confirm(
    payment_id: str = typer.Argument(...),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Confirm a pending payment."""
    with open_service(verbose) as (service, _):
        service.confirm_payment(payment_id)
        console.print(f"[green]✓ Payment {payment_id} confirmed[/green]")


@app.command()
def reject(
    payment_id: str = typer.Argument(...),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Reject a pending payment."""
    with open_service(verbose) as (service, _):
        service.reject_payment(payment_id)
        console.print(f"[yellow]Payment {payment_id} rejected[/yellow]")


# ============================================================================
# Balances
# ============================================================================


@app.command()
def balances(
    since: str = typer.Option(None, "--since", help="Only count records from this date"),
    until: str = typer.Option(None, "--until", help="Only count records up to this date"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show fair-share balances and who owes who."""
    with open_service(verbose) as (service, settings):
        summary = service.balance_summary(start=parse_date(since), end=parse_date(until))
        show_summary(console, summary, settings.currency_symbol)


@app.command()
def owes(
    member: str = typer.Argument(..., help="Member to show balances for"),
    other: str = typer.Argument(None, help="Limit to one other member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show split-based balances between a member and everyone else."""
    with open_service(verbose) as (service, settings):
        if other:
            result = [service.pairwise_balance(member, other)]
        else:
            result = service.pairwise_balances(member)
        show_pairwise(console, result, settings.currency_symbol)


# ============================================================================
# Recurring
# ============================================================================


@app.command()
def recurring_add(
    description: str = typer.Argument(...),
    amount: str = typer.Argument(...),
    payer: str = typer.Option(..., "--payer", "-p", help="Who pays each occurrence"),
    frequency: str = typer.Option("monthly", "--frequency", "-f", help="daily, weekly, monthly or yearly"),
    start: str = typer.Option(..., "--start", help="First due date (YYYY-MM-DD)"),
    end: str = typer.Option(None, "--end", help="Last possible date (YYYY-MM-DD)"),
    max_occurrences: int = typer.Option(None, "--max", help="Stop after this many occurrences"),
    policy: str = typer.Option(
        "equal-active",
        "--policy",
        help="equal-active, equal-members, percentages or amounts",
    ),
    member: list[str] = typer.Option([], "--member", "-m", help="Members for equal-members"),
    param: list[str] = typer.Option([], "--param", help="member=value, first entry absorbs remainder"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a recurring expense."""
    if frequency not in ("daily", "weekly", "monthly", "yearly"):
        raise typer.BadParameter("Frequency must be daily, weekly, monthly or yearly")
    split_policy = build_policy(policy, member, param)

    with open_service(verbose) as (service, settings):
        template = service.create_template(
            description,
            parse_amount(amount),
            payer,
            frequency,  # type: ignore[arg-type]
            parse_date(start),  # type: ignore[arg-type]
            end_date=parse_date(end),
            max_occurrences=max_occurrences,
            split_policy=split_policy,
        )
        show_templates(console, [template], settings.currency_symbol)


@app.command()
def recurring_edit(
    template_id: str = typer.Argument(...),
    description: str = typer.Option(None, "--description", "-d"),
    amount: str = typer.Option(None, "--amount", "-a"),
    payer: str = typer.Option(None, "--payer", "-p", help="Who pays each occurrence"),
    frequency: str = typer.Option(None, "--frequency", "-f", help="daily, weekly, monthly or yearly"),
    start: str = typer.Option(None, "--start", help="New start date, also the next due date"),
    end: str = typer.Option(None, "--end", help="Last possible date (YYYY-MM-DD)"),
    no_end: bool = typer.Option(False, "--no-end", help="Remove the end date"),
    max_occurrences: int = typer.Option(None, "--max", help="Stop after this many occurrences"),
    policy: str = typer.Option(
        None, "--policy", help="equal-active, equal-members, percentages or amounts"
    ),
    member: list[str] = typer.Option([], "--member", "-m", help="Members for equal-members"),
    param: list[str] = typer.Option([], "--param", help="member=value, first entry absorbs remainder"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit a recurring expense."""
    if frequency is not None and frequency not in ("daily", "weekly", "monthly", "yearly"):
        raise typer.BadParameter("Frequency must be daily, weekly, monthly or yearly")

    changes: dict = {}
    if description is not None:
        changes["description"] = description
    if amount is not None:
        changes["amount"] = parse_amount(amount)
    if payer is not None:
        changes["payer"] = payer
    if frequency is not None:
        changes["frequency"] = frequency
    if start is not None:
        changes["start_date"] = parse_date(start)
    if no_end:
        changes["end_date"] = None
    elif end is not None:
        changes["end_date"] = parse_date(end)
    if max_occurrences is not None:
        changes["max_occurrences"] = max_occurrences
    if policy is not None:
        changes["split_policy"] = build_policy(policy, member, param)

    with open_service(verbose) as (service, settings):
        template = service.update_template(template_id, **changes)
        show_templates(console, [template], settings.currency_symbol)


@app.command()
def recurring_list(
    active: bool = typer.Option(False, "--active", help="Only active templates"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List recurring expenses."""
    with open_service(verbose) as (service, settings):
        show_templates(
            console, service.db.list_templates(active_only=active), settings.currency_symbol
        )


@app.command()
def cancel(
    template_id: str = typer.Argument(...),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Cancel a recurring expense (existing expenses are kept)."""
    with open_service(verbose) as (service, _):
        service.cancel_template(template_id)
        console.print(f"[yellow]Recurring expense {template_id} cancelled[/yellow]")


@app.command()
def reactivate(
    template_id: str = typer.Argument(...),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Reactivate a recurring expense at its next date on or after today."""
    with open_service(verbose) as (service, _):
        template = service.reactivate_template(template_id)
        console.print(
            f"[green]✓ Reactivated, next due {template.next_due_date}[/green]"
        )


@app.command()
def process_due(
    on: str = typer.Option(None, "--date", help="Process as of this date (YYYY-MM-DD)"),
    catch_up: bool = typer.Option(
        None, "--catch-up/--no-catch-up", help="Create every missed occurrence"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create expenses for every due recurring template."""
    with open_service(verbose) as (service, settings):
        result = service.process_due(today=parse_date(on), catch_up=catch_up)

        for expense in result.created:
            show_expense(console, expense, settings.currency_symbol)

        console.print(
            f"\n[bold]Processed {len(result.created)} recurring expenses[/bold]"
        )
        if result.deactivated:
            console.print(f"[dim]Deactivated: {', '.join(result.deactivated)}[/dim]")
        if result.conflicts:
            console.print(
                f"[yellow]Skipped (processed concurrently): "
                f"{', '.join(result.conflicts)}[/yellow]"
            )


if __name__ == "__main__":
    app()

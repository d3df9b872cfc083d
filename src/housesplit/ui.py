"""Rich table rendering for balances, previews and recurring templates."""

from decimal import Decimal

from rich.console import Console
from rich.table import Table

from .models import (
    ChargeDistribution,
    Expense,
    GroupBalanceSummary,
    PairwiseBalance,
    Participant,
    RecurringTemplate,
)
from .money import format_money
from .scheduler import FREQUENCY_LABELS, upcoming


def money_cell(amount: Decimal, symbol: str, use_color: bool = True) -> str:
    """Format an amount, green when positive and red when negative."""
    text = format_money(amount, symbol)
    if not use_color or amount == 0:
        return text
    color = "green" if amount > 0 else "red"
    return f"[{color}]{text}[/{color}]"


def show_members(console: Console, members: list[Participant]):
    table = Table(title="Household Members")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Active", justify="center")
    for member in members:
        table.add_row(member.id, member.display_name, "✓" if member.is_active else "")
    console.print(table)


def show_expense(console: Console, expense: Expense, symbol: str):
    """Print an expense and its splits."""
    table = Table(title=f"{expense.description} ({expense.date})")
    table.add_column("Participant", style="cyan")
    table.add_column("Share", justify="right")
    for split in expense.splits:
        label = split.participant
        if split.participant == expense.payer:
            label += " (paid)"
        table.add_row(label, format_money(split.amount, symbol))
    table.add_section()
    table.add_row("[bold]Total[/bold]", f"[bold]{format_money(expense.total_amount, symbol)}[/bold]")
    console.print(table)


def show_preview(console: Console, preview: ChargeDistribution, symbol: str):
    """Print a split bill preview with per-participant breakdown."""
    table = Table(title="Split Preview")
    table.add_column("Participant", style="cyan")
    table.add_column("Subtotal", justify="right")
    table.add_column("Tax", justify="right")
    table.add_column("Service", justify="right")
    table.add_column("Total", justify="right", style="bold")

    for row in preview.breakdown:
        table.add_row(
            row.participant,
            format_money(row.subtotal, symbol),
            format_money(row.tax_share, symbol),
            format_money(row.service_share, symbol),
            format_money(row.total, symbol),
        )

    tax_label = format_money(preview.tax_amount, symbol)
    if preview.tax_percent is not None:
        tax_label += f" ({preview.tax_percent}%)"
    service_label = format_money(preview.service_charge, symbol)
    if preview.service_percent is not None:
        service_label += f" ({preview.service_percent}%)"

    table.add_section()
    table.add_row(
        "[bold]Bill[/bold]",
        format_money(preview.subtotal, symbol),
        tax_label,
        service_label,
        format_money(preview.total, symbol),
    )
    console.print(table)


def show_summary(console: Console, summary: GroupBalanceSummary, symbol: str):
    """Print fair-share balances and the transfers that settle them."""
    console.print(
        f"\nTotal expenses: [bold]{format_money(summary.total_expenses, symbol)}[/bold]"
        f"  |  Members: {summary.member_count}"
        f"  |  Fair share: {format_money(summary.fair_share, symbol)}\n"
    )

    table = Table(title="Balances")
    table.add_column("Participant", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Net", justify="right")
    table.add_column("Status")
    for balance in summary.balances:
        table.add_row(
            balance.participant,
            format_money(balance.total_paid, symbol),
            money_cell(balance.net, symbol),
            balance.status,
        )
    console.print(table)

    if summary.fully_settled:
        console.print("\n[green]✓ Everyone is settled up[/green]\n")
        return

    transfers = Table(title="Who Owes Who")
    transfers.add_column("From", style="red")
    transfers.add_column("To", style="green")
    transfers.add_column("Amount", justify="right")
    for transfer in summary.transfers:
        transfers.add_row(
            transfer.from_participant,
            transfer.to_participant,
            format_money(transfer.amount, symbol),
        )
    console.print(transfers)


def show_pairwise(console: Console, balances: list[PairwiseBalance], symbol: str):
    """Print split-based balances for one participant."""
    if not balances:
        console.print("[green]✓ No outstanding balances[/green]")
        return

    table = Table(title=f"Balances for {balances[0].participant}")
    table.add_column("With", style="cyan")
    table.add_column("You owe (splits)", justify="right")
    table.add_column("They owe (splits)", justify="right")
    table.add_column("Paid", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Net")
    for balance in balances:
        amount = format_money(abs(balance.net), symbol)
        net = f"[red]you owe {amount}[/red]" if balance.participant_owes else (
            f"[green]owes you {amount}[/green]"
        )
        table.add_row(
            balance.counterparty,
            format_money(balance.owed_to_counterparty, symbol),
            format_money(balance.owed_by_counterparty, symbol),
            format_money(balance.paid_to_counterparty, symbol),
            format_money(balance.received_from_counterparty, symbol),
            net,
        )
    console.print(table)


def show_templates(console: Console, templates: list[RecurringTemplate], symbol: str):
    table = Table(title="Recurring Expenses")
    table.add_column("ID", style="dim")
    table.add_column("Description")
    table.add_column("Amount", justify="right")
    table.add_column("Frequency")
    table.add_column("Next due")
    table.add_column("Created", justify="right")
    table.add_column("Active", justify="center")
    table.add_column("Upcoming", style="dim")
    for template in templates:
        created = str(template.occurrences_created)
        if template.max_occurrences is not None:
            created += f"/{template.max_occurrences}"
        table.add_row(
            template.id,
            template.description,
            format_money(template.amount, symbol),
            FREQUENCY_LABELS[template.frequency],
            template.next_due_date.isoformat(),
            created,
            "✓" if template.is_active else "",
            ", ".join(d.isoformat() for d in upcoming(template, 3))
            if template.is_active
            else "",
        )
    console.print(table)

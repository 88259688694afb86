"""CLI for Split Ledger using Typer."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TypeVar

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from .avatars import avatar_for, get_initials
from .balances import group_total_spent
from .config import load_settings
from .exceptions import SplitLedgerError
from .models import (
    GROUP_TYPES,
    AppState,
    ExpenseCreate,
    GroupCreate,
    GroupUpdate,
    MemberCreate,
    MemberUpdate,
    SettlementCreate,
)
from .service import LedgerService
from .ui import select_member_interactive, select_members_interactive

app = typer.Typer(
    name="split-ledger",
    help="Track shared expenses in groups and work out who owes whom",
)
member_app = typer.Typer(help="Manage members")
group_app = typer.Typer(help="Manage groups")
expense_app = typer.Typer(help="Manage expenses")
app.add_typer(member_app, name="member")
app.add_typer(group_app, name="group")
app.add_typer(expense_app, name="expense")

console = Console()

T = TypeVar("T")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def run_ledger(action: Callable[[LedgerService], Awaitable[T]], verbose: bool) -> T:
    """Open the ledger, run one action against it, close it, report errors."""
    setup_logging(verbose)

    async def runner() -> T:
        service = await LedgerService.open(load_settings())
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except (SplitLedgerError, PydanticValidationError) as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)


def load_snapshot(verbose: bool) -> AppState:
    """Read the current ledger (for interactive prompts that need it)."""

    async def read(service: LedgerService) -> AppState:
        return service.state

    return run_ledger(read, verbose)


def parse_amount(value: str) -> Decimal:
    """Parse a money amount typed on the command line."""
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation as e:
        raise typer.BadParameter(f"{value!r} is not an amount") from e


def parse_date(value: str | None) -> date:
    """Parse an ISO date, defaulting to today."""
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"{value!r} is not a YYYY-MM-DD date") from e


def parse_split_values(values: list[str] | None) -> dict[str, Decimal] | None:
    """Parse repeated MEMBER=VALUE options."""
    if not values:
        return None
    parsed = {}
    for item in values:
        member_id, sep, raw = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"{item!r} should look like MEMBER_ID=VALUE")
        parsed[member_id.strip()] = parse_amount(raw.strip())
    return parsed


def format_money(amount: Decimal, currency: str = "", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85.02)
    Positive amounts have spaces:      85.02
    """
    prefix = f"{currency} " if currency else ""
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"({prefix}[red]{abs_amount:,.2f}[/red])"
        return f"({prefix}{abs_amount:,.2f})"
    if use_color and amount > 0:
        return f" {prefix}[green]{abs_amount:,.2f}[/green] "
    return f" {prefix}{abs_amount:,.2f} "


def given_options(**options):
    """Only the options passed on the command line (so unset ones stay unchanged)."""
    return {key: value for key, value in options.items() if value is not None}


def member_name(state: AppState, member_id: str) -> str:
    """A member's name, or the raw id if the member is gone."""
    member = state.find_member(member_id)
    return member.name if member else member_id


# ============================================================================
# Members
# ============================================================================


@member_app.command("add")
def member_add(
    name: str = typer.Argument(..., help="Member name"),
    email: str = typer.Option("", "--email", "-e", help="Email (used for avatars)"),
    avatar_url: str | None = typer.Option(None, "--avatar-url", help="Avatar image URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a member."""
    data = MemberCreate(name=name, email=email, avatar_url=avatar_url)
    member_id = run_ledger(lambda service: service.add_member(data), verbose)
    console.print(f"[green]✓ Added member {name}[/green] ({member_id})")


@member_app.command("list")
def member_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List members."""
    state = load_snapshot(verbose)
    if not state.members:
        console.print("[yellow]No members yet.[/yellow]")
        return

    table = Table(title="Members", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("", width=3)
    table.add_column("Name", style="cyan")
    table.add_column("Email")
    table.add_column("Avatar", style="dim", no_wrap=False)
    for member in state.members:
        table.add_row(
            member.id,
            get_initials(member.name),
            member.name,
            member.email,
            avatar_for(member, size=64),
        )
    console.print(table)


@member_app.command("edit")
def member_edit(
    member_id: str = typer.Argument(..., help="Member ID"),
    name: str | None = typer.Option(None, "--name", "-n", help="New name"),
    email: str | None = typer.Option(None, "--email", "-e", help="New email"),
    avatar_url: str | None = typer.Option(None, "--avatar-url", help="New avatar URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Change a member's details."""
    changes = MemberUpdate(
        **given_options(name=name, email=email, avatar_url=avatar_url)
    )
    run_ledger(lambda service: service.update_member(member_id, changes), verbose)
    console.print("[green]✓ Member updated[/green]")


@member_app.command("remove")
def member_remove(
    member_id: str = typer.Argument(..., help="Member ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a member who is no longer in any group."""
    run_ledger(lambda service: service.delete_member(member_id), verbose)
    console.print("[green]✓ Member removed[/green]")


# ============================================================================
# Groups
# ============================================================================


@group_app.command("add")
def group_add(
    name: str = typer.Argument(..., help="Group name"),
    group_type: str = typer.Option(
        "Others", "--type", "-t", help=f"Group type ({', '.join(GROUP_TYPES)} or any)"
    ),
    currency: str | None = typer.Option(None, "--currency", "-c", help="Currency code"),
    members: list[str] | None = typer.Option(
        None, "--member", "-m", help="Member ID (repeatable)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a group."""

    async def add(service: LedgerService) -> str:
        data = GroupCreate(
            name=name,
            type=group_type,
            currency=currency or service.settings.default_currency,
            members=members or [],
        )
        return await service.add_group(data)

    group_id = run_ledger(add, verbose)
    console.print(f"[green]✓ Created group {name}[/green] ({group_id})")


@group_app.command("list")
def group_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List groups."""
    state = load_snapshot(verbose)
    if not state.groups:
        console.print("[yellow]No groups yet.[/yellow]")
        return

    table = Table(title="Groups", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Members", no_wrap=False)
    table.add_column("Spent", justify="right")
    for group in state.groups:
        table.add_row(
            group.id,
            group.name,
            group.type,
            ", ".join(member_name(state, m) for m in group.members),
            format_money(group_total_spent(state, group.id), group.currency),
        )
    console.print(table)


@group_app.command("edit")
def group_edit(
    group_id: str = typer.Argument(..., help="Group ID"),
    name: str | None = typer.Option(None, "--name", "-n", help="New name"),
    group_type: str | None = typer.Option(None, "--type", "-t", help="New type"),
    currency: str | None = typer.Option(None, "--currency", "-c", help="New currency"),
    members: list[str] | None = typer.Option(
        None, "--member", "-m", help="Member ID (repeatable, replaces the list)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Change a group's details or member list."""
    changes = GroupUpdate(
        **given_options(
            name=name, type=group_type, currency=currency, members=members or None
        )
    )
    run_ledger(lambda service: service.update_group(group_id, changes), verbose)
    console.print("[green]✓ Group updated[/green]")


@group_app.command("remove")
def group_remove(
    group_id: str = typer.Argument(..., help="Group ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a group with all of its expenses and settlements."""
    if not yes and not typer.confirm(
        "Delete this group and all of its expenses and settlements?"
    ):
        console.print("[yellow]Cancelled.[/yellow]")
        return
    run_ledger(lambda service: service.delete_group(group_id), verbose)
    console.print("[green]✓ Group removed[/green]")


# ============================================================================
# Expenses
# ============================================================================


@expense_app.command("add")
def expense_add(
    group_id: str = typer.Argument(..., help="Group ID"),
    description: str = typer.Argument(..., help="What was paid for"),
    amount: str = typer.Argument(..., help="Total amount"),
    paid_by: list[str] | None = typer.Option(
        None, "--paid-by", "-p", help="Payer member ID (repeatable)"
    ),
    split_between: list[str] | None = typer.Option(
        None, "--split", "-s", help="Member ID sharing the cost (repeatable)"
    ),
    mode: str = typer.Option(
        "equal", "--mode", help="Split mode: equal, percentage or manual"
    ),
    values: list[str] | None = typer.Option(
        None, "--value", help="MEMBER_ID=VALUE: percentage or amount per member"
    ),
    expense_date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD"),
    notes: str | None = typer.Option(None, "--notes", help="Notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record an expense. Missing payers / sharers are picked interactively."""
    split_values = parse_split_values(values)

    if not paid_by or not split_between:
        state = load_snapshot(verbose)
        group = state.find_group(group_id)
        if group is None:
            console.print(f"[bold red]Error:[/bold red] Group {group_id} not found")
            sys.exit(1)
        group_members = [m for m in state.members if m.id in group.members]
        if not paid_by:
            paid_by = select_members_interactive(group_members, "Who paid?")
        if not split_between:
            split_between = (
                list(split_values)
                if split_values
                else select_members_interactive(group_members, "Who shares it?")
            )

    data = ExpenseCreate(
        group_id=group_id,
        description=description,
        amount=parse_amount(amount),
        paid_by=paid_by or [],
        split_between=split_between or [],
        split_mode=mode,
        split_values=split_values,
        date=parse_date(expense_date),
        notes=notes,
    )
    expense_id = run_ledger(lambda service: service.add_expense(data), verbose)
    console.print(f"[green]✓ Recorded expense {description}[/green] ({expense_id})")


@expense_app.command("list")
def expense_list(
    group_id: str = typer.Argument(..., help="Group ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a group's expenses and settlements, newest first."""

    async def read(service: LedgerService):
        return (
            service.state,
            service.get_group(group_id),
            service.list_group_expenses(group_id),
            service.list_group_settlements(group_id),
        )

    state, group, expenses, settlements = run_ledger(read, verbose)

    table = Table(
        title=f"Expenses: {group.name}", show_header=True, header_style="bold magenta"
    )
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Description", style="cyan", width=30)
    table.add_column("Amount", justify="right")
    table.add_column("Paid by")
    table.add_column("Split", style="dim", no_wrap=False)
    for expense in expenses:
        shares = ", ".join(
            f"{member_name(state, m)} {share:,.2f}"
            for m, share in expense.split_details.items()
        )
        table.add_row(
            expense.id,
            expense.date.isoformat(),
            expense.description,
            format_money(expense.amount),
            ", ".join(member_name(state, m) for m in expense.paid_by),
            f"{expense.split_mode}: {shares}",
        )
    console.print(table)

    if settlements:
        console.print("\n[bold]Settlements:[/bold]")
        for s in settlements:
            console.print(
                f"  {s.date} {member_name(state, s.from_member_id)} → "
                f"{member_name(state, s.to_member_id)}: "
                f"{format_money(s.amount, group.currency)} [dim]({s.id})[/dim]"
            )


@expense_app.command("remove")
def expense_remove(
    expense_id: str = typer.Argument(..., help="Expense ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete an expense."""
    run_ledger(lambda service: service.delete_expense(expense_id), verbose)
    console.print("[green]✓ Expense removed[/green]")


# ============================================================================
# Settlements and balances
# ============================================================================


@app.command()
def settle(
    group_id: str = typer.Argument(..., help="Group ID"),
    amount: str = typer.Argument(..., help="Amount paid"),
    from_member: str | None = typer.Option(None, "--from", help="Paying member ID"),
    to_member: str | None = typer.Option(None, "--to", help="Receiving member ID"),
    settle_date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD"),
    notes: str | None = typer.Option(None, "--notes", help="Notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a payment from one member to another."""
    if not from_member or not to_member:
        state = load_snapshot(verbose)
        group = state.find_group(group_id)
        group_members = (
            [m for m in state.members if m.id in group.members] if group else []
        )
        from_member = from_member or select_member_interactive(group_members, "Who paid?")
        to_member = to_member or select_member_interactive(
            group_members, "Who received it?"
        )
        if not from_member or not to_member:
            console.print("[yellow]No member selected.[/yellow]")
            return

    data = SettlementCreate(
        group_id=group_id,
        from_member_id=from_member,
        to_member_id=to_member,
        amount=parse_amount(amount),
        date=parse_date(settle_date),
        notes=notes,
    )
    run_ledger(lambda service: service.add_settlement(data), verbose)
    console.print("[green]✓ Settlement recorded[/green]")


@app.command()
def balance(
    group_id: str = typer.Argument(..., help="Group ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show what each member of a group owes and is owed."""

    async def read(service: LedgerService):
        return service.state, service.get_group(group_id), service.get_group_balance(group_id)

    state, group, balances = run_ledger(read, verbose)

    table = Table(
        title=f"Balances: {group.name} ({group.currency})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Member", style="cyan")
    table.add_column("Owed", justify="right")
    table.add_column("Owes", justify="right")
    table.add_column("Net", justify="right")
    for member_id, b in (balances or {}).items():
        table.add_row(
            member_name(state, member_id),
            format_money(b.owed, use_color=False),
            format_money(b.owes, use_color=False),
            format_money(b.net),
        )
    console.print(table)

    total_net = sum((b.net for b in (balances or {}).values()), Decimal("0"))
    if total_net == 0:
        console.print("  [green]✓ Balances add up to zero[/green]")
    else:
        console.print(f"  [red]✗ Balances are off by {total_net}[/red]")


@app.command()
def suggest(
    group_id: str = typer.Argument(..., help="Group ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Suggest payments that would settle a group."""

    async def read(service: LedgerService):
        return (
            service.state,
            service.get_group(group_id),
            service.suggest_settlements(group_id),
        )

    state, group, transfers = run_ledger(read, verbose)

    if not transfers:
        console.print("[green]✓ Everyone is settled up.[/green]")
        return

    console.print(f"\n[bold]To settle {group.name}:[/bold]")
    for t in transfers:
        console.print(
            f"  {member_name(state, t.from_member_id)} pays "
            f"{member_name(state, t.to_member_id)} "
            f"{format_money(t.amount, group.currency)}"
        )
    console.print(
        f"\n[bold]Record one with:[/bold]\n"
        f"  [cyan]split-ledger settle {group_id} AMOUNT --from ID --to ID[/cyan]\n"
    )


@app.command()
def mcp():
    """Start the MCP server for Claude integration."""
    from .mcp_server import run_server

    run_server()


if __name__ == "__main__":
    app()

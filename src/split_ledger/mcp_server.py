"""MCP server for Split Ledger, exposing groups and balances as tools for Claude."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from .config import load_settings
from .exceptions import SplitLedgerError
from .models import AppState, ExpenseCreate, SettlementCreate
from .service import LedgerService

logger = logging.getLogger(__name__)

mcp_app = FastMCP("split-ledger")

# ---------------------------------------------------------------------------
# Session state: one MCP server process = one Claude conversation
# ---------------------------------------------------------------------------

WORKFLOW_INSTRUCTIONS = """\
You are helping a user keep a shared-expense ledger. Follow this workflow:

1. ORIENT: Call list_groups to see the groups, their members and ids.
   Call list_members if you need member ids that are not in a group listing.

2. RECORD: When the user reports a shared cost, call add_expense with the
   group id, a short description, the amount, who paid and who shares it.
   Use split_mode "percentage" or "manual" with split_values only when the
   user says the cost is not shared equally.

3. REVIEW: Call show_balance for the group and report who owes and who is owed.

4. SETTLE: Call suggest_settlements to get the fewest payments that clear the
   group. When the user says a payment was made, call record_settlement.

Never invent member or group ids; always take them from a listing.\
"""


@dataclass
class SessionState:
    """Holds state between MCP tool calls within a single conversation."""

    service: LedgerService | None = None


_state = SessionState()


async def _ensure_service() -> LedgerService:
    """Lazily open the ledger, and reload it so edits from the CLI show up."""
    if _state.service is None:
        _state.service = await LedgerService.open(load_settings())
    else:
        await _state.service.load()
    return _state.service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_amount(amount: Decimal, currency: str = "") -> str:
    """Format an amount accounting-style."""
    prefix = f"{currency} " if currency else ""
    if amount < 0:
        return f"({prefix}{abs(amount):,.2f})"
    return f"{prefix}{amount:,.2f}"


def _name(state: AppState, member_id: str) -> str:
    member = state.find_member(member_id)
    return f"{member.name} [{member_id}]" if member else member_id


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"{value!r} is not an amount") from e


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------


@mcp_app.tool()
async def list_members() -> str:
    """List every member with their id and email."""
    try:
        service = await _ensure_service()
        members = service.state.members
        if not members:
            return "No members yet."

        lines = ["Members:"]
        for m in members:
            email = f" <{m.email}>" if m.email else ""
            lines.append(f"  - {m.name}{email} [{m.id}]")
        return "\n".join(lines)
    except SplitLedgerError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list members: {e}"


@mcp_app.tool()
async def list_groups() -> str:
    """List groups with their ids, currency and members."""
    try:
        service = await _ensure_service()
        state = service.state
        if not state.groups:
            return "No groups yet."

        lines = ["Groups:"]
        for g in state.groups:
            members = ", ".join(_name(state, m) for m in g.members) or "(no members)"
            lines.append(f"  - {g.name} ({g.type}, {g.currency}) [{g.id}]: {members}")
        return "\n".join(lines)
    except SplitLedgerError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to list groups: {e}"


@mcp_app.tool()
async def show_balance(group_id: str) -> str:
    """Show what each member of a group owes, is owed, and their net balance.

    Args:
        group_id: Group id from list_groups.
    """
    try:
        service = await _ensure_service()
        group = service.get_group(group_id)
        balances = service.get_group_balance(group_id) or {}

        lines = [f"Balances for {group.name} (positive net = is owed money):"]
        for member_id, b in balances.items():
            lines.append(
                f"  - {_name(service.state, member_id)}: "
                f"owed {_format_amount(b.owed)}, owes {_format_amount(b.owes)}, "
                f"net {_format_amount(b.net, group.currency)}"
            )
        return "\n".join(lines)
    except SplitLedgerError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to compute balances: {e}"


@mcp_app.tool()
async def suggest_settlements(group_id: str) -> str:
    """Suggest the payments that would settle a group.

    Args:
        group_id: Group id from list_groups.
    """
    try:
        service = await _ensure_service()
        group = service.get_group(group_id)
        transfers = service.suggest_settlements(group_id)
        if not transfers:
            return f"Everyone in {group.name} is settled up."

        lines = [f"Suggested payments for {group.name}:"]
        for t in transfers:
            lines.append(
                f"  - {_name(service.state, t.from_member_id)} pays "
                f"{_name(service.state, t.to_member_id)} "
                f"{_format_amount(t.amount, group.currency)}"
            )
        return "\n".join(lines)
    except SplitLedgerError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to suggest settlements: {e}"


@mcp_app.tool()
async def add_expense(
    group_id: str,
    description: str,
    amount: str,
    paid_by: list[str],
    split_between: list[str],
    split_mode: str = "equal",
    split_values: dict[str, str] | None = None,
    expense_date: str | None = None,
    notes: str | None = None,
) -> str:
    """Record a shared expense in a group.

    Args:
        group_id: Group id from list_groups.
        description: What was paid for.
        amount: Total amount, e.g. "42.50".
        paid_by: Member ids of whoever paid.
        split_between: Member ids sharing the cost.
        split_mode: "equal", "percentage" or "manual".
        split_values: Member id -> percentage or amount, for non-equal splits.
        expense_date: YYYY-MM-DD, defaults to today.
        notes: Optional notes.
    """
    try:
        service = await _ensure_service()
        data = ExpenseCreate(
            group_id=group_id,
            description=description,
            amount=_parse_amount(amount),
            paid_by=paid_by,
            split_between=split_between,
            split_mode=split_mode,
            split_values=(
                {k: _parse_amount(v) for k, v in split_values.items()}
                if split_values
                else None
            ),
            date=date.fromisoformat(expense_date) if expense_date else date.today(),
            notes=notes,
        )
        expense_id = await service.add_expense(data)
        expense = service.state.find_expense(expense_id)

        shares = ", ".join(
            f"{_name(service.state, m)} {_format_amount(v)}"
            for m, v in expense.split_details.items()
        )
        return (
            f"Recorded {description} ({_format_amount(expense.amount)}) "
            f"[{expense_id}]. Shares: {shares}"
        )
    except (SplitLedgerError, PydanticValidationError, ValueError) as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to add expense: {e}"


@mcp_app.tool()
async def record_settlement(
    group_id: str,
    from_member_id: str,
    to_member_id: str,
    amount: str,
    settlement_date: str | None = None,
    notes: str | None = None,
) -> str:
    """Record a payment from one member to another.

    Args:
        group_id: Group id from list_groups.
        from_member_id: Member who paid.
        to_member_id: Member who received the money.
        amount: Amount paid, e.g. "25.00".
        settlement_date: YYYY-MM-DD, defaults to today.
        notes: Optional notes.
    """
    try:
        service = await _ensure_service()
        data = SettlementCreate(
            group_id=group_id,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            amount=_parse_amount(amount),
            date=date.fromisoformat(settlement_date) if settlement_date else date.today(),
            notes=notes,
        )
        settlement_id = await service.add_settlement(data)
        return (
            f"Recorded {_name(service.state, from_member_id)} paying "
            f"{_name(service.state, to_member_id)} {_format_amount(data.amount)} "
            f"[{settlement_id}]"
        )
    except (SplitLedgerError, PydanticValidationError, ValueError) as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Failed to record settlement: {e}"


# ---------------------------------------------------------------------------
# MCP Prompt
# ---------------------------------------------------------------------------


@mcp_app.prompt()
def ledger_workflow() -> str:
    """Instructions for keeping the shared-expense ledger."""
    return WORKFLOW_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_server():
    """Start the MCP server (stdio transport)."""
    mcp_app.run(transport="stdio")

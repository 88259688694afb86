"""Pydantic domain models for Split Ledger."""

import datetime as dt
from decimal import Decimal
from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CURRENT_SCHEMA_VERSION = "2.0.0"

Currency = Literal["USD", "EUR", "GBP", "INR", "JPY", "CAD", "AUD"]
SplitMode = Literal["equal", "percentage", "manual"]

CURRENCIES: tuple[str, ...] = get_args(Currency)
SPLIT_MODES: tuple[str, ...] = get_args(SplitMode)
GROUP_TYPES = ("Trip", "Family", "Business", "Others")  # type is free-form beyond these


def utc_now() -> dt.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


class LedgerModel(BaseModel):
    """Base model: snake_case in Python, camelCase when persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Ledger Entities
# ============================================================================


class Member(LedgerModel):
    """A person who can belong to groups. Email is only used for avatars."""

    id: str
    name: str
    email: str = ""
    avatar_url: str | None = None


class Group(LedgerModel):
    """A set of members sharing expenses in one currency."""

    id: str
    name: str
    type: str = "Others"
    currency: Currency = "USD"
    members: list[str] = Field(default_factory=list)  # ordered member ids
    created_at: dt.datetime
    updated_at: dt.datetime


class Expense(LedgerModel):
    """An expense paid by one or more members and owed according to split_details.

    Payers are always credited equally, whatever the split mode; the mode only
    decides how the owing side (split_details) was computed.
    """

    id: str
    group_id: str
    description: str
    amount: Decimal
    paid_by: list[str]
    split_between: list[str]
    split_mode: SplitMode = "equal"
    split_details: dict[str, Decimal]  # member id -> amount owed
    date: dt.date
    notes: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class Settlement(LedgerModel):
    """A direct transfer from one member to another within a group."""

    id: str
    group_id: str
    from_member_id: str
    to_member_id: str
    amount: Decimal
    date: dt.date
    notes: str | None = None
    created_at: dt.datetime


class AppState(LedgerModel):
    """The whole ledger. Persisted and replaced as a single value."""

    members: list[Member] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    settlements: list[Settlement] = Field(default_factory=list)
    version: str = CURRENT_SCHEMA_VERSION
    revision: int = 0  # bumped on every successful save

    def find_member(self, member_id: str) -> Member | None:
        """Get a member by id."""
        return next((m for m in self.members if m.id == member_id), None)

    def find_group(self, group_id: str) -> Group | None:
        """Get a group by id."""
        return next((g for g in self.groups if g.id == group_id), None)

    def find_expense(self, expense_id: str) -> Expense | None:
        """Get an expense by id."""
        return next((e for e in self.expenses if e.id == expense_id), None)

    def find_settlement(self, settlement_id: str) -> Settlement | None:
        """Get a settlement by id."""
        return next((s for s in self.settlements if s.id == settlement_id), None)

    def group_expenses(self, group_id: str) -> list[Expense]:
        """All expenses recorded against a group."""
        return [e for e in self.expenses if e.group_id == group_id]

    def group_settlements(self, group_id: str) -> list[Settlement]:
        """All settlements recorded against a group."""
        return [s for s in self.settlements if s.group_id == group_id]


# ============================================================================
# Derived Views
# ============================================================================


class MemberBalance(LedgerModel):
    """A member's position within one group."""

    model_config = ConfigDict(frozen=True)

    owes: Decimal = Decimal("0.00")  # gross amount debited
    owed: Decimal = Decimal("0.00")  # gross amount credited
    net: Decimal = Decimal("0.00")  # owed - owes; positive = is owed money


class SuggestedTransfer(LedgerModel):
    """A payment that would help settle a group."""

    model_config = ConfigDict(frozen=True)

    from_member_id: str
    to_member_id: str
    amount: Decimal


# ============================================================================
# Operation Inputs
# ============================================================================


class MemberCreate(LedgerModel):
    """Fields for a new member."""

    name: str
    email: str = ""
    avatar_url: str | None = None


class MemberUpdate(LedgerModel):
    """Member fields to change; unset fields are left alone."""

    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None


class GroupCreate(LedgerModel):
    """Fields for a new group."""

    name: str
    type: str = "Others"
    currency: str = "USD"
    members: list[str] = Field(default_factory=list)


class GroupUpdate(LedgerModel):
    """Group fields to change; unset fields are left alone."""

    name: str | None = None
    type: str | None = None
    currency: str | None = None
    members: list[str] | None = None


class ExpenseCreate(LedgerModel):
    """Fields for a new expense.

    split_values is interpreted according to split_mode: ignored for
    "equal", percentages for "percentage", amounts for "manual".
    """

    group_id: str
    description: str
    amount: Decimal
    paid_by: list[str]
    split_between: list[str]
    split_mode: str = "equal"
    split_values: dict[str, Decimal] | None = None
    date: dt.date
    notes: str | None = None


class ExpenseUpdate(LedgerModel):
    """Expense fields to change; unset fields are left alone.

    Changing the amount, split mode, split members or split values
    recomputes split_details.
    """

    description: str | None = None
    amount: Decimal | None = None
    paid_by: list[str] | None = None
    split_between: list[str] | None = None
    split_mode: str | None = None
    split_values: dict[str, Decimal] | None = None
    date: dt.date | None = None
    notes: str | None = None


class SettlementCreate(LedgerModel):
    """Fields for a new settlement."""

    group_id: str
    from_member_id: str
    to_member_id: str
    amount: Decimal
    date: dt.date
    notes: str | None = None


class SettlementUpdate(LedgerModel):
    """Settlement fields to change; unset fields are left alone."""

    from_member_id: str | None = None
    to_member_id: str | None = None
    amount: Decimal | None = None
    date: dt.date | None = None
    notes: str | None = None

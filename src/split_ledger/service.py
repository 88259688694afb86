"""Ledger service: the operation set front-ends call.

This module composes validation, the storage manager and the balance engine.
Every mutation is validated first, persisted by the storage manager, and
then published to subscribers.
"""

import asyncio
import logging
from collections.abc import Callable

from .balances import compute_balances
from .balances import suggest_settlements as suggest_transfers
from .config import Settings
from .db import SQLiteKeyValueStore
from .exceptions import NotFoundError
from .models import (
    AppState,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    Group,
    GroupCreate,
    GroupUpdate,
    Member,
    MemberBalance,
    MemberCreate,
    MemberUpdate,
    Settlement,
    SettlementCreate,
    SettlementUpdate,
    SuggestedTransfer,
)
from .splits import compute_split_details
from .storage import StorageManager
from .validation import (
    reject_nulls,
    require_group,
    validate_expense_inputs,
    validate_group_fields,
    validate_group_update,
    validate_member_deletion,
    validate_member_fields,
    validate_settlement,
    validate_split_details,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[AppState], None]

# Expense fields whose change means split_details must be recomputed
_SPLIT_FIELDS = {"amount", "split_mode", "split_between", "split_values"}

# Update fields that may be cleared by passing None
_NULLABLE_FIELDS = {"notes", "avatar_url", "split_values"}


class LedgerService:
    """Shared-expense ledger operations with change notification."""

    def __init__(self, storage: StorageManager, settings: Settings):
        """Initialize the ledger service."""
        self.storage = storage
        self.settings = settings
        self._subscribers: list[Subscriber] = []
        # Held from validation through the save: checks must see the state
        # the mutation is applied to.
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, settings: Settings) -> "LedgerService":
        """Open the SQLite-backed ledger described by settings and load it."""
        store = SQLiteKeyValueStore(settings.database_path)
        await store.connect()
        storage = StorageManager(
            store, collection=settings.store_collection, key=settings.state_key
        )
        service = cls(storage, settings)
        await service.load()
        return service

    async def close(self):
        """Close the underlying store."""
        await self.storage.store.close()

    async def load(self) -> AppState:
        """(Re)load the ledger from storage and publish it."""
        async with self._lock:
            state = await self.storage.load()
        self._publish(state)
        return state

    @property
    def state(self) -> AppState:
        """The current ledger (as last loaded or saved)."""
        return self.storage.state

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Call callback with the new state after every successful change.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, state: AppState):
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception as e:
                # The change is already saved; a broken listener must not undo that.
                logger.warning(f"Subscriber {callback!r} failed: {e}")

    # ========================================================================
    # Members
    # ========================================================================

    async def add_member(self, data: MemberCreate) -> str:
        """Add a member. Returns the new member id."""
        data = data.model_copy(
            update={"name": data.name.strip(), "email": data.email.strip()}
        )
        validate_member_fields(data.model_dump())

        async with self._lock:
            member_id = await self.storage.add_member(data)
            state = self.state
        self._publish(state)
        return member_id

    async def update_member(self, member_id: str, changes: MemberUpdate) -> AppState:
        """Change a member's name, email or avatar. avatar_url=None clears it."""
        fields = changes.model_dump(exclude_unset=True)
        reject_nulls(fields, _NULLABLE_FIELDS)
        for key in ("name", "email"):
            if key in fields:
                fields[key] = fields[key].strip()
        validate_member_fields(fields)

        async with self._lock:
            self._get(self.state.find_member(member_id), "Member", member_id)
            state = await self.storage.update_member(member_id, fields)
        self._publish(state)
        return state

    async def delete_member(self, member_id: str) -> AppState:
        """Delete a member that no group, expense or settlement refers to."""
        async with self._lock:
            self._get(self.state.find_member(member_id), "Member", member_id)
            validate_member_deletion(self.state, member_id)
            state = await self.storage.delete_member(member_id)
        self._publish(state)
        return state

    # ========================================================================
    # Groups
    # ========================================================================

    async def add_group(self, data: GroupCreate) -> str:
        """Add a group. Returns the new group id."""
        data = data.model_copy(update={"name": data.name.strip()})

        async with self._lock:
            validate_group_fields(self.state, data.model_dump())
            group_id = await self.storage.add_group(data)
            state = self.state
        self._publish(state)
        return group_id

    async def update_group(self, group_id: str, changes: GroupUpdate) -> AppState:
        """Change a group's name, type, currency or members."""
        fields = changes.model_dump(exclude_unset=True)
        reject_nulls(fields, _NULLABLE_FIELDS)
        if "name" in fields:
            fields["name"] = fields["name"].strip()

        async with self._lock:
            validate_group_update(self.state, group_id, fields)
            state = await self.storage.update_group(group_id, fields)
        self._publish(state)
        return state

    async def delete_group(self, group_id: str) -> AppState:
        """Delete a group and every expense and settlement recorded in it."""
        async with self._lock:
            state = await self.storage.delete_group(group_id)
        self._publish(state)
        return state

    # ========================================================================
    # Expenses
    # ========================================================================

    async def add_expense(self, data: ExpenseCreate) -> str:
        """
        Record an expense. Returns the new expense id.

        split_details is computed from split_mode and split_values; the shares
        always add up to the amount exactly.
        """
        async with self._lock:
            validate_expense_inputs(
                self.state,
                data.group_id,
                data.description,
                data.amount,
                data.paid_by,
                data.split_between,
                data.split_mode,
            )
            split_details = compute_split_details(
                data.amount, data.split_between, data.split_mode, data.split_values
            )
            validate_split_details(data.amount, data.split_between, split_details)

            expense_id = await self.storage.add_expense(data, split_details)
            state = self.state
        self._publish(state)
        return expense_id

    async def update_expense(self, expense_id: str, changes: ExpenseUpdate) -> AppState:
        """
        Change an expense. notes=None clears the notes.

        Touching amount, split_mode, split_between or split_values recomputes
        split_details. A manual split keeps its current shares unless new
        values are given; a percentage split needs its percentages again.
        """
        fields = changes.model_dump(exclude_unset=True)
        reject_nulls(fields, _NULLABLE_FIELDS)
        split_values = fields.pop("split_values", None)

        async with self._lock:
            expense = self._get(
                self.state.find_expense(expense_id), "Expense", expense_id
            )
            merged = expense.model_copy(update=fields)
            validate_expense_inputs(
                self.state,
                merged.group_id,
                merged.description,
                merged.amount,
                merged.paid_by,
                merged.split_between,
                merged.split_mode,
            )

            touched = set(fields)
            if split_values is not None:
                touched.add("split_values")
            if _SPLIT_FIELDS & touched:
                if (
                    split_values is None
                    and merged.split_mode == "manual"
                    and expense.split_mode == "manual"
                ):
                    split_values = expense.split_details
                fields["split_details"] = compute_split_details(
                    merged.amount, merged.split_between, merged.split_mode, split_values
                )
                validate_split_details(
                    merged.amount, merged.split_between, fields["split_details"]
                )

            state = await self.storage.update_expense(expense_id, fields)
        self._publish(state)
        return state

    async def delete_expense(self, expense_id: str) -> AppState:
        """Delete an expense."""
        async with self._lock:
            state = await self.storage.delete_expense(expense_id)
        self._publish(state)
        return state

    # ========================================================================
    # Settlements
    # ========================================================================

    async def add_settlement(self, data: SettlementCreate) -> str:
        """Record a payment between two members. Returns the new settlement id."""
        async with self._lock:
            validate_settlement(
                self.state,
                data.group_id,
                data.from_member_id,
                data.to_member_id,
                data.amount,
                allow_overpayment=self.settings.allow_overpayment,
            )
            settlement_id = await self.storage.add_settlement(data)
            state = self.state
        self._publish(state)
        return settlement_id

    async def update_settlement(
        self, settlement_id: str, changes: SettlementUpdate
    ) -> AppState:
        """Change a settlement's members, amount, date or notes."""
        fields = changes.model_dump(exclude_unset=True)
        reject_nulls(fields, _NULLABLE_FIELDS)

        async with self._lock:
            settlement = self._get(
                self.state.find_settlement(settlement_id), "Settlement", settlement_id
            )
            merged = settlement.model_copy(update=fields)
            validate_settlement(
                self.state,
                merged.group_id,
                merged.from_member_id,
                merged.to_member_id,
                merged.amount,
                allow_overpayment=self.settings.allow_overpayment,
                replacing_id=settlement_id,
            )
            state = await self.storage.update_settlement(settlement_id, fields)
        self._publish(state)
        return state

    async def delete_settlement(self, settlement_id: str) -> AppState:
        """Delete a settlement."""
        async with self._lock:
            state = await self.storage.delete_settlement(settlement_id)
        self._publish(state)
        return state

    async def reset(self) -> AppState:
        """Erase the whole ledger."""
        async with self._lock:
            state = await self.storage.reset()
        self._publish(state)
        return state

    # ========================================================================
    # Queries
    # ========================================================================

    def get_member(self, member_id: str) -> Member:
        """Get a member or raise NotFoundError."""
        return self._get(self.state.find_member(member_id), "Member", member_id)

    def get_group(self, group_id: str) -> Group:
        """Get a group or raise NotFoundError."""
        return require_group(self.state, group_id)

    def list_group_expenses(self, group_id: str) -> list[Expense]:
        """A group's expenses, newest first."""
        require_group(self.state, group_id)
        return sorted(
            self.state.group_expenses(group_id),
            key=lambda e: (e.date, e.created_at),
            reverse=True,
        )

    def list_group_settlements(self, group_id: str) -> list[Settlement]:
        """A group's settlements, newest first."""
        require_group(self.state, group_id)
        return sorted(
            self.state.group_settlements(group_id),
            key=lambda s: (s.date, s.created_at),
            reverse=True,
        )

    def get_group_balance(self, group_id: str) -> dict[str, MemberBalance] | None:
        """
        Balances for a group from the in-memory state (no storage read).

        Returns None if the group doesn't exist.
        """
        return compute_balances(self.state, group_id)

    def suggest_settlements(self, group_id: str) -> list[SuggestedTransfer]:
        """Transfers that would settle a group completely."""
        balances = self.get_group_balance(group_id)
        if balances is None:
            raise NotFoundError("Group", group_id)
        return suggest_transfers(balances)

    @staticmethod
    def _get(entity, kind: str, entity_id: str):
        if entity is None:
            raise NotFoundError(kind, entity_id)
        return entity

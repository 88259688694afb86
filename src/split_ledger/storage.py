"""Storage manager: owns the canonical ledger state and its persistence.

The whole AppState is read and written as one value under a single key.
Every mutation builds a new AppState, saves it, and only then replaces the
in-memory copy, so a failed save leaves both memory and storage unchanged.
"""

import asyncio
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .db import KeyValueStore
from .exceptions import ConflictError, CorruptValueError, NotFoundError
from .migrations import (
    DROPPED_EXPENSES_KEY,
    LEGACY_SCHEMA_VERSION,
    migrate,
    needs_migration,
)
from .models import (
    CURRENT_SCHEMA_VERSION,
    AppState,
    Expense,
    ExpenseCreate,
    Group,
    GroupCreate,
    Member,
    MemberCreate,
    Settlement,
    SettlementCreate,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "moneyTracker"
DEFAULT_STATE_KEY = "state"

# Keys the original per-list layout stored the ledger under
LEGACY_LIST_KEYS = ("members", "groups", "expenses", "settlements")


def new_id() -> str:
    """Generate a new entity identifier."""
    return uuid.uuid4().hex


class StorageManager:
    """Loads, migrates, mutates and saves the ledger."""

    def __init__(
        self,
        store: KeyValueStore,
        collection: str = DEFAULT_COLLECTION,
        key: str = DEFAULT_STATE_KEY,
    ):
        """Initialize the manager with an empty, unsaved state."""
        self.store = store
        self.collection = collection
        self.key = key
        self._state = AppState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> AppState:
        """The canonical in-memory ledger."""
        return self._state

    # ========================================================================
    # Load / save
    # ========================================================================

    async def load(self) -> AppState:
        """
        Load the ledger from the store.

        - Nothing stored: empty ledger (or the legacy per-list layout, if found)
        - Stored value unreadable: logged, copied aside, empty ledger
        - Older schema version: migrated and saved back

        Raises:
            StorageError: If the store itself fails
            SchemaVersionError: If the stored version has no migration path
        """
        async with self._lock:
            try:
                raw = await self.store.get(self.collection, self.key)
            except CorruptValueError as e:
                logger.error(f"Stored ledger is unreadable, starting empty: {e}")
                await self._quarantine(e.raw)
                self._state = AppState()
                return self._state

            if raw is None:
                raw = await self._load_legacy_lists()
                if raw is None:
                    logger.info("No stored ledger found, starting empty")
                    self._state = AppState()
                    return self._state

            state, migrated, dropped = self._decode(raw)
            if state is None:
                await self._quarantine(raw)
                # Keep the stored revision so the next save is not a conflict
                self._state = AppState(revision=_revision_of(raw))
                return self._state

            self._state = state
            if dropped:
                await self._set_aside(dropped)
            if migrated:
                # Persist the migrated form once so later loads skip the migration
                await self._write(state)

            logger.info(
                f"Loaded ledger: {len(state.members)} members, "
                f"{len(state.groups)} groups, {len(state.expenses)} expenses, "
                f"{len(state.settlements)} settlements (revision {state.revision})"
            )
            return self._state

    def _decode(self, raw: Any) -> tuple[AppState | None, bool, list[Any]]:
        """
        Migrate and validate a raw stored value.

        Returns:
            (state, was_migrated, legacy expenses the migration could not keep)
        """
        if not isinstance(raw, dict):
            logger.error(f"Stored ledger is a {type(raw).__name__}, not an object")
            return None, False, []

        migrated = needs_migration(raw)
        if migrated:
            logger.warning(
                f"Ledger schema version {raw.get('version')!r} differs from "
                f"{CURRENT_SCHEMA_VERSION!r}, migrating"
            )
            try:
                raw = migrate(raw)
            except (TypeError, ValueError, AttributeError, InvalidOperation) as e:
                logger.error(f"Stored ledger could not be migrated: {e}")
                return None, False, []

        dropped = raw.pop(DROPPED_EXPENSES_KEY, [])
        try:
            return AppState.model_validate(raw), migrated, dropped
        except PydanticValidationError as e:
            logger.error(f"Stored ledger failed validation, starting empty: {e}")
            return None, False, []

    async def _load_legacy_lists(self) -> dict[str, Any] | None:
        """Assemble a ledger from the old one-key-per-list layout, if present."""
        lists = {}
        for list_key in LEGACY_LIST_KEYS:
            try:
                value = await self.store.get(self.collection, list_key)
            except CorruptValueError as e:
                logger.error(f"Legacy {list_key} list is unreadable, skipping: {e}")
                value = None
            if isinstance(value, list):
                lists[list_key] = value

        if not lists:
            return None

        logger.info(f"Found legacy ledger lists: {', '.join(sorted(lists))}")
        return {**lists, "version": LEGACY_SCHEMA_VERSION}

    async def _quarantine(self, raw: Any):
        """Keep an unreadable value under a side key instead of losing it."""
        if raw is None:
            return
        backup_key = f"{self.key}.corrupt"
        await self.store.set(self.collection, backup_key, raw)
        logger.warning(f"Copied unreadable ledger to {self.collection}/{backup_key}")

    async def _set_aside(self, expenses: list[Any]):
        """Keep legacy expenses that could not be migrated under a side key."""
        backup_key = f"{self.key}.dropped"
        await self.store.set(self.collection, backup_key, expenses)
        logger.warning(
            f"Set aside {len(expenses)} unbalanced legacy expenses in "
            f"{self.collection}/{backup_key}"
        )

    async def save(self, state: AppState) -> AppState:
        """
        Save a full ledger state, replacing what is stored.

        The state must be based on the stored revision: if another writer
        saved in between, ConflictError is raised and nothing is written.

        Returns:
            The saved state (current version, revision + 1)

        Raises:
            ConflictError: If the stored revision differs from state.revision
            StorageError: If the store fails
        """
        async with self._lock:
            return await self._save(state)

    async def _save(self, state: AppState) -> AppState:
        stored_revision = await self._stored_revision()
        if stored_revision != state.revision:
            raise ConflictError(state.revision, stored_revision)

        saved = state.model_copy(
            update={"version": CURRENT_SCHEMA_VERSION, "revision": state.revision + 1}
        )
        await self._write(saved)
        self._state = saved
        return saved

    async def _stored_revision(self) -> int:
        try:
            raw = await self.store.get(self.collection, self.key)
        except CorruptValueError:
            return 0
        return _revision_of(raw)

    async def _write(self, state: AppState):
        await self.store.set(
            self.collection, self.key, state.model_dump(mode="json", by_alias=True)
        )

    async def _commit(self, state: AppState, message: str) -> AppState:
        saved = await self._save(state)
        logger.info(f"{message} (revision {saved.revision})")
        return saved

    async def reload(self) -> AppState:
        """Discard the in-memory state and load it again."""
        return await self.load()

    async def reset(self) -> AppState:
        """Replace the ledger with an empty one."""
        async with self._lock:
            empty = AppState(revision=self._state.revision)
            return await self._commit(empty, "Reset ledger")

    # ========================================================================
    # Members
    # ========================================================================

    async def add_member(self, data: MemberCreate) -> str:
        """Add a member and return its id."""
        async with self._lock:
            member = Member(id=new_id(), **data.model_dump())
            state = self._state.model_copy(
                update={"members": [*self._state.members, member]}
            )
            await self._commit(state, f"Added member {member.id}")
            return member.id

    async def update_member(self, member_id: str, changes: dict[str, Any]) -> AppState:
        """Apply field changes to a member."""
        async with self._lock:
            self._require(self._state.find_member(member_id), "Member", member_id)
            members = [
                m.model_copy(update=changes) if m.id == member_id else m
                for m in self._state.members
            ]
            state = self._state.model_copy(update={"members": members})
            return await self._commit(state, f"Updated member {member_id}")

    async def delete_member(self, member_id: str) -> AppState:
        """Remove a member. Group membership and expense references are not touched."""
        async with self._lock:
            self._require(self._state.find_member(member_id), "Member", member_id)
            members = [m for m in self._state.members if m.id != member_id]
            state = self._state.model_copy(update={"members": members})
            return await self._commit(state, f"Deleted member {member_id}")

    # ========================================================================
    # Groups
    # ========================================================================

    async def add_group(self, data: GroupCreate) -> str:
        """Add a group and return its id."""
        async with self._lock:
            now = utc_now()
            group = Group(id=new_id(), created_at=now, updated_at=now, **data.model_dump())
            state = self._state.model_copy(update={"groups": [*self._state.groups, group]})
            await self._commit(state, f"Added group {group.id}")
            return group.id

    async def update_group(self, group_id: str, changes: dict[str, Any]) -> AppState:
        """Apply field changes to a group and bump its updated_at."""
        async with self._lock:
            self._require(self._state.find_group(group_id), "Group", group_id)
            update = {**changes, "updated_at": utc_now()}
            groups = [
                g.model_copy(update=update) if g.id == group_id else g
                for g in self._state.groups
            ]
            state = self._state.model_copy(update={"groups": groups})
            return await self._commit(state, f"Updated group {group_id}")

    async def delete_group(self, group_id: str) -> AppState:
        """Remove a group together with its expenses and settlements."""
        async with self._lock:
            self._require(self._state.find_group(group_id), "Group", group_id)
            current = self._state
            state = current.model_copy(
                update={
                    "groups": [g for g in current.groups if g.id != group_id],
                    "expenses": [e for e in current.expenses if e.group_id != group_id],
                    "settlements": [
                        s for s in current.settlements if s.group_id != group_id
                    ],
                }
            )
            removed_expenses = len(current.expenses) - len(state.expenses)
            removed_settlements = len(current.settlements) - len(state.settlements)
            return await self._commit(
                state,
                f"Deleted group {group_id} with {removed_expenses} expenses "
                f"and {removed_settlements} settlements",
            )

    # ========================================================================
    # Expenses
    # ========================================================================

    async def add_expense(
        self, data: ExpenseCreate, split_details: dict[str, Decimal]
    ) -> str:
        """Add an expense with precomputed split details and return its id."""
        async with self._lock:
            now = utc_now()
            expense = Expense(
                id=new_id(),
                group_id=data.group_id,
                description=data.description,
                amount=data.amount,
                paid_by=list(data.paid_by),
                split_between=list(data.split_between),
                split_mode=data.split_mode,
                split_details=split_details,
                date=data.date,
                notes=data.notes,
                created_at=now,
                updated_at=now,
            )
            state = self._state.model_copy(
                update={"expenses": [*self._state.expenses, expense]}
            )
            await self._commit(state, f"Added expense {expense.id}")
            return expense.id

    async def update_expense(self, expense_id: str, changes: dict[str, Any]) -> AppState:
        """Apply field changes to an expense and bump its updated_at."""
        async with self._lock:
            self._require(self._state.find_expense(expense_id), "Expense", expense_id)
            update = {**changes, "updated_at": utc_now()}
            expenses = [
                e.model_copy(update=update) if e.id == expense_id else e
                for e in self._state.expenses
            ]
            state = self._state.model_copy(update={"expenses": expenses})
            return await self._commit(state, f"Updated expense {expense_id}")

    async def delete_expense(self, expense_id: str) -> AppState:
        """Remove an expense."""
        async with self._lock:
            self._require(self._state.find_expense(expense_id), "Expense", expense_id)
            expenses = [e for e in self._state.expenses if e.id != expense_id]
            state = self._state.model_copy(update={"expenses": expenses})
            return await self._commit(state, f"Deleted expense {expense_id}")

    # ========================================================================
    # Settlements
    # ========================================================================

    async def add_settlement(self, data: SettlementCreate) -> str:
        """Add a settlement and return its id."""
        async with self._lock:
            settlement = Settlement(id=new_id(), created_at=utc_now(), **data.model_dump())
            state = self._state.model_copy(
                update={"settlements": [*self._state.settlements, settlement]}
            )
            await self._commit(state, f"Added settlement {settlement.id}")
            return settlement.id

    async def update_settlement(
        self, settlement_id: str, changes: dict[str, Any]
    ) -> AppState:
        """Apply field changes to a settlement."""
        async with self._lock:
            self._require(
                self._state.find_settlement(settlement_id), "Settlement", settlement_id
            )
            settlements = [
                s.model_copy(update=changes) if s.id == settlement_id else s
                for s in self._state.settlements
            ]
            state = self._state.model_copy(update={"settlements": settlements})
            return await self._commit(state, f"Updated settlement {settlement_id}")

    async def delete_settlement(self, settlement_id: str) -> AppState:
        """Remove a settlement."""
        async with self._lock:
            self._require(
                self._state.find_settlement(settlement_id), "Settlement", settlement_id
            )
            settlements = [s for s in self._state.settlements if s.id != settlement_id]
            state = self._state.model_copy(update={"settlements": settlements})
            return await self._commit(state, f"Deleted settlement {settlement_id}")

    @staticmethod
    def _require(entity: Any, kind: str, entity_id: str):
        if entity is None:
            raise NotFoundError(kind, entity_id)


def _revision_of(raw: Any) -> int:
    """Revision recorded in a raw stored value; 0 when there is none."""
    if not isinstance(raw, dict):
        return 0
    try:
        return int(raw.get("revision") or 0)
    except (TypeError, ValueError):
        return 0

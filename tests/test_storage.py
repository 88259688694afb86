"""Tests for key-value stores and the storage manager."""

import json
from datetime import date
from decimal import Decimal

import aiosqlite
import pytest
import pytest_asyncio

from split_ledger.balances import compute_balances
from split_ledger.db import InMemoryKeyValueStore, SQLiteKeyValueStore
from split_ledger.exceptions import (
    ConflictError,
    CorruptValueError,
    NotFoundError,
    SchemaVersionError,
    StorageError,
)
from split_ledger.models import (
    CURRENT_SCHEMA_VERSION,
    ExpenseCreate,
    GroupCreate,
    MemberCreate,
    SettlementCreate,
)
from split_ledger.splits import split_equal
from split_ledger.storage import StorageManager


class FailingStore(InMemoryKeyValueStore):
    """In-memory store whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def set(self, collection, key, value):
        if self.fail_writes:
            raise StorageError("disk full")
        await super().set(collection, key, value)


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    """A connected SQLite store in a temporary directory."""
    store = SQLiteKeyValueStore(tmp_path / "ledger.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def store():
    """An in-memory store."""
    return InMemoryKeyValueStore()


async def seed(storage: StorageManager) -> dict[str, str]:
    """Add two members, a group and an expense. Returns their ids."""
    a = await storage.add_member(MemberCreate(name="Ann", email="ann@example.com"))
    b = await storage.add_member(MemberCreate(name="Bob"))
    g = await storage.add_group(GroupCreate(name="Trip", currency="EUR", members=[a, b]))
    data = ExpenseCreate(
        group_id=g,
        description="Dinner",
        amount=Decimal("100.00"),
        paid_by=[a],
        split_between=[a, b],
        date=date(2025, 3, 1),
    )
    e = await storage.add_expense(data, split_equal(data.amount, data.split_between))
    return {"a": a, "b": b, "g": g, "e": e}


class TestSQLiteKeyValueStore:
    """The SQLite backend."""

    @pytest.mark.asyncio
    async def test_get_missing_key(self, sqlite_store):
        assert await sqlite_store.get("c", "missing") is None

    @pytest.mark.asyncio
    async def test_set_replaces_value(self, sqlite_store):
        await sqlite_store.set("c", "k", {"n": 1})
        await sqlite_store.set("c", "k", {"n": 2})

        assert await sqlite_store.get("c", "k") == {"n": 2}

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, sqlite_store):
        await sqlite_store.set("c1", "k", 1)
        await sqlite_store.set("c2", "k", 2)
        await sqlite_store.set("c1", "j", 3)

        assert await sqlite_store.get_all("c1") == [3, 1]  # ordered by key

        await sqlite_store.clear("c1")
        assert await sqlite_store.get_all("c1") == []
        assert await sqlite_store.get("c2", "k") == 2

    @pytest.mark.asyncio
    async def test_delete(self, sqlite_store):
        await sqlite_store.set("c", "k", [1, 2])
        await sqlite_store.delete("c", "k")
        await sqlite_store.delete("c", "k")

        assert await sqlite_store.get("c", "k") is None

    @pytest.mark.asyncio
    async def test_undecodable_value(self, sqlite_store, tmp_path):
        async with aiosqlite.connect(str(tmp_path / "ledger.db")) as conn:
            await conn.execute(
                "INSERT INTO kv_store (collection, key, value) VALUES ('c', 'k', '{oops')"
            )
            await conn.commit()

        with pytest.raises(CorruptValueError) as exc_info:
            await sqlite_store.get("c", "k")
        assert exc_info.value.raw == "{oops"

    @pytest.mark.asyncio
    async def test_non_json_value_rejected(self, sqlite_store):
        with pytest.raises(StorageError):
            await sqlite_store.set("c", "k", {"when": date(2025, 1, 1)})

    @pytest.mark.asyncio
    async def test_not_connected(self, tmp_path):
        store = SQLiteKeyValueStore(tmp_path / "never.db")
        with pytest.raises(StorageError, match="not connected"):
            await store.get("c", "k")


class TestLoadAndSave:
    """Loading, saving and migrating the ledger."""

    @pytest.mark.asyncio
    async def test_empty_store_gives_empty_ledger(self, store):
        state = await StorageManager(store).load()

        assert state.members == [] and state.groups == []
        assert state.version == CURRENT_SCHEMA_VERSION
        assert state.revision == 0

    @pytest.mark.asyncio
    async def test_round_trip_through_sqlite(self, sqlite_store):
        storage = StorageManager(sqlite_store)
        await storage.load()
        ids = await seed(storage)

        reloaded = await StorageManager(sqlite_store).load()

        assert reloaded == storage.state
        expense = reloaded.find_expense(ids["e"])
        assert expense.split_details == {ids["a"]: Decimal("50.00"), ids["b"]: Decimal("50.00")}
        assert reloaded.find_group(ids["g"]).currency == "EUR"

    @pytest.mark.asyncio
    async def test_persisted_with_camel_case_keys_and_string_amounts(self, store):
        storage = StorageManager(store)
        ids = await seed(storage)

        raw = await store.get("moneyTracker", "state")

        assert raw["version"] == CURRENT_SCHEMA_VERSION
        expense = raw["expenses"][0]
        assert expense["groupId"] == ids["g"]
        assert expense["amount"] == "100.00"
        assert "splitDetails" in expense

    @pytest.mark.asyncio
    async def test_every_save_bumps_revision(self, store):
        storage = StorageManager(store)
        await seed(storage)

        assert storage.state.revision == 4
        assert (await store.get("moneyTracker", "state"))["revision"] == 4

    @pytest.mark.asyncio
    async def test_concurrent_writer_detected(self, store):
        first = StorageManager(store)
        second = StorageManager(store)
        await first.load()
        await second.load()

        await first.add_member(MemberCreate(name="Ann"))

        with pytest.raises(ConflictError) as exc_info:
            await second.add_member(MemberCreate(name="Bob"))
        assert exc_info.value.stored_revision == 1

        state = await second.reload()
        assert [m.name for m in state.members] == ["Ann"]

    @pytest.mark.asyncio
    async def test_failed_save_changes_nothing(self):
        store = FailingStore()
        storage = StorageManager(store)
        ids = await seed(storage)
        before = storage.state

        store.fail_writes = True
        with pytest.raises(StorageError, match="disk full"):
            await storage.delete_group(ids["g"])

        assert storage.state == before
        store.fail_writes = False
        assert (await StorageManager(store).load()) == before

    @pytest.mark.asyncio
    async def test_corrupt_json_is_quarantined(self, sqlite_store, tmp_path):
        async with aiosqlite.connect(str(tmp_path / "ledger.db")) as conn:
            await conn.execute(
                "INSERT INTO kv_store (collection, key, value) "
                "VALUES ('moneyTracker', 'state', 'not json')"
            )
            await conn.commit()

        storage = StorageManager(sqlite_store)
        state = await storage.load()

        assert state.members == []
        assert await sqlite_store.get("moneyTracker", "state.corrupt") == "not json"
        # The empty ledger can be saved over the unreadable value
        await storage.add_member(MemberCreate(name="Ann"))

    @pytest.mark.asyncio
    async def test_invalid_state_is_quarantined_keeping_revision(self, store):
        bad = {"version": CURRENT_SCHEMA_VERSION, "revision": 7, "members": "nope"}
        await store.set("moneyTracker", "state", bad)

        storage = StorageManager(store)
        state = await storage.load()

        assert state.members == []
        assert state.revision == 7
        assert await store.get("moneyTracker", "state.corrupt") == bad
        await storage.add_member(MemberCreate(name="Ann"))
        assert storage.state.revision == 8

    @pytest.mark.asyncio
    async def test_unknown_version_raises(self, store):
        await store.set("moneyTracker", "state", {"version": "9.0.0", "members": []})

        with pytest.raises(SchemaVersionError):
            await StorageManager(store).load()

    @pytest.mark.asyncio
    async def test_legacy_state_migrated_and_written_back(self, store):
        legacy = {
            "version": "1.0.0",
            "members": [{"id": "a", "name": "Ann"}],
            "groups": [],
            "expenses": [],
            "settlements": [],
        }
        await store.set("moneyTracker", "state", legacy)

        state = await StorageManager(store).load()

        assert state.members[0].email == ""
        assert (await store.get("moneyTracker", "state"))["version"] == CURRENT_SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_legacy_unbalanced_expenses_load_balanced(self, store):
        """Legacy shares that don't match the amount never break the zero-sum."""
        group = {
            "id": "g1",
            "name": "Trip",
            "members": ["a", "b"],
            "createdAt": "2024-01-01T00:00:00Z",
            "updatedAt": "2024-01-01T00:00:00Z",
        }

        def legacy_expense(id, paid_by, split_details):
            return {
                "id": id,
                "groupId": "g1",
                "description": id,
                "amount": 100,
                "paidBy": paid_by,
                "splitBetween": ["a", "b"],
                "splitDetails": split_details,
                "date": "2024-01-02",
                "createdAt": "2024-01-02T00:00:00Z",
                "updatedAt": "2024-01-02T00:00:00Z",
            }

        await store.set(
            "moneyTracker",
            "state",
            {
                "version": "1.0.0",
                "members": [{"id": "a", "name": "Ann"}, {"id": "b", "name": "Bob"}],
                "groups": [group],
                "expenses": [
                    legacy_expense("short", ["a"], {"a": 50, "b": 20}),
                    legacy_expense("nopayer", [], {"a": 50, "b": 50}),
                ],
                "settlements": [],
            },
        )

        storage = StorageManager(store)
        state = await storage.load()

        assert [e.id for e in state.expenses] == ["short"]
        assert sum(state.expenses[0].split_details.values()) == Decimal("100.00")
        balances = compute_balances(state, "g1")
        assert sum(b.net for b in balances.values()) == Decimal("0")

        dropped = await store.get("moneyTracker", "state.dropped")
        assert [e["id"] for e in dropped] == ["nopayer"]
        assert "droppedExpenses" not in await store.get("moneyTracker", "state")

        # The reconciled ledger is what later loads see
        reloaded = await StorageManager(store).load()
        assert reloaded.expenses == state.expenses

    @pytest.mark.asyncio
    async def test_legacy_per_list_layout(self, store):
        await store.set("moneyTracker", "members", [{"id": "a", "name": "Ann", "email": ""}])
        await store.set(
            "moneyTracker",
            "groups",
            [
                {
                    "id": "g1",
                    "name": "Home",
                    "type": "Family",
                    "currency": "USD",
                    "members": ["a"],
                    "createdAt": "2024-01-01T00:00:00Z",
                    "updatedAt": "2024-01-01T00:00:00Z",
                }
            ],
        )

        state = await StorageManager(store).load()

        assert [m.id for m in state.members] == ["a"]
        assert state.groups[0].type == "Family"
        assert state.expenses == []
        assert await store.get("moneyTracker", "state") is not None

    @pytest.mark.asyncio
    async def test_custom_collection_and_key(self, store):
        storage = StorageManager(store, collection="ledger", key="main")
        await storage.add_member(MemberCreate(name="Ann"))

        assert await store.get("ledger", "main") is not None
        assert await store.get("moneyTracker", "state") is None


class TestMutations:
    """Entity operations on the storage manager."""

    @pytest.mark.asyncio
    async def test_delete_group_cascades(self, store):
        storage = StorageManager(store)
        ids = await seed(storage)
        await storage.add_settlement(
            SettlementCreate(
                group_id=ids["g"],
                from_member_id=ids["b"],
                to_member_id=ids["a"],
                amount=Decimal("10.00"),
                date=date(2025, 3, 2),
            )
        )

        state = await storage.delete_group(ids["g"])

        assert state.groups == []
        assert state.expenses == []
        assert state.settlements == []
        assert len(state.members) == 2

    @pytest.mark.asyncio
    async def test_update_group_bumps_updated_at(self, store):
        storage = StorageManager(store)
        ids = await seed(storage)
        before = storage.state.find_group(ids["g"])

        state = await storage.update_group(ids["g"], {"name": "Road trip"})

        group = state.find_group(ids["g"])
        assert group.name == "Road trip"
        assert group.created_at == before.created_at
        assert group.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_update_member(self, store):
        storage = StorageManager(store)
        ids = await seed(storage)

        state = await storage.update_member(ids["b"], {"email": "bob@example.com"})

        assert state.find_member(ids["b"]).email == "bob@example.com"
        assert state.find_member(ids["b"]).name == "Bob"

    @pytest.mark.asyncio
    async def test_missing_entities(self, store):
        storage = StorageManager(store)

        with pytest.raises(NotFoundError, match="Expense nope not found"):
            await storage.delete_expense("nope")
        with pytest.raises(NotFoundError):
            await storage.update_settlement("nope", {"notes": "x"})

    @pytest.mark.asyncio
    async def test_reset(self, store):
        storage = StorageManager(store)
        await seed(storage)

        state = await storage.reset()

        assert state.members == [] and state.expenses == []
        assert state.revision == 5
        raw = await store.get("moneyTracker", "state")
        assert json.loads(json.dumps(raw))["members"] == []

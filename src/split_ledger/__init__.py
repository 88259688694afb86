"""Split Ledger - Track shared expenses and work out who owes whom."""

__version__ = "0.1.0"

from .balances import compute_balances, suggest_settlements
from .config import Settings, load_settings
from .db import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from .models import (
    AppState,
    Expense,
    ExpenseCreate,
    Group,
    GroupCreate,
    Member,
    MemberBalance,
    MemberCreate,
    Settlement,
    SettlementCreate,
)
from .service import LedgerService
from .storage import StorageManager

__all__ = [
    "Settings",
    "load_settings",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "AppState",
    "Expense",
    "ExpenseCreate",
    "Group",
    "GroupCreate",
    "Member",
    "MemberBalance",
    "MemberCreate",
    "Settlement",
    "SettlementCreate",
    "compute_balances",
    "suggest_settlements",
    "LedgerService",
    "StorageManager",
]

"""Key-value storage backends for Split Ledger.

The ledger only needs an async get/set/delete/clear/get_all store with
named collections. There are no transactions across keys.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiosqlite

from .exceptions import CorruptValueError, StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """
    Abstract async key-value store.

    Values are JSON-compatible objects (dicts, lists, strings, numbers).
    Every method raises StorageError when the backend fails.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> Any | None:
        """
        Read a value.

        Returns:
            The stored value, or None if the key is absent

        Raises:
            CorruptValueError: If the stored value cannot be decoded
        """
        pass

    @abstractmethod
    async def set(self, collection: str, key: str, value: Any) -> None:
        """Write a value, replacing whatever was stored under the key."""
        pass

    @abstractmethod
    async def delete(self, collection: str, key: str) -> None:
        """Remove a key. Removing a missing key is not an error."""
        pass

    @abstractmethod
    async def clear(self, collection: str) -> None:
        """Remove every key in a collection."""
        pass

    @abstractmethod
    async def get_all(self, collection: str) -> list[Any]:
        """Read every value in a collection, ordered by key."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Values are copied in and out, like a real backend."""

    def __init__(self):
        """Initialize an empty store."""
        self._data: dict[str, dict[str, Any]] = {}

    async def get(self, collection: str, key: str) -> Any | None:
        value = self._data.get(collection, {}).get(key)
        return copy.deepcopy(value)

    async def set(self, collection: str, key: str, value: Any) -> None:
        self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def delete(self, collection: str, key: str) -> None:
        self._data.get(collection, {}).pop(key, None)

    async def clear(self, collection: str) -> None:
        self._data.pop(collection, None)

    async def get_all(self, collection: str) -> list[Any]:
        items = self._data.get(collection, {})
        return [copy.deepcopy(items[key]) for key in sorted(items)]


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed store, one row per (collection, key), values as JSON text."""

    def __init__(self, db_path: Path):
        """Initialize the store. Call connect() before use."""
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the connection and initialize the schema."""
        if self._conn is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self.db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=30000")
            await self._init_schema()
        except (OSError, aiosqlite.Error) as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e

        logger.info(f"Opened key-value store at {self.db_path}")

    async def _init_schema(self):
        """Initialize database schema."""
        conn = self._require_conn()
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                collection TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, key)
            )
        """
        )
        await conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Key-value store is not connected")
        return self._conn

    # ========================================================================
    # Key-value operations
    # ========================================================================

    async def get(self, collection: str, key: str) -> Any | None:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                "SELECT value FROM kv_store WHERE collection = ? AND key = ?",
                (collection, key),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read {collection}/{key}: {e}") from e

        if row is None:
            return None
        return _decode(row[0], collection, key)

    async def set(self, collection: str, key: str, value: Any) -> None:
        conn = self._require_conn()
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {collection}/{key} is not JSON: {e}") from e

        try:
            await conn.execute(
                """
                INSERT INTO kv_store (collection, key, value, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(collection, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (collection, key, encoded),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to write {collection}/{key}: {e}") from e

    async def delete(self, collection: str, key: str) -> None:
        conn = self._require_conn()
        try:
            await conn.execute(
                "DELETE FROM kv_store WHERE collection = ? AND key = ?",
                (collection, key),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to delete {collection}/{key}: {e}") from e

    async def clear(self, collection: str) -> None:
        conn = self._require_conn()
        try:
            await conn.execute(
                "DELETE FROM kv_store WHERE collection = ?", (collection,)
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to clear {collection}: {e}") from e

    async def get_all(self, collection: str) -> list[Any]:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                "SELECT key, value FROM kv_store WHERE collection = ? ORDER BY key",
                (collection,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read {collection}: {e}") from e

        return [_decode(row[1], collection, row[0]) for row in rows]


def _decode(text: str, collection: str, key: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptValueError(
            f"Stored value for {collection}/{key} is not valid JSON: {e}", raw=text
        ) from e

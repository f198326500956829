"""
Document Store
==============
Whole-collection persistence for the arena's four collections
(users, agents, missions, signals).

The contract is intentionally tiny:
- read(collection)  -> list of records ([] if never written)
- write(collection, records) -> replaces the whole collection

No partial updates, no queries, no transactions. Filtering and sorting
happen in the caller after a full read. Two backends ship:

- JsonFileStore: one pretty-printed JSON file per collection (default)
- SqliteStore:   one row per collection holding the JSON document (aiosqlite)

Both raise StoreError on any I/O or decode failure.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from utils.logger import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """A collection could not be read or written."""


class DocumentStore(Protocol):
    async def read(self, collection: str) -> list[dict[str, Any]]: ...

    async def write(self, collection: str, records: list[dict[str, Any]]) -> None: ...

    async def exists(self, collection: str) -> bool: ...

    async def close(self) -> None: ...


class JsonFileStore:
    """
    Stores each collection as <data_dir>/<collection>.json.

    Usage:
        store = JsonFileStore(settings.collection_path)
        users = await store.read("users")
        await store.write("users", users)
    """

    def __init__(self, path_for):
        # path_for: collection name -> Path (Settings.collection_path)
        self.path_for = path_for

    async def read(self, collection: str) -> list[dict[str, Any]]:
        path = Path(self.path_for(collection))
        try:
            return await asyncio.to_thread(self._read_file, path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.error("store_read_failed", collection=collection, path=str(path), error=str(e))
            raise StoreError(f"Could not read from {path.name}.") from e

    async def write(self, collection: str, records: list[dict[str, Any]]) -> None:
        path = Path(self.path_for(collection))
        try:
            await asyncio.to_thread(self._write_file, path, records)
        except (OSError, TypeError, ValueError) as e:
            logger.error("store_write_failed", collection=collection, path=str(path), error=str(e))
            raise StoreError(f"Could not write to {path.name}.") from e
        logger.debug("store_written", collection=collection, records=len(records))

    async def exists(self, collection: str) -> bool:
        return Path(self.path_for(collection)).exists()

    async def close(self) -> None:
        pass

    @staticmethod
    def _read_file(path: Path) -> list[dict[str, Any]]:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path.name} does not hold a JSON array")
        return data

    @staticmethod
    def _write_file(path: Path, records: list[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(records, indent=2)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)


CREATE_COLLECTIONS_SQL = """
CREATE TABLE IF NOT EXISTS collections (
    name TEXT PRIMARY KEY,                  -- users / agents / missions / signals
    body TEXT NOT NULL,                     -- the whole collection as a JSON array
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class SqliteStore:
    """
    Same contract as JsonFileStore, backed by a single SQLite file.

    Usage:
        store = SqliteStore("data/arena.db")
        await store.initialize()
        ...
        await store.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        self.connection.row_factory = aiosqlite.Row
        await self.connection.executescript(CREATE_COLLECTIONS_SQL)
        await self.connection.commit()
        logger.info("sqlite_store_initialized", path=self.db_path)

    async def read(self, collection: str) -> list[dict[str, Any]]:
        try:
            cursor = await self.connection.execute(
                "SELECT body FROM collections WHERE name = ?", (collection,)
            )
            row = await cursor.fetchone()
            if not row:
                return []
            data = json.loads(row["body"])
        except (aiosqlite.Error, ValueError) as e:
            logger.error("store_read_failed", collection=collection, error=str(e))
            raise StoreError(f"Could not read from {collection}.") from e
        if not isinstance(data, list):
            raise StoreError(f"Collection {collection} does not hold a JSON array.")
        return data

    async def write(self, collection: str, records: list[dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        sql = """
            INSERT INTO collections (name, body, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
        """
        try:
            await self.connection.execute(sql, (collection, json.dumps(records), now))
            await self.connection.commit()
        except (aiosqlite.Error, TypeError, ValueError) as e:
            logger.error("store_write_failed", collection=collection, error=str(e))
            raise StoreError(f"Could not write to {collection}.") from e
        logger.debug("store_written", collection=collection, records=len(records))

    async def exists(self, collection: str) -> bool:
        try:
            cursor = await self.connection.execute(
                "SELECT 1 FROM collections WHERE name = ?", (collection,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("store_read_failed", collection=collection, error=str(e))
            raise StoreError(f"Could not check for {collection}.") from e
        return row is not None

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            self.connection = None


async def open_store(settings) -> DocumentStore:
    """Build the store backend selected in settings."""
    if settings.store_backend == "sqlite":
        store = SqliteStore(settings.sqlite_full_path)
        await store.initialize()
        return store
    return JsonFileStore(settings.collection_path)

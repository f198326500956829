"""
Collection Repository
=====================
A small record-level interface on top of the whole-document store:

    list() / find_by_id(id) / upsert(record) / append(record) / mutate(fn)

Every write is still "read the whole collection, change it in memory, write
the whole collection back". Callers never touch the store directly, so the
strategy underneath can change (per-record locking, a key-value store, a
real database) without changing them.

Concurrency: with `serialize=True` each read-modify-write holds a per-
collection asyncio.Lock, so two coroutines in this process can't lose each
other's update. A second process (or browser tab hitting another server)
writing the same files can still overwrite changes: there is no version
check on write.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, TypeVar

from database.store import DocumentStore

T = TypeVar("T")


class Collection:
    """
    Record-level access to one named collection.

    Usage:
        users = Collection(store, "users")
        user = await users.find_by_id("default_user")
        await users.upsert({**user, "xp": user["xp"] + 10})
    """

    def __init__(self, store: DocumentStore, name: str, key: str = "id", serialize: bool = True):
        self.store = store
        self.name = name
        self.key = key
        self._lock = asyncio.Lock() if serialize else contextlib.nullcontext()

    async def list(self) -> list[dict[str, Any]]:
        return await self.store.read(self.name)

    async def find_by_id(self, record_id: Any) -> dict[str, Any] | None:
        for record in await self.list():
            if record.get(self.key) == record_id:
                return record
        return None

    async def mutate(self, fn: Callable[[list[dict[str, Any]]], T | Awaitable[T]]) -> T:
        """
        Run fn on the full record list and persist the list afterwards.
        fn edits the list in place and may return a value for the caller.
        If fn raises, nothing is written.
        """
        async with self._lock:
            records = await self.store.read(self.name)
            result = fn(records)
            if asyncio.iscoroutine(result):
                result = await result
            await self.store.write(self.name, records)
            return result

    async def append(self, record: dict[str, Any]) -> dict[str, Any]:
        """
        Append one record. A record without a key gets max(existing) + 1
        (1 for an empty collection), so integer keys only ever grow.
        """

        def _append(records):
            stored = dict(record)
            if stored.get(self.key) is None:
                stored[self.key] = max((r.get(self.key) or 0 for r in records), default=0) + 1
            records.append(stored)
            return stored

        return await self.mutate(_append)

    async def upsert(self, record: dict[str, Any]) -> dict[str, Any]:
        """Replace the record with the same key, or append it."""

        def _upsert(records):
            for i, existing in enumerate(records):
                if existing.get(self.key) == record.get(self.key):
                    records[i] = record
                    return record
            records.append(record)
            return record

        return await self.mutate(_upsert)

    async def replace_all(self, records: list[dict[str, Any]]) -> None:
        async with self._lock:
            await self.store.write(self.name, records)

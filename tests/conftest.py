"""Shared fixtures for Shadow Arena tests."""

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import pytest

from config.settings import Settings
from database.db import Database
from database.store import JsonFileStore, StoreError


@pytest.fixture
def settings(tmp_path):
    """Settings pointed at a temp data dir, with lifecycle timers shrunk for tests."""
    return Settings(
        data_dir=str(tmp_path / "data"),
        store_backend="json",
        sqlite_path="",
        serialize_writes=True,
        current_user_id="default_user",
        settling_delay=0.0,
        price_poll_interval=0.01,
        insight_timeout=1.0,
        price_timeout=0.5,
        tracking_timeout=2.0,
        signal_history_limit=10,
        binance_base_url="https://api.binance.com/api/v3",
        binance_api_key="",
        llm_base_url="https://api.openai.com/v1",
        llm_api_key="test-key",
        llm_model="gpt-4o-mini",
        telegram_bot_token="",
        telegram_chat_id="",
    )


class FailingStore:
    """JsonFileStore that raises StoreError when writing the named collections."""

    def __init__(self, inner, fail_writes=()):
        self.inner = inner
        self.fail_writes = set(fail_writes)

    async def read(self, collection):
        return await self.inner.read(collection)

    async def write(self, collection, records):
        if collection in self.fail_writes:
            raise StoreError(f"Could not write to {collection}.json.")
        await self.inner.write(collection, records)

    async def exists(self, collection):
        return await self.inner.exists(collection)

    async def close(self):
        await self.inner.close()


@pytest.fixture
def make_db(settings):
    """Async factory: `db = await make_db()` gives a seeded JSON-backed Database."""

    async def _make(fail_writes=(), seed=True, serialize_writes=True):
        store = JsonFileStore(settings.collection_path)
        db = Database(store, serialize_writes=serialize_writes)
        if seed:
            await db.seed()
        if fail_writes:
            db = Database(FailingStore(store, fail_writes), serialize_writes=serialize_writes)
        return db

    return _make


@pytest.fixture
def insight_payload():
    """A realistic insight as the model returns it (camelCase keys)."""
    return {
        "prediction": "BUY",
        "confidence": 78,
        "entryRange": "$25,200 - $25,500",
        "stopLoss": "$24,800",
        "takeProfit": "$26,200",
        "shadowScore": 82,
        "thought": "Higher lows into resistance; momentum favors a breakout.",
    }

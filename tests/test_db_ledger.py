import asyncio
import copy

import pytest

from database.db import Database, InvalidValue, LedgerError
from database.models import SL_HIT, TP_HIT, new_signal, new_user


def _signal(outcome=TP_HIT, bsai=150, xp=100, user_id="default_user", asset="BTCUSDT"):
    return new_signal(
        user_id=user_id,
        asset=asset,
        prediction="BUY",
        trade_mode="Intraday",
        outcome=outcome,
        reward_bsai=bsai,
        reward_xp=xp,
        gas_paid=5,
        insight={"entryRange": "$25,200 - $25,500", "stopLoss": "$24,800", "takeProfit": "$26,200",
                 "confidence": 78, "shadowScore": 82},
    )


@pytest.mark.asyncio
async def test_seed_creates_collections_once(make_db):
    db = await make_db(seed=False)

    assert sorted(await db.seed()) == ["agents", "missions", "signals", "trades", "users"]
    assert await db.seed() == []
    assert (await db.get_user("default_user"))["name"] == "Neon Pilot"
    assert await db.signals.list() == []


@pytest.mark.asyncio
async def test_seed_leaves_existing_collections_alone(make_db):
    db = await make_db()
    await db.stake("default_user", 100)

    await db.seed()

    assert (await db.get_user("default_user"))["staked_amount"] == 1600


@pytest.mark.asyncio
async def test_save_signal_assigns_increasing_ids_and_copies_snapshot(make_db):
    db = await make_db()

    first = await db.save_signal(_signal())
    second = await db.save_signal(_signal(outcome=SL_HIT, bsai=0, xp=10))

    assert first["id"] == 1
    assert second["id"] == 2
    assert first["created_at"]
    assert first["stop_loss"] == "$24,800"
    assert first["take_profit"] == "$26,200"
    assert first["shadow_score"] == 82


@pytest.mark.asyncio
async def test_save_signal_applies_rewards_to_user(make_db):
    db = await make_db()

    await db.save_signal(_signal(TP_HIT, bsai=150, xp=100))
    await db.save_signal(_signal(SL_HIT, bsai=0, xp=10))

    user = await db.get_user("default_user")
    assert user["signals_generated"] == 2
    assert user["signals_won"] == 1
    assert user["bsai_earned"] == 150
    assert user["xp"] == 1250 + 110
    assert user["signals_won"] <= user["signals_generated"]


class _MemoryStore:
    def __init__(self, collections):
        self.collections = {k: copy.deepcopy(v) for k, v in collections.items()}

    async def read(self, collection):
        return copy.deepcopy(self.collections.get(collection, []))

    async def write(self, collection, records):
        self.collections[collection] = copy.deepcopy(records)

    async def exists(self, collection):
        return collection in self.collections

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_reward_totals_do_not_depend_on_order():
    signals = [_signal(SL_HIT, bsai=0, xp=7), _signal(TP_HIT, bsai=212, xp=64), _signal(TP_HIT, bsai=90, xp=51)]

    async def _totals(ordered):
        db = Database(_MemoryStore({"users": [new_user("default_user", xp=1250)]}))
        for signal in ordered:
            await db.save_signal(dict(signal))
        user = await db.get_user("default_user")
        return {k: user[k] for k in ("xp", "bsai_earned", "signals_generated", "signals_won")}

    assert await _totals(signals) == await _totals(list(reversed(signals)))
    assert await _totals(signals) == {"xp": 1372, "bsai_earned": 302, "signals_generated": 3, "signals_won": 2}


@pytest.mark.asyncio
async def test_save_signal_for_missing_user_keeps_the_signal(make_db):
    db = await make_db()
    before = await db.list_users()

    saved = await db.save_signal(_signal(user_id="ghost"))

    assert saved["id"] == 1
    assert [s["user_id"] for s in await db.signals.list()] == ["ghost"]
    after = await db.list_users()
    assert [u["xp"] for u in after] == [u["xp"] for u in before]


@pytest.mark.asyncio
async def test_concurrent_saves_get_unique_ids_and_all_rewards(make_db):
    db = await make_db()

    saved = await asyncio.gather(*[db.save_signal(_signal(TP_HIT, bsai=10, xp=1)) for _ in range(5)])

    assert sorted(s["id"] for s in saved) == [1, 2, 3, 4, 5]
    user = await db.get_user("default_user")
    assert user["signals_generated"] == 5
    assert user["bsai_earned"] == 50


@pytest.mark.asyncio
async def test_user_write_failure_raises_ledger_error_but_keeps_signal(make_db):
    db = await make_db(fail_writes={"users"})

    with pytest.raises(LedgerError, match="saved but user stats were not updated"):
        await db.save_signal(_signal())

    assert len(await db.signals.list()) == 1
    assert (await db.get_user("default_user"))["signals_generated"] == 0


@pytest.mark.asyncio
async def test_signal_write_failure_leaves_user_untouched(make_db):
    db = await make_db(fail_writes={"signals"})

    with pytest.raises(LedgerError, match="Could not save signal"):
        await db.save_signal(_signal())

    assert (await db.get_user("default_user"))["xp"] == 1250


@pytest.mark.asyncio
async def test_signal_history_is_newest_first_and_limited(make_db):
    db = await make_db()
    for i in range(12):
        await db.save_signal(_signal(asset=f"COIN{i}"))
    await db.save_signal(_signal(user_id="bot_1"))

    history = await db.get_signals_for_user("default_user", limit=10)

    assert len(history) == 10
    assert history[0]["asset"] == "COIN11"
    assert [s["id"] for s in history] == sorted((s["id"] for s in history), reverse=True)
    assert all(s["user_id"] == "default_user" for s in history)


@pytest.mark.asyncio
async def test_stats_summary_mentions_win_rate(make_db):
    db = await make_db()
    await db.save_signal(_signal(TP_HIT))
    await db.save_signal(_signal(SL_HIT, bsai=0, xp=10))

    summary = await db.get_user_stats_summary("default_user")

    assert "Neon Pilot" in summary
    assert "50.0% win rate" in summary
    assert await db.get_user_stats_summary("nobody") == "No stats found for user nobody."


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [("prediction", "MOON"), ("outcome", "EXPIRED")])
async def test_save_signal_rejects_unknown_enum_values(make_db, field, value):
    db = await make_db()

    with pytest.raises(InvalidValue):
        await db.save_signal({**_signal(), field: value})

    assert await db.signals.list() == []
    assert (await db.get_user("default_user"))["signals_generated"] == 0


@pytest.mark.asyncio
async def test_pending_outcome_is_recorded_without_a_win(make_db):
    db = await make_db()

    saved = await db.save_signal(_signal(outcome="PENDING", bsai=0, xp=0))

    user = await db.get_user("default_user")
    assert saved["outcome"] == "PENDING"
    assert (user["signals_generated"], user["signals_won"]) == (1, 0)

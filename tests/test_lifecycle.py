import asyncio

import pytest
from pydantic import ValidationError

from agent.insights import Insight, InsightGenerationError
from database.models import SL_HIT, TP_HIT
from notifications.notifier import Notifier
from trader.lifecycle import SignalLifecycleController, SignalState
from trader.rewards import FixedRewardPolicy


class _ScriptedOracle:
    """
    Returns scripted prices in order, then `then` forever. Exceptions in the
    script are raised. With `pause` set, each call sleeps that long first.
    """

    def __init__(self, prices, then=None, pause=None):
        self.prices = list(prices)
        self.then = then
        self.pause = pause
        self.calls = 0

    async def get_latest_price(self, symbol):
        self.calls += 1
        if self.pause is not None:
            await asyncio.sleep(self.pause)
        value = self.prices.pop(0) if self.prices else self.then
        if isinstance(value, Exception):
            raise value
        return value


class _FakeGenerator:
    def __init__(self, insight=None, error=None, delay=0.0):
        self.insight = insight
        self.error = error
        self.delay = delay
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.insight


def _controller(settings, db, generator, oracle):
    notifier = Notifier(settings)
    return SignalLifecycleController(
        settings=settings,
        db=db,
        insight_generator=generator,
        price_oracle=oracle,
        notifier=notifier,
        reward_policy=FixedRewardPolicy(),
    )


@pytest.mark.asyncio
async def test_buy_signal_resolves_take_profit_and_saves_once(settings, make_db, insight_payload):
    db = await make_db()
    oracle = _ScriptedOracle([None, "25500.00", "26300.00"], then="26300.00")
    generator = _FakeGenerator(Insight.model_validate(insight_payload))
    controller = _controller(settings, db, generator, oracle)

    assert await controller.request("btcusdt", "Intraday", "Medium") is True
    assert controller.state == SignalState.SIMULATING

    await controller.wait_for_state(SignalState.RESOLVED, timeout=2)

    snapshot = controller.snapshot()
    assert snapshot["outcome"] == TP_HIT
    assert snapshot["reward"] == {"bsai": 150, "xp": 100, "gas": 5}
    assert snapshot["polls"] == 2
    assert snapshot["last_price"] == 26300.0
    assert snapshot["persisted"] is True
    assert snapshot["signal_id"] == 1
    assert snapshot["insight"]["takeProfit"] == "$26,200"
    assert generator.requests[0].target == "BTCUSDT"

    signals = await db.signals.list()
    assert len(signals) == 1
    assert signals[0]["outcome"] == TP_HIT
    assert signals[0]["asset"] == "BTCUSDT"
    user = await db.get_user("default_user")
    assert user["xp"] == 1350
    assert user["bsai_earned"] == 150
    assert (user["signals_generated"], user["signals_won"]) == (1, 1)

    titles = [t["title"] for t in controller.notifier.drain()]
    assert titles == ["Shadow Core Analysis Complete!", "TAKE PROFIT HIT: BTCUSDT"]

    # resolved stays put until acknowledged
    await asyncio.sleep(0.05)
    assert controller.state == SignalState.RESOLVED
    assert len(await db.signals.list()) == 1

    controller.acknowledge()
    assert controller.state == SignalState.IDLE
    assert controller.snapshot()["insight"] is None
    await controller.close()


@pytest.mark.asyncio
async def test_sell_signal_resolves_stop_loss(settings, make_db, insight_payload):
    db = await make_db()
    insight = Insight.model_validate(
        {**insight_payload, "prediction": "SELL", "stopLoss": "$26,000", "takeProfit": "$24,000"}
    )
    controller = _controller(settings, db, _FakeGenerator(insight), _ScriptedOracle(["26100"]))

    await controller.request("ETHUSDT")
    await controller.wait_for_state(SignalState.RESOLVED, timeout=2)

    assert controller.outcome == SL_HIT
    user = await db.get_user("default_user")
    assert (user["signals_generated"], user["signals_won"], user["xp"]) == (1, 0, 1260)
    await controller.close()


@pytest.mark.asyncio
async def test_second_request_is_rejected_while_busy(settings, make_db, insight_payload):
    db = await make_db()
    generator = _FakeGenerator(Insight.model_validate(insight_payload), delay=0.5)
    controller = _controller(settings, db, generator, _ScriptedOracle([]))

    assert await controller.request("BTCUSDT") is True
    assert await controller.request("ETHUSDT") is False

    assert controller.request_params.target == "BTCUSDT"
    await controller.close()
    assert controller.state == SignalState.IDLE
    assert len(generator.requests) <= 1


@pytest.mark.asyncio
async def test_invalid_request_raises_and_stays_idle(settings, make_db):
    db = await make_db()
    controller = _controller(settings, db, _FakeGenerator(), _ScriptedOracle([]))

    with pytest.raises(ValidationError):
        await controller.request("BTC/USDT")

    assert controller.state == SignalState.IDLE


@pytest.mark.asyncio
async def test_generation_failure_returns_to_idle_with_toast(settings, make_db):
    db = await make_db()
    generator = _FakeGenerator(error=InsightGenerationError("LLM HTTP 503"))
    controller = _controller(settings, db, generator, _ScriptedOracle([]))

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.IDLE, timeout=2)

    toasts = controller.notifier.drain()
    assert toasts[-1]["title"] == "Error Commanding Shadow Core"
    assert "503" in toasts[-1]["description"]
    assert await db.signals.list() == []
    # retry is allowed straight away
    assert await controller.request("BTCUSDT") is True
    await controller.close()


@pytest.mark.asyncio
async def test_generation_timeout_returns_to_idle(settings, make_db, insight_payload):
    settings.insight_timeout = 0.05
    db = await make_db()
    generator = _FakeGenerator(Insight.model_validate(insight_payload), delay=1.0)
    controller = _controller(settings, db, generator, _ScriptedOracle([]))

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.IDLE, timeout=2)

    assert controller.notifier.drain()[-1]["title"] == "Error Commanding Shadow Core"
    await controller.close()


@pytest.mark.asyncio
async def test_oracle_misses_and_errors_are_skipped(settings, make_db, insight_payload):
    db = await make_db()
    oracle = _ScriptedOracle([None, RuntimeError("socket closed"), "garbage", "24700"])
    controller = _controller(settings, db, _FakeGenerator(Insight.model_validate(insight_payload)), oracle)

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.RESOLVED, timeout=2)

    assert controller.outcome == SL_HIT
    assert controller.polls == 1
    assert oracle.calls == 4
    await controller.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("pause", [None, 0, 0.005])
async def test_reset_while_tracking_ignores_later_take_profit(settings, make_db, insight_payload, pause):
    insight = Insight.model_validate(insight_payload)
    db = await make_db()

    for _ in range(20):
        oracle = _ScriptedOracle([], then="25500", pause=pause)
        controller = _controller(settings, db, _FakeGenerator(insight), oracle)

        await controller.request("BTCUSDT")
        await controller.wait_for_state(SignalState.TRACKING, timeout=2)
        await asyncio.sleep(0.03)

        controller.acknowledge()
        calls_at_reset = oracle.calls
        oracle.then = "26300"
        await asyncio.sleep(0.05)

        assert controller.state == SignalState.IDLE
        assert controller.outcome is None
        assert controller.polls == 0
        assert oracle.calls == calls_at_reset
        await asyncio.wait_for(controller.close(), timeout=1)

    assert await db.signals.list() == []
    assert (await db.get_user("default_user"))["signals_generated"] == 0


@pytest.mark.asyncio
async def test_acknowledge_during_settling_delay_prevents_any_poll(settings, make_db, insight_payload):
    settings.settling_delay = 0.2
    db = await make_db()
    oracle = _ScriptedOracle([], then="26300")
    controller = _controller(settings, db, _FakeGenerator(Insight.model_validate(insight_payload)), oracle)

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.TRACKING, timeout=2)
    controller.acknowledge()
    await asyncio.sleep(0.3)

    assert oracle.calls == 0
    assert await db.signals.list() == []
    await controller.close()


@pytest.mark.asyncio
async def test_persistence_failure_still_resolves(settings, make_db, insight_payload):
    db = await make_db(fail_writes={"users"})
    controller = _controller(
        settings, db, _FakeGenerator(Insight.model_validate(insight_payload)), _ScriptedOracle(["26300"])
    )

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.RESOLVED, timeout=2)

    snapshot = controller.snapshot()
    assert snapshot["outcome"] == TP_HIT
    assert snapshot["reward"]["bsai"] == 150
    assert snapshot["persisted"] is False
    assert snapshot["signal_id"] is None
    titles = [t["title"] for t in controller.notifier.drain()]
    assert "Signal Not Saved" in titles
    assert titles[-1] == "TAKE PROFIT HIT: BTCUSDT"
    await controller.close()


@pytest.mark.asyncio
async def test_tracking_timeout_discards_signal(settings, make_db, insight_payload):
    settings.tracking_timeout = 0.1
    db = await make_db()
    controller = _controller(
        settings, db, _FakeGenerator(Insight.model_validate(insight_payload)), _ScriptedOracle([], then="25500")
    )

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.IDLE, timeout=2)

    assert controller.notifier.drain()[-1]["title"] == "Tracking Expired"
    assert await db.signals.list() == []
    await controller.close()


@pytest.mark.asyncio
async def test_close_cancels_in_flight_generation(settings, make_db, insight_payload):
    db = await make_db()
    generator = _FakeGenerator(Insight.model_validate(insight_payload), delay=5.0)
    controller = _controller(settings, db, generator, _ScriptedOracle([]))

    await controller.request("BTCUSDT")
    await asyncio.sleep(0.01)
    await controller.close()

    assert controller.state == SignalState.IDLE
    assert controller.notifier.drain() == []


@pytest.mark.asyncio
async def test_reset_during_save_keeps_the_single_save(settings, make_db, insight_payload):
    db = await make_db()
    saving = asyncio.Event()
    real_save = db.save_signal

    async def _slow_save(record):
        saving.set()
        await asyncio.sleep(0.1)
        return await real_save(record)

    db.save_signal = _slow_save
    controller = _controller(
        settings, db, _FakeGenerator(Insight.model_validate(insight_payload)), _ScriptedOracle(["26300"])
    )

    await controller.request("BTCUSDT")
    await asyncio.wait_for(saving.wait(), timeout=2)
    controller.acknowledge()
    await asyncio.wait_for(controller.close(), timeout=1)

    assert controller.state == SignalState.IDLE
    assert controller.outcome is None
    signals = await db.signals.list()
    assert [s["outcome"] for s in signals] == [TP_HIT]
    assert (await db.get_user("default_user"))["signals_won"] == 1


@pytest.mark.asyncio
async def test_new_request_after_reset_is_not_disturbed_by_old_run(settings, make_db, insight_payload):
    db = await make_db()
    insight = Insight.model_validate(insight_payload)
    oracle = _ScriptedOracle([], then="25500", pause=0.005)
    controller = _controller(settings, db, _FakeGenerator(insight), oracle)

    await controller.request("BTCUSDT")
    await controller.wait_for_state(SignalState.TRACKING, timeout=2)
    controller.acknowledge()

    await controller.request("ETHUSDT")
    oracle.then = "24700"
    await controller.wait_for_state(SignalState.RESOLVED, timeout=2)

    assert controller.request_params.target == "ETHUSDT"
    assert controller.outcome == SL_HIT
    assert [s["asset"] for s in await db.signals.list()] == ["ETHUSDT"]
    await controller.close()

"""
Signal Lifecycle Controller
===========================
Drives one trade attempt from request to settlement:

    idle -> simulating -> tracking -> resolved -> (acknowledge) -> idle

- idle:       no signal active; a request {target, trade_mode, risk} starts one
- simulating: waiting on the insight generator (UI plays the terminal animation)
- tracking:   insight received; after a settling delay the price oracle is polled
              every `price_poll_interval` seconds until TP or SL is hit
- resolved:   outcome latched, rewards computed and saved; shown until the user
              acknowledges

The whole run lives in ONE asyncio task, so every timer (settling delay, poll
sleep, timeouts) is an await inside it. Each run also carries a run id;
acknowledge() and close() bump the current id and cancel the task, and the
run re-checks its id after every await, so a run that is still unwinding can
never change state, poll again or save. close() keeps cancelling until every
run task has actually finished.

Failure handling:
- generator error/timeout -> back to idle + retryable toast, nothing saved
- oracle returns None      -> skip this tick silently
- save fails               -> still resolved (rewards shown) + persistence toast
- tracking_timeout expires -> back to idle + toast, nothing saved

Once an outcome is latched the save runs to completion even if the user
resets mid-save; the outcome is never re-evaluated.
"""

import asyncio
from dataclasses import asdict
from enum import Enum

import structlog

from agent.insights import Insight, InsightGenerator, SignalRequest
from config.settings import Settings
from database.db import Database
from database.models import new_signal
from notifications.notifier import Notifier
from trader.outcome import evaluate_outcome
from trader.rewards import RandomRewardPolicy, Reward
from utils.logger import get_logger


logger = get_logger(__name__)


class SignalState(str, Enum):
    IDLE = "idle"
    SIMULATING = "simulating"
    TRACKING = "tracking"
    RESOLVED = "resolved"


class _Superseded(Exception):
    """The run was reset or replaced while it was suspended."""


async def _bounded(awaitable, timeout: float | None):
    """
    Await with a timeout (None waits forever). A cancel() of the caller always
    propagates, even when the inner work finished in the same loop iteration.
    """
    inner = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({inner}, timeout=timeout)
    except asyncio.CancelledError:
        inner.cancel()
        raise
    if not done:
        inner.cancel()
        raise asyncio.TimeoutError()
    return inner.result()


class SignalLifecycleController:
    """
    One controller per player/host context. Only one signal in flight at a time.

    Usage:
        controller = SignalLifecycleController(settings, db, generator, oracle, notifier)
        await controller.request("BTCUSDT", "Intraday", "Medium")
        await controller.wait_for_state(SignalState.RESOLVED)
        controller.acknowledge()
        await controller.close()
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        insight_generator: InsightGenerator,
        price_oracle,
        notifier: Notifier,
        reward_policy=None,
        user_id: str | None = None,
    ):
        self.settings = settings
        self.db = db
        self.insight_generator = insight_generator
        self.price_oracle = price_oracle
        self.notifier = notifier
        self.reward_policy = reward_policy or RandomRewardPolicy()
        self.user_id = user_id or settings.current_user_id

        self.state = SignalState.IDLE
        self._state_changed = asyncio.Event()
        self._run_id = 0
        # run tasks stay here until they have really finished
        self._tasks: set[asyncio.Task] = set()
        self._saves: set[asyncio.Future] = set()
        self._clear()

    # =========================================================================
    # Public API
    # =========================================================================

    async def request(self, target: str, trade_mode: str = "Intraday", risk: str = "Medium") -> bool:
        """
        Start a new signal. Returns False (and changes nothing) if one is
        already outstanding. Raises pydantic.ValidationError on bad input.
        """
        if self.state != SignalState.IDLE:
            logger.warning("signal_request_rejected", state=self.state.value, target=target)
            return False

        signal_request = SignalRequest(target=target, trade_mode=trade_mode, risk=risk)
        self._clear()
        self.request_params = signal_request
        self._set_state(SignalState.SIMULATING)
        self._run_id += 1
        task = asyncio.create_task(self._run(signal_request, self._run_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def acknowledge(self) -> None:
        """
        Return to idle and forget the current signal. From `resolved` this is
        the normal acknowledgment; from `simulating`/`tracking` it abandons the
        signal and cancels any pending generation, delay or poll.
        """
        if self.state == SignalState.IDLE:
            return
        previous = self.state
        self._cancel_runs()
        target = self.request_params.target if self.request_params else None
        self._clear()
        self._set_state(SignalState.IDLE)
        if previous == SignalState.RESOLVED:
            logger.info("signal_acknowledged", target=target)
        else:
            logger.info("signal_abandoned", target=target, from_state=previous.value)

    async def close(self) -> None:
        """Tear down: cancel in-flight work, wait for it to stop and for pending saves."""
        self._cancel_runs()
        pending = set(self._tasks)
        while pending:
            for task in pending:
                task.cancel()
            _, pending = await asyncio.wait(pending, timeout=0.1)
        if self._saves:
            await asyncio.gather(*self._saves, return_exceptions=True)
        if self.state != SignalState.IDLE:
            self._clear()
            self._set_state(SignalState.IDLE)
        logger.info("signal_controller_closed", user_id=self.user_id)

    async def wait_for_state(self, *states: SignalState, timeout: float | None = None) -> SignalState:
        """Block until the controller is in one of `states`."""

        async def _wait():
            while self.state not in states:
                await self._state_changed.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)
        return self.state

    def snapshot(self) -> dict:
        """Everything the UI needs to render the current state."""
        return {
            "state": self.state.value,
            "request": self.request_params.model_dump() if self.request_params else None,
            "insight": self.insight.as_contract() if self.insight else None,
            "outcome": self.outcome,
            "reward": asdict(self.reward) if self.reward else None,
            "last_price": self.last_price,
            "polls": self.polls,
            "signal_id": self.saved_signal.get("id") if self.saved_signal else None,
            "persisted": self.persisted,
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _clear(self) -> None:
        self.request_params: SignalRequest | None = None
        self.insight: Insight | None = None
        self.outcome: str | None = None
        self.reward: Reward | None = None
        self.last_price: float | None = None
        self.polls: int = 0
        self.saved_signal: dict | None = None
        self.persisted: bool | None = None

    def _set_state(self, state: SignalState) -> None:
        previous = self.state
        self.state = state
        logger.info("signal_state_changed", from_state=previous.value, to_state=state.value, user_id=self.user_id)
        # wake waiters, then arm a fresh event for the next change
        self._state_changed.set()
        self._state_changed = asyncio.Event()

    def _cancel_runs(self) -> None:
        self._run_id += 1
        for task in self._tasks:
            task.cancel()

    def _check(self, run_id: int) -> None:
        if run_id != self._run_id:
            raise _Superseded()

    def _fail_to_idle(self) -> None:
        self._clear()
        self._set_state(SignalState.IDLE)

    async def _run(self, signal_request: SignalRequest, run_id: int) -> None:
        # the task runs in its own context copy, so this binding ends with it
        structlog.contextvars.bind_contextvars(signal_target=signal_request.target, user_id=self.user_id)
        try:
            await self._run_cycle(signal_request, run_id)
        except _Superseded:
            logger.debug("signal_run_superseded", target=signal_request.target)
        except Exception as e:
            logger.error("signal_lifecycle_error", error=str(e), type=type(e).__name__)
            if run_id != self._run_id:
                return
            self._fail_to_idle()
            await self.notifier.notify_generation_failed("Something went wrong while running the signal.")

    async def _run_cycle(self, signal_request: SignalRequest, run_id: int) -> None:
        target = signal_request.target

        # --- simulating: ask for the insight ---
        try:
            insight = await _bounded(
                self.insight_generator.generate(signal_request),
                timeout=self.settings.insight_timeout,
            )
        except asyncio.TimeoutError:
            self._check(run_id)
            logger.error("insight_timeout", target=target, timeout=self.settings.insight_timeout)
            self._fail_to_idle()
            await self.notifier.notify_generation_failed("The Shadow Core took too long to answer.")
            return
        except Exception as e:
            self._check(run_id)
            logger.error("insight_failed", target=target, error=str(e), type=type(e).__name__)
            self._fail_to_idle()
            await self.notifier.notify_generation_failed(str(e))
            return
        self._check(run_id)

        self.insight = insight
        self._set_state(SignalState.TRACKING)
        await self.notifier.notify_insight_ready(target, insight.prediction, insight.confidence)
        self._check(run_id)

        # --- tracking: settle, then poll until TP/SL ---
        try:
            outcome = await _bounded(
                self._track(target, insight, run_id),
                timeout=self.settings.tracking_timeout or None,
            )
        except asyncio.TimeoutError:
            self._check(run_id)
            logger.warning("tracking_timeout", target=target, polls=self.polls, timeout=self.settings.tracking_timeout)
            self._fail_to_idle()
            await self.notifier.notify_tracking_timeout(target)
            return
        self._check(run_id)

        # --- settlement: latched, reward, exactly one save ---
        self.outcome = outcome
        self.reward = self.reward_policy(outcome, insight.confidence)
        record = new_signal(
            user_id=self.user_id,
            asset=target,
            prediction=insight.prediction,
            trade_mode=signal_request.trade_mode,
            outcome=outcome,
            reward_bsai=self.reward.bsai,
            reward_xp=self.reward.xp,
            gas_paid=self.reward.gas,
            insight=insight.as_contract(),
        )
        # shielded: a reset during the save must not interrupt the ledger write
        save = asyncio.ensure_future(self._save(record))
        self._saves.add(save)
        save.add_done_callback(self._saves.discard)
        saved = await asyncio.shield(save)
        self._check(run_id)
        self.saved_signal = saved
        self.persisted = saved is not None

        self._set_state(SignalState.RESOLVED)
        logger.info(
            "signal_resolved",
            target=target,
            outcome=outcome,
            reward_bsai=self.reward.bsai,
            reward_xp=self.reward.xp,
            gas_paid=self.reward.gas,
            persisted=self.persisted,
        )
        await self.notifier.notify_signal_resolved(target, outcome, self.reward.bsai, self.reward.xp)

    async def _track(self, target: str, insight: Insight, run_id: int) -> str:
        """Poll until the first TP_HIT/SL_HIT and return it."""
        await asyncio.sleep(self.settings.settling_delay)
        self._check(run_id)
        logger.info(
            "tracking_started",
            target=target,
            prediction=insight.prediction,
            stop_loss=insight.stop_loss,
            take_profit=insight.take_profit,
        )

        while True:
            price = await self._poll_price(target)
            self._check(run_id)
            if price is not None:
                self.polls += 1
                self.last_price = price
                outcome = evaluate_outcome(insight.prediction, price, insight.stop_loss, insight.take_profit)
                if outcome:
                    logger.info("outcome_latched", target=target, outcome=outcome, price=price, polls=self.polls)
                    return outcome
                logger.debug("poll_no_outcome", target=target, price=price)
            await asyncio.sleep(self.settings.price_poll_interval)
            self._check(run_id)

    async def _poll_price(self, target: str) -> float | None:
        """One oracle round trip. Any miss (None, timeout, junk) -> None."""
        try:
            raw = await _bounded(
                self.price_oracle.get_latest_price(target),
                timeout=self.settings.price_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug("oracle_miss", target=target, reason="timeout")
            return None
        except Exception as e:
            logger.warning("oracle_error", target=target, error=str(e))
            return None

        if raw is None:
            logger.debug("oracle_miss", target=target, reason="no_price")
            return None
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.debug("oracle_miss", target=target, reason="not_numeric", raw=raw)
            return None

    async def _save(self, record: dict) -> dict | None:
        """The single save-signal call for this cycle. Failure is reported, not raised."""
        try:
            return await self.db.save_signal(record)
        except Exception as e:
            logger.error(
                "signal_persist_failed",
                asset=record.get("asset"),
                outcome=record.get("outcome"),
                error=str(e),
                note="ledger may now be inconsistent",
            )
            await self.notifier.notify_persistence_failed(str(e))
            return None

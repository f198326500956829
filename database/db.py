"""
Database Manager
================
Every arena operation that reads or writes persisted state lives here.

Storage is a whole-document store (see database/store.py): each operation
loads a full collection, changes it in memory, and writes it back through a
Collection repository. Other modules never touch the store directly: they
call these methods instead.

The most important method is save_signal(): it appends one resolved signal
AND applies the reward ledger to the owning user's counters.
"""

import math
from typing import Any

from database.models import (
    AGENT_STATUSES,
    MAX_TRADE_STAKE,
    MIN_TRADE_STAKE,
    OUTCOMES,
    PREDICTIONS,
    SEED_DATA,
    SHADOW_REWARD,
    TP_HIT,
    TRADE_SIDES,
    new_trade,
    utc_now,
)
from database.repository import Collection
from database.store import DocumentStore, StoreError
from utils.logger import get_logger

logger = get_logger(__name__)

# Airdrop point weights
AIRDROP_POINTS = {
    "wallet_sync": 100,
    "bsai_holder": 150,
    "genesis_invite": 25,
    "per_signal_win": 5,
    "per_xp": 0.1,
    "per_mission": 30,
}


class DatabaseError(Exception):
    """Base class for arena data errors."""


class UserNotFound(DatabaseError):
    pass


class MissionNotFound(DatabaseError):
    pass


class AgentNotFound(DatabaseError):
    pass


class InsufficientBalance(DatabaseError):
    pass


class InvalidValue(DatabaseError):
    pass


class LedgerError(DatabaseError):
    """Saving a signal (or its reward bookkeeping) failed. The ledger may be inconsistent."""


class Database:
    """
    Async data manager for Shadow Arena.

    Usage:
        store = await open_store(settings)
        db = Database(store)
        await db.seed()
        saved = await db.save_signal({...})
    """

    def __init__(self, store: DocumentStore, serialize_writes: bool = True):
        self.store = store
        self.users = Collection(store, "users", serialize=serialize_writes)
        self.signals = Collection(store, "signals", serialize=serialize_writes)
        self.missions = Collection(store, "missions", serialize=serialize_writes)
        self.agents = Collection(store, "agents", serialize=serialize_writes)
        self.trades = Collection(store, "trades", serialize=serialize_writes)

    async def close(self) -> None:
        await self.store.close()

    async def seed(self) -> list[str]:
        """
        Create any collection that has never been written, with its seed data.
        Existing collections are left untouched. Returns the seeded names.
        """
        seeded = []
        for name, factory in SEED_DATA.items():
            if not await self.store.exists(name):
                await getattr(self, name).replace_all(factory())
                seeded.append(name)
                logger.info("seeded_collection", collection=name)
        logger.info("seed_check_complete", seeded=len(seeded))
        return seeded

    # =========================================================================
    # User Operations
    # =========================================================================

    async def get_user(self, user_id: str) -> dict | None:
        return await self.users.find_by_id(user_id)

    async def list_users(self) -> list[dict]:
        return await self.users.list()

    async def get_leaderboard(self, limit: int = 10) -> list[dict]:
        """Top users by XP (public fields only)."""
        users = sorted(await self.users.list(), key=lambda u: u.get("xp", 0), reverse=True)
        return [
            {
                "id": u["id"],
                "name": u.get("name"),
                "avatar_url": u.get("avatar_url"),
                "xp": u.get("xp", 0),
                "bsai_earned": u.get("bsai_earned", 0),
                "signals_generated": u.get("signals_generated", 0),
            }
            for u in users[:limit]
        ]

    async def update_user_wallet(
        self, user_id: str, wallet_address: str | None, wallet_chain: str | None
    ) -> dict:
        """Link (or clear, with None/None) the user's wallet."""

        def _update(users):
            user = _find(users, user_id)
            if user is None:
                raise UserNotFound(f"User {user_id} not found.")
            user["wallet_address"] = wallet_address
            user["wallet_chain"] = wallet_chain
            user["updated_at"] = utc_now()
            return user

        user = await self.users.mutate(_update)
        logger.info("wallet_updated", user_id=user_id, chain=wallet_chain, linked=bool(wallet_address))
        return user

    async def get_user_stats_summary(self, user_id: str) -> str:
        """One-paragraph performance summary, fed to the oracle chat prompt."""
        user = await self.get_user(user_id)
        if not user:
            return f"No stats found for user {user_id}."
        generated = user.get("signals_generated", 0)
        won = user.get("signals_won", 0)
        win_rate = (won / generated * 100) if generated else 0.0
        return (
            f"Pilot {user.get('name', user_id)}: {user.get('xp', 0)} XP, "
            f"{generated} signals generated, {won} won ({win_rate:.1f}% win rate), "
            f"{user.get('bsai_earned', 0)} BSAI earned, "
            f"{user.get('shadow_balance', 0)} SHADOW balance, {user.get('staked_amount', 0)} staked."
        )

    # =========================================================================
    # Signal Operations (save-signal + reward ledger)
    # =========================================================================

    async def get_signals_for_user(self, user_id: str, limit: int = 10) -> list[dict]:
        """Signal history for a user, newest first."""
        signals = [s for s in await self.signals.list() if s.get("user_id") == user_id]
        signals.sort(key=lambda s: (s.get("created_at") or "", s.get("id") or 0), reverse=True)
        return signals[:limit]

    async def save_signal(self, signal_data: dict[str, Any]) -> dict:
        """
        Append one signal and apply its rewards to the owning user.

        1. Assign id = max(existing) + 1 (1 for an empty collection) and created_at.
        2. Append and write the signal collection.
        3. Find the user. Missing user -> warning only; the signal stays recorded.
        4. signals_generated += 1, signals_won += 1 on TP_HIT,
           bsai_earned += reward_bsai, xp += reward_xp, refresh updated_at,
           write the user collection.

        The two writes are not atomic. If the user write fails after the signal
        write succeeded, the signal stays and LedgerError is raised.
        A prediction or outcome outside the enums raises InvalidValue before
        anything is written.
        """
        if signal_data.get("prediction") not in PREDICTIONS:
            raise InvalidValue(f"Unknown prediction: {signal_data.get('prediction')}")
        if signal_data.get("outcome") not in OUTCOMES:
            raise InvalidValue(f"Unknown outcome: {signal_data.get('outcome')}")

        try:
            saved = await self.signals.append({**signal_data, "id": None, "created_at": utc_now()})
        except StoreError as e:
            raise LedgerError(f"Could not save signal: {e}") from e

        logger.info(
            "signal_saved",
            signal_id=saved["id"],
            user_id=saved.get("user_id"),
            asset=saved.get("asset"),
            outcome=saved.get("outcome"),
        )

        def _apply_rewards(users):
            user = _find(users, saved.get("user_id"))
            if user is None:
                return None
            user["signals_generated"] = user.get("signals_generated", 0) + 1
            if saved.get("outcome") == TP_HIT:
                user["signals_won"] = user.get("signals_won", 0) + 1
            user["bsai_earned"] = user.get("bsai_earned", 0) + (saved.get("reward_bsai") or 0)
            user["xp"] = user.get("xp", 0) + (saved.get("reward_xp") or 0)
            user["updated_at"] = utc_now()
            return user

        try:
            user = await self.users.mutate(_apply_rewards)
        except StoreError as e:
            logger.error(
                "ledger_may_be_inconsistent",
                signal_id=saved["id"],
                user_id=saved.get("user_id"),
                error=str(e),
            )
            raise LedgerError(f"Signal {saved['id']} saved but user stats were not updated: {e}") from e

        if user is None:
            logger.warning("signal_user_not_found", signal_id=saved["id"], user_id=saved.get("user_id"))
        else:
            logger.info(
                "user_rewarded",
                user_id=user["id"],
                xp=user["xp"],
                bsai_earned=user["bsai_earned"],
                signals_won=user["signals_won"],
                signals_generated=user["signals_generated"],
            )
        return saved

    # =========================================================================
    # Mission Operations
    # =========================================================================

    async def get_missions(self) -> list[dict]:
        """Mission catalog, cheapest XP first."""
        return sorted(await self.missions.list(), key=lambda m: m.get("xp", 0))

    async def get_completed_mission_ids(self, user_id: str) -> list[str]:
        user = await self.get_user(user_id)
        return list(user.get("completed_missions", [])) if user else []

    async def get_missions_for_user(self, user_id: str) -> list[dict]:
        completed = set(await self.get_completed_mission_ids(user_id))
        return [
            {"mission": m, "is_completed": m["id"] in completed}
            for m in await self.get_missions()
        ]

    async def complete_mission(self, user_id: str, mission_id: str) -> dict:
        """
        Mark a mission complete and pay its XP (and SHADOW reward, if any).
        Completing an already-completed mission changes nothing.
        """
        mission = await self.missions.find_by_id(mission_id)
        if mission is None:
            raise MissionNotFound(f"Mission with ID {mission_id} not found.")

        def _complete(users):
            user = _find(users, user_id)
            if user is None:
                raise UserNotFound(f"User {user_id} not found.")
            completed = user.setdefault("completed_missions", [])
            if mission_id in completed:
                return False
            completed.append(mission_id)
            user["xp"] = user.get("xp", 0) + mission.get("xp", 0)
            reward = mission.get("reward") or {}
            if reward.get("type") == SHADOW_REWARD:
                user["shadow_balance"] = user.get("shadow_balance", 0) + reward.get("amount", 0)
            user["updated_at"] = utc_now()
            return True

        newly_completed = await self.users.mutate(_complete)
        if newly_completed:
            logger.info("mission_completed", user_id=user_id, mission_id=mission_id, xp=mission.get("xp"))
        else:
            logger.info("mission_already_completed", user_id=user_id, mission_id=mission_id)
        return {"mission": mission, "newly_completed": newly_completed}

    # =========================================================================
    # Wallet / Staking Operations
    # =========================================================================

    async def stake(self, user_id: str, amount: float) -> dict:
        """Move SHADOW from the balance into the stake."""
        return await self._transfer(user_id, amount, "shadow_balance", "staked_amount")

    async def unstake(self, user_id: str, amount: float) -> dict:
        """Move SHADOW from the stake back to the balance."""
        return await self._transfer(user_id, amount, "staked_amount", "shadow_balance")

    async def _transfer(self, user_id: str, amount: float, source: str, target: str) -> dict:
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise InvalidValue("Amount must be a positive number.")

        def _move(users):
            user = _find(users, user_id)
            if user is None:
                raise UserNotFound(f"User {user_id} not found.")
            if user.get(source, 0) < amount:
                label = "SHADOW balance to stake" if source == "shadow_balance" else "staked amount to unstake"
                raise InsufficientBalance(f"Insufficient {label}.")
            user[source] = user.get(source, 0) - amount
            user[target] = user.get(target, 0) + amount
            user["updated_at"] = utc_now()
            return user

        user = await self.users.mutate(_move)
        logger.info("shadow_transferred", user_id=user_id, amount=amount, source=source, target=target)
        return user

    async def get_wallet_stats(self, user_id: str) -> dict:
        user = await self.get_user(user_id)
        if not user:
            raise UserNotFound("User not found to fetch wallet stats.")
        apr = 5.5 + user.get("xp", 0) / 1000
        mining_power = 10 + user.get("staked_amount", 0) / 100
        return {
            "user_id": user_id,
            "shadow_balance": user.get("shadow_balance", 0),
            "staked_amount": user.get("staked_amount", 0),
            "mining_power": round(mining_power, 2),
            "apr": round(apr, 2),
        }

    async def get_airdrop_stats(self, user_id: str) -> dict:
        """
        Airdrop eligibility and point breakdown for a user. total_points adds
        the flat bonuses (wallet sync, BSAI holder, genesis invite) to the
        earned points.
        """
        user = await self.get_user(user_id)
        if not user:
            stats = {
                "wallet": {"synced": False, "address": None, "chain": None},
                "bsai_holder": False,
                "genesis_invite": True,
                "signal_points": 0,
                "agent_points": 0,
                "mission_points": 0,
            }
            return {**stats, "total_points": _airdrop_total(stats)}

        synced = bool(user.get("wallet_address")) and bool(user.get("wallet_chain"))
        signals = [s for s in await self.signals.list() if s.get("user_id") == user_id]
        wins = sum(1 for s in signals if s.get("outcome") == TP_HIT)

        stats = {
            "wallet": {
                "synced": synced,
                "address": user.get("wallet_address"),
                "chain": user.get("wallet_chain"),
            },
            "bsai_holder": synced,
            "genesis_invite": True,
            "signal_points": wins * AIRDROP_POINTS["per_signal_win"],
            "agent_points": math.floor(user.get("xp", 0) * AIRDROP_POINTS["per_xp"]),
            "mission_points": len(user.get("completed_missions", [])) * AIRDROP_POINTS["per_mission"],
        }
        return {**stats, "total_points": _airdrop_total(stats)}

    # =========================================================================
    # Trade Terminal Operations
    # =========================================================================

    async def get_trades(self, user_id: str, limit: int = 20) -> list[dict]:
        """Trade history for a user, newest first."""
        trades = [t for t in await self.trades.list() if t.get("user_id") == user_id]
        trades.sort(key=lambda t: (t.get("created_at") or "", t.get("id") or 0), reverse=True)
        return trades[:limit]

    async def place_trade(
        self,
        user_id: str,
        asset: str,
        side: str,
        stake: float,
        entry_price: float,
        take_profit: float,
        stop_loss: float,
    ) -> dict:
        """
        Debit `stake` from the user's SHADOW balance and record an OPEN trade.

        Same two-write shape as save_signal: the balance is debited first,
        then the trade is appended with id = max(existing) + 1. If the trade
        write fails after the debit, LedgerError is raised.
        """
        if side not in TRADE_SIDES:
            raise InvalidValue(f"Unknown trade side: {side}")
        if stake is None or not math.isfinite(stake) or not MIN_TRADE_STAKE <= stake <= MAX_TRADE_STAKE:
            raise InvalidValue(f"Stake must be between {MIN_TRADE_STAKE} and {MAX_TRADE_STAKE:,} SHADOW.")
        for label, level in (("Take profit", take_profit), ("Stop loss", stop_loss)):
            if level is None or not math.isfinite(level) or level <= 0:
                raise InvalidValue(f"{label} must be a positive number.")

        def _debit(users):
            user = _find(users, user_id)
            if user is None:
                raise UserNotFound(f"User {user_id} not found.")
            if user.get("shadow_balance", 0) < stake:
                raise InsufficientBalance("Insufficient SHADOW balance.")
            user["shadow_balance"] = user.get("shadow_balance", 0) - stake
            user["updated_at"] = utc_now()
            return user

        await self.users.mutate(_debit)

        record = new_trade(user_id, asset, side, stake, entry_price, take_profit, stop_loss)
        try:
            trade = await self.trades.append({**record, "id": None, "created_at": utc_now()})
        except StoreError as e:
            logger.error("ledger_may_be_inconsistent", user_id=user_id, asset=asset, stake=stake, error=str(e))
            raise LedgerError(f"Stake of {stake} debited but the trade was not recorded: {e}") from e

        logger.info("trade_placed", trade_id=trade["id"], user_id=user_id, asset=asset, side=side, stake=stake)
        return trade

    # =========================================================================
    # Agent Operations
    # =========================================================================

    async def get_agents(self) -> list[dict]:
        return await self.agents.list()

    async def save_agent(self, agent: dict) -> dict:
        if agent.get("status") not in AGENT_STATUSES:
            raise InvalidValue(f"Unknown agent status: {agent.get('status')}")
        saved = await self.agents.upsert(agent)
        logger.info("agent_saved", agent_id=agent.get("id"))
        return saved

    async def update_agent_status(self, agent_id: str, status: str) -> dict:
        if status not in AGENT_STATUSES:
            raise InvalidValue(f"Unknown agent status: {status}")

        def _update(agents):
            agent = _find(agents, agent_id)
            if agent is None:
                raise AgentNotFound(f"Agent {agent_id} not found.")
            agent["status"] = status
            return agent

        agent = await self.agents.mutate(_update)
        logger.info("agent_status_updated", agent_id=agent_id, status=status)
        return agent


def _find(records: list[dict], record_id: Any) -> dict | None:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def _airdrop_total(stats: dict) -> int:
    total = stats["signal_points"] + stats["agent_points"] + stats["mission_points"]
    if stats["wallet"]["synced"]:
        total += AIRDROP_POINTS["wallet_sync"]
    if stats["bsai_holder"]:
        total += AIRDROP_POINTS["bsai_holder"]
    if stats["genesis_invite"]:
        total += AIRDROP_POINTS["genesis_invite"]
    return total

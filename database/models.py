"""
Data Model
==========
Shapes of the records kept in the document store, plus the seed catalogs.

Think of this as the arena's filing system:
- users:    one aggregate record per player (xp, counters, balances, wallet)
- signals:  append-only history of resolved trade attempts
- missions: catalog of missions (completion is tracked on the user)
- agents:   catalog of premade and custom trading agents + their status
- trades:   manual Trade Terminal orders, staked from the SHADOW balance

Records are plain dicts so they round-trip through JSON untouched.
Persisted keys are snake_case.
"""

from datetime import datetime, timezone
from typing import Any

# Prediction / outcome enums (stored as plain strings)
PREDICTIONS = ("BUY", "SELL", "HOLD")

TP_HIT = "TP_HIT"
SL_HIT = "SL_HIT"
PENDING = "PENDING"
OUTCOMES = (TP_HIT, SL_HIT, PENDING)

AGENT_STATUSES = ("Active", "Inactive", "Training")

# Trade Terminal
TRADE_SIDES = ("LONG", "SHORT")
TRADE_OPEN = "OPEN"
MIN_TRADE_STAKE = 10
MAX_TRADE_STAKE = 10_000

# Mission reward types that credit the SHADOW balance directly
SHADOW_REWARD = "SHADOW"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_user(user_id: str, name: str = "", **overrides: Any) -> dict[str, Any]:
    """A fresh player record with every counter at zero."""
    now = utc_now()
    user = {
        "id": user_id,
        "name": name or user_id,
        "avatar_url": "https://placehold.co/100x100.png",
        "xp": 0,
        "signals_generated": 0,
        "signals_won": 0,
        "bsai_earned": 0,
        "shadow_balance": 0,
        "staked_amount": 0,
        "wallet_address": None,
        "wallet_chain": None,
        "completed_missions": [],
        "created_at": now,
        "updated_at": now,
    }
    user.update(overrides)
    return user


def new_signal(
    user_id: str,
    asset: str,
    prediction: str,
    trade_mode: str,
    outcome: str,
    reward_bsai: float,
    reward_xp: float,
    gas_paid: float,
    insight: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    A signal record without id/created_at (assigned by save_signal).
    `insight` carries the snapshot fields copied from the Insight verbatim.
    """
    insight = insight or {}
    return {
        "user_id": user_id,
        "asset": asset,
        "prediction": prediction,
        "trade_mode": trade_mode,
        "outcome": outcome,
        "reward_bsai": reward_bsai,
        "reward_xp": reward_xp,
        "gas_paid": gas_paid,
        "entry_range": insight.get("entryRange"),
        "stop_loss": insight.get("stopLoss"),
        "take_profit": insight.get("takeProfit"),
        "confidence": insight.get("confidence"),
        "shadow_score": insight.get("shadowScore"),
    }


def new_trade(
    user_id: str,
    asset: str,
    side: str,
    stake: float,
    entry_price: float,
    take_profit: float,
    stop_loss: float,
) -> dict[str, Any]:
    """An OPEN trade without id/created_at (assigned by place_trade)."""
    return {
        "user_id": user_id,
        "asset": asset,
        "side": side,
        "stake": stake,
        "entry_price": entry_price,
        "take_profit": take_profit,
        "stop_loss": stop_loss,
        "status": TRADE_OPEN,
        "pnl": 0,
    }


# =============================================
# Seed data: written once when a collection doesn't exist yet
# =============================================

def initial_users() -> list[dict[str, Any]]:
    return [
        new_user(
            "default_user", "Neon Pilot", xp=1250, shadow_balance=5000, staked_amount=1500,
            completed_missions=["trade_5"], wallet_address="0x123...abc", wallet_chain="ethereum",
        ),
        new_user("bot_1", "Cypher Runner", xp=8420, shadow_balance=1000),
        new_user("bot_2", "Grid Ghost", xp=5100, shadow_balance=1000),
        new_user("bot_3", "Oracle Lord", xp=9500, shadow_balance=1000),
    ]


def initial_missions() -> list[dict[str, Any]]:
    return [
        {"id": "trade_5", "title": "Arena Warmup",
         "description": "Complete 5 trades in the Trade Arena today.",
         "xp": 100, "reward": {"type": SHADOW_REWARD, "amount": 20}},
        {"id": "signal_3", "title": "Oracle Challenger",
         "description": "Generate 3 correct AI signals in the Signal Console.",
         "xp": 125, "reward": {"type": SHADOW_REWARD, "amount": 50}},
        {"id": "stake_1000", "title": "Vault Commitment",
         "description": "Stake 1,000 SHADOW in the Wallet Vault.",
         "xp": 200, "reward": {"type": "NFT_SKIN", "amount": 1}},
        {"id": "invite_3", "title": "Recruit for the Arena",
         "description": "Invite 3 friends to join the Shadow Arena.",
         "xp": 150, "reward": {"type": SHADOW_REWARD, "amount": 100}},
    ]


def initial_agents() -> list[dict[str, Any]]:
    return [
        {
            "id": "agent_momentum",
            "name": "Momentum Wraith",
            "description": "Rides breakouts on majors with tight stops.",
            "status": "Active",
            "is_custom": False,
            "parameters": {"symbol": "BTCUSDT", "trade_mode": "Intraday", "risk": "Medium",
                           "indicators": ["EMA", "RSI"]},
            "performance": {"signals": 0, "win_rate": 0},
            "user_id": None,
        },
        {
            "id": "agent_reversion",
            "name": "Mean Reversion Specter",
            "description": "Fades stretched moves back toward the mean.",
            "status": "Inactive",
            "is_custom": False,
            "parameters": {"symbol": "ETHUSDT", "trade_mode": "Swing Trading", "risk": "Low",
                           "indicators": ["Bollinger Bands", "RSI"]},
            "performance": {"signals": 0, "win_rate": 0},
            "user_id": None,
        },
        {
            "id": "agent_scalper",
            "name": "Neon Scalper",
            "description": "High-frequency scalps on volatile pairs.",
            "status": "Training",
            "is_custom": False,
            "parameters": {"symbol": "SOLUSDT", "trade_mode": "Scalping", "risk": "High",
                           "indicators": ["VWAP", "MACD"]},
            "performance": {"signals": 0, "win_rate": 0},
            "user_id": None,
        },
    ]


SEED_DATA = {
    "users": initial_users,
    "missions": initial_missions,
    "agents": initial_agents,
    "signals": list,
    "trades": list,
}

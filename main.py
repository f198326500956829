"""
Shadow Arena - Main Entry Point
===============================
This is where everything starts. Running this file:
1. Loads your configuration from .env
2. Validates the settings and reports anything missing
3. Opens the document store (JSON files or SQLite)
4. Runs whichever mode you asked for

Usage:
    python main.py --seed                              # Create the initial collections
    python main.py --signal BTCUSDT                    # Run one signal to resolution in the terminal
    python main.py --signal ETHUSDT --trade-mode "Swing Trading" --risk High
    python main.py --dashboard                         # Launch the dashboard API
    python main.py --store sqlite --seed               # Use the SQLite backend
"""

import asyncio
import argparse
import json
import sys

from config.settings import RISK_LEVELS, TRADE_MODES, settings
from dashboard.context import build_context
from database.db import Database
from database.store import open_store
from trader.lifecycle import SignalState
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


def startup_checks() -> bool:
    """
    Log configuration problems. Only an unusable store blocks startup;
    a missing LLM key just means signals will fail with a toast.
    """
    logger.info("running_startup_checks")
    problems = settings.validate()
    for problem in problems:
        logger.warning("config_issue", issue=problem)
    return settings.store_backend in ("json", "sqlite")


async def run_seed() -> None:
    store = await open_store(settings)
    db = Database(store, serialize_writes=settings.serialize_writes)
    try:
        seeded = await db.seed()
        logger.info("seed_finished", seeded=seeded, backend=settings.store_backend)
    finally:
        await db.close()


async def run_signal(target: str, trade_mode: str, risk: str) -> int:
    """Drive one signal from request to resolution and print the result."""
    ctx = await build_context(settings)
    try:
        accepted = await ctx.controller.request(target, trade_mode, risk)
        if not accepted:
            logger.error("signal_not_started", target=target)
            return 1

        final = await ctx.controller.wait_for_state(SignalState.RESOLVED, SignalState.IDLE)
        print(json.dumps(ctx.controller.snapshot(), indent=2))
        for toast in ctx.notifier.drain():
            print(f"[{toast['variant']}] {toast['title']}: {toast['description']}")

        ctx.controller.acknowledge()
        return 0 if final == SignalState.RESOLVED else 1
    finally:
        await ctx.close()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Shadow Arena signal console")
    parser.add_argument("--seed", action="store_true", help="Create missing collections with starter data")
    parser.add_argument("--signal", metavar="SYMBOL", help="Request one signal and track it to TP/SL")
    parser.add_argument("--trade-mode", default="Intraday", choices=TRADE_MODES, help="Trade mode for --signal")
    parser.add_argument("--risk", default="Medium", choices=RISK_LEVELS, help="Risk level for --signal")
    parser.add_argument("--dashboard", action="store_true", help="Launch the dashboard API")
    parser.add_argument("--store", choices=["json", "sqlite"], help="Override the storage backend")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    """Main async entry point for the terminal modes."""
    try:
        if args.seed:
            await run_seed()
        if args.signal:
            return await run_signal(args.signal, args.trade_mode, args.risk)
    except KeyboardInterrupt:
        logger.info("arena_stopping", reason="keyboard_interrupt")
    except Exception as e:
        logger.error("arena_error", error=str(e), type=type(e).__name__)
        raise
    return 0


if __name__ == "__main__":
    args = parse_args()
    if args.store:
        settings.store_backend = args.store

    setup_logging(log_level=settings.log_level, log_dir="logs", json_logs=settings.log_json)

    if not startup_checks():
        logger.error("startup_checks_failed", note="Fix the issues above and restart")
        sys.exit(1)

    # Dashboard mode: uvicorn owns the event loop
    if args.dashboard:
        from dashboard.app import run_dashboard
        logger.info("launching_dashboard")
        run_dashboard(settings)
        sys.exit(0)

    if not (args.seed or args.signal):
        logger.info("nothing_to_do", note="Pass --seed, --signal SYMBOL or --dashboard")
        sys.exit(0)

    # asyncio.run() starts the event loop and runs the chosen mode
    sys.exit(asyncio.run(main(args)))

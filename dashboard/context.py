"""
Arena Context
=============
Builds every collaborator for one host context (the dashboard process or a
CLI run) from a Settings object, and tears them down in the right order.

Closing the context cancels the lifecycle controller first, so no pending
settling delay or poll can fire after the store is gone.
"""

from dataclasses import dataclass

from agent.insights import LLMInsightGenerator
from agent.llm_client import LLMClient
from agent.oracle_chat import OracleChat
from config.settings import Settings
from database.db import Database
from database.store import open_store
from market.price_oracle import BinancePriceOracle
from notifications.notifier import Notifier
from trader.lifecycle import SignalLifecycleController
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ArenaContext:
    settings: Settings
    db: Database
    price_oracle: BinancePriceOracle
    llm: LLMClient | None
    notifier: Notifier
    controller: SignalLifecycleController
    oracle_chat: OracleChat | None

    async def close(self) -> None:
        await self.controller.close()
        if self.llm:
            await self.llm.close()
        await self.price_oracle.close()
        await self.db.close()
        logger.info("arena_context_closed")


async def build_context(settings: Settings, seed: bool = True) -> ArenaContext:
    """Open the store, clients and controller described by `settings`."""
    store = await open_store(settings)
    db = Database(store, serialize_writes=settings.serialize_writes)
    if seed:
        await db.seed()

    price_oracle = BinancePriceOracle(settings)
    await price_oracle.initialize()

    llm = LLMClient(settings)
    await llm.initialize()

    notifier = Notifier(settings)
    await notifier.initialize()

    controller = SignalLifecycleController(
        settings=settings,
        db=db,
        insight_generator=LLMInsightGenerator(llm, price_oracle),
        price_oracle=price_oracle,
        notifier=notifier,
    )
    oracle_chat = OracleChat(llm, db, user_id=settings.current_user_id)

    logger.info(
        "arena_context_ready",
        store=settings.store_backend,
        user_id=settings.current_user_id,
        telegram=notifier.telegram_enabled,
    )
    return ArenaContext(
        settings=settings,
        db=db,
        price_oracle=price_oracle,
        llm=llm,
        notifier=notifier,
        controller=controller,
        oracle_chat=oracle_chat,
    )

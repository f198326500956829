"""
Web Dashboard API
=================
JSON API behind the Shadow Arena dashboard.

Serves:
- Signal console: request a signal, poll its lifecycle state, acknowledge
- Profile, leaderboard and signal history
- Missions (list + complete), wallet vault (stake/unstake/link), airdrop points
- Trade terminal: place a staked LONG/SHORT order, list trade history
- Agents catalog + status toggles
- Live price, toast notifications, oracle chat

Run with:
    python main.py --dashboard

Then open http://localhost:8050/api/health in your browser.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agent.insights import SignalRequest
from agent.oracle_chat import FALLBACK_REPLY, ChatMessage
from config.settings import REQUEST_OPTIONS, Settings
from dashboard.context import ArenaContext, build_context
from database.db import (
    AgentNotFound,
    DatabaseError,
    InsufficientBalance,
    InvalidValue,
    MissionNotFound,
    UserNotFound,
)
from utils.logger import get_logger

logger = get_logger(__name__)


# =========================================================================
# Request bodies
# =========================================================================

class AmountBody(BaseModel):
    amount: float = Field(gt=0)


class WalletBody(BaseModel):
    wallet_address: str | None = None
    wallet_chain: str | None = None


class AgentStatusBody(BaseModel):
    status: str


class TradeBody(BaseModel):
    asset: str = Field(min_length=1, max_length=20)
    side: str
    stake: float
    take_profit: float
    stop_loss: float
    entry_price: float | None = None


class ChatBody(BaseModel):
    history: list[ChatMessage] = []
    message: str = Field(min_length=1, max_length=2000)


_ERROR_STATUS = {
    UserNotFound: 404,
    MissionNotFound: 404,
    AgentNotFound: 404,
    InsufficientBalance: 400,
    InvalidValue: 400,
}


def create_app(settings: Settings, context: ArenaContext | None = None) -> FastAPI:
    """
    Build the dashboard app. Pass `context` to reuse already-built
    collaborators (tests); otherwise they are built on startup from settings
    and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        app.state.arena = context or await build_context(settings)
        logger.info("dashboard_started", user_id=settings.current_user_id)
        try:
            yield
        finally:
            if owned:
                await app.state.arena.close()
            else:
                await app.state.arena.controller.close()
            logger.info("dashboard_stopped")

    app = FastAPI(title="Shadow Arena", docs_url=None, redoc_url=None, lifespan=lifespan)

    def arena(request: Request) -> ArenaContext:
        return request.app.state.arena

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError):
        status = _ERROR_STATUS.get(type(exc), 500)
        if status == 500:
            logger.error("api_database_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # =========================================================================
    # Signal console
    # =========================================================================

    @app.get("/api/health")
    async def api_health(request: Request):
        return {"status": "ok", "signal_state": arena(request).controller.state.value}

    @app.get("/api/signal/options")
    async def api_signal_options():
        return REQUEST_OPTIONS

    @app.get("/api/signal")
    async def api_signal_state(request: Request):
        return arena(request).controller.snapshot()

    @app.post("/api/signal", status_code=202)
    async def api_request_signal(body: SignalRequest, request: Request):
        controller = arena(request).controller
        accepted = await controller.request(body.target, body.trade_mode, body.risk)
        if not accepted:
            return JSONResponse(
                status_code=409,
                content={"detail": "A signal is already in progress.", **controller.snapshot()},
            )
        return controller.snapshot()

    @app.post("/api/signal/acknowledge")
    async def api_acknowledge_signal(request: Request):
        controller = arena(request).controller
        controller.acknowledge()
        return controller.snapshot()

    @app.get("/api/signals")
    async def api_signal_history(request: Request):
        ctx = arena(request)
        return await ctx.db.get_signals_for_user(ctx.settings.current_user_id, ctx.settings.signal_history_limit)

    @app.get("/api/price/{symbol}")
    async def api_live_price(symbol: str, request: Request):
        price = await arena(request).price_oracle.get_latest_price(symbol)
        return {"symbol": symbol.upper(), "price": price}

    @app.get("/api/notifications")
    async def api_notifications(request: Request):
        return arena(request).notifier.drain()

    # =========================================================================
    # Profile / leaderboard
    # =========================================================================

    @app.get("/api/profile")
    async def api_profile(request: Request):
        ctx = arena(request)
        user = await ctx.db.get_user(ctx.settings.current_user_id)
        if not user:
            raise UserNotFound(f"User {ctx.settings.current_user_id} not found.")
        return user

    @app.get("/api/leaderboard")
    async def api_leaderboard(request: Request):
        return await arena(request).db.get_leaderboard()

    @app.post("/api/oracle/chat")
    async def api_oracle_chat(body: ChatBody, request: Request):
        chat = arena(request).oracle_chat
        if chat is None:
            return {"reply": FALLBACK_REPLY}
        return {"reply": await chat.ask(body.history, body.message)}

    # =========================================================================
    # Missions
    # =========================================================================

    @app.get("/api/missions")
    async def api_missions(request: Request):
        ctx = arena(request)
        return await ctx.db.get_missions_for_user(ctx.settings.current_user_id)

    @app.post("/api/missions/{mission_id}/complete")
    async def api_complete_mission(mission_id: str, request: Request):
        ctx = arena(request)
        return await ctx.db.complete_mission(ctx.settings.current_user_id, mission_id)

    # =========================================================================
    # Wallet vault / airdrop
    # =========================================================================

    @app.get("/api/wallet")
    async def api_wallet_stats(request: Request):
        ctx = arena(request)
        return await ctx.db.get_wallet_stats(ctx.settings.current_user_id)

    @app.post("/api/wallet/stake")
    async def api_stake(body: AmountBody, request: Request):
        ctx = arena(request)
        await ctx.db.stake(ctx.settings.current_user_id, body.amount)
        return await ctx.db.get_wallet_stats(ctx.settings.current_user_id)

    @app.post("/api/wallet/unstake")
    async def api_unstake(body: AmountBody, request: Request):
        ctx = arena(request)
        await ctx.db.unstake(ctx.settings.current_user_id, body.amount)
        return await ctx.db.get_wallet_stats(ctx.settings.current_user_id)

    @app.post("/api/wallet/link")
    async def api_link_wallet(body: WalletBody, request: Request):
        ctx = arena(request)
        return await ctx.db.update_user_wallet(ctx.settings.current_user_id, body.wallet_address, body.wallet_chain)

    @app.get("/api/airdrop")
    async def api_airdrop(request: Request):
        ctx = arena(request)
        return await ctx.db.get_airdrop_stats(ctx.settings.current_user_id)

    # =========================================================================
    # Trade terminal
    # =========================================================================

    @app.get("/api/trades")
    async def api_trades(request: Request):
        ctx = arena(request)
        return await ctx.db.get_trades(ctx.settings.current_user_id)

    @app.post("/api/trades", status_code=201)
    async def api_place_trade(body: TradeBody, request: Request):
        ctx = arena(request)
        asset = body.asset.strip().upper()
        entry_price = body.entry_price
        if entry_price is None:
            # entry at the live price; 0 when the oracle has none
            live = await ctx.price_oracle.get_latest_price(asset)
            entry_price = float(live) if live is not None else 0.0
        return await ctx.db.place_trade(
            ctx.settings.current_user_id,
            asset,
            body.side.upper(),
            body.stake,
            entry_price,
            body.take_profit,
            body.stop_loss,
        )

    # =========================================================================
    # Agents
    # =========================================================================

    @app.get("/api/agents")
    async def api_agents(request: Request):
        return await arena(request).db.get_agents()

    @app.post("/api/agents/{agent_id}/status")
    async def api_agent_status(agent_id: str, body: AgentStatusBody, request: Request):
        return await arena(request).db.update_agent_status(agent_id, body.status)

    return app


def run_dashboard(settings: Settings):
    """Start the dashboard server."""
    import uvicorn
    logger.info("dashboard_starting", url=f"http://localhost:{settings.dashboard_port}")
    uvicorn.run(create_app(settings), host=settings.dashboard_host, port=settings.dashboard_port, log_level="warning")

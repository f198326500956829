"""
Insight Generator
=================
Turns a signal request {target, trade_mode, risk} into a structured
trading Insight:

    {prediction, confidence, entryRange, stopLoss, takeProfit, shadowScore, thought}

The price levels are free-text strings ("$26,200") and are kept verbatim;
the lifecycle controller parses them itself when deciding TP/SL.

Everything that crosses this boundary is validated with pydantic: the
request coming from the UI and the JSON coming back from the model.
Any failure is raised as InsightGenerationError.
"""

from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agent.llm_client import LLMClient, LLMError
from config.settings import RISK_LEVELS, TRADE_MODES
from utils.logger import get_logger

logger = get_logger(__name__)

# Models sometimes answer in long/short vocabulary
_PREDICTION_ALIASES = {"LONG": "BUY", "SHORT": "SELL"}


class InsightGenerationError(Exception):
    """The insight could not be produced. Safe to retry."""


class SignalRequest(BaseModel):
    """What the user submits from the signal console."""

    target: str = Field(min_length=1, max_length=20)
    trade_mode: str = "Intraday"
    risk: str = "Medium"

    @field_validator("target")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v.isalnum():
            raise ValueError("target must be a symbol like BTCUSDT")
        return v

    @field_validator("trade_mode")
    @classmethod
    def _known_mode(cls, v: str) -> str:
        if v not in TRADE_MODES:
            raise ValueError(f"trade_mode must be one of {TRADE_MODES}")
        return v

    @field_validator("risk")
    @classmethod
    def _known_risk(cls, v: str) -> str:
        if v not in RISK_LEVELS:
            raise ValueError(f"risk must be one of {RISK_LEVELS}")
        return v


class Insight(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prediction: Literal["BUY", "SELL", "HOLD"]
    confidence: float = Field(ge=0, le=100)
    entry_range: str = Field(alias="entryRange")
    stop_loss: str = Field(alias="stopLoss")
    take_profit: str = Field(alias="takeProfit")
    shadow_score: float = Field(alias="shadowScore", ge=0, le=100)
    thought: str = ""

    @field_validator("prediction", mode="before")
    @classmethod
    def _normalize_prediction(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return _PREDICTION_ALIASES.get(v, v)
        return v

    @field_validator("entry_range", "stop_loss", "take_profit", mode="before")
    @classmethod
    def _levels_as_text(cls, v):
        # numbers are accepted but stored as text, like the model's usual "$26,200"
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def as_contract(self) -> dict:
        """The camelCase dict shape shared with the UI and the signal snapshot."""
        return self.model_dump(by_alias=True)


class InsightGenerator(Protocol):
    async def generate(self, request: SignalRequest) -> Insight: ...


SYSTEM_PROMPT = """You are the Shadow Core, an AI market analyst inside a gamified trading arena.
Given a market, a trade mode and a risk tier, produce ONE trading signal as a JSON object with exactly these keys:
  "prediction": "BUY" | "SELL" | "HOLD"
  "confidence": number 0-100
  "entryRange": string price range, e.g. "$25,200 - $25,500"
  "stopLoss": string price, e.g. "$24,800"
  "takeProfit": string price, e.g. "$26,200"
  "shadowScore": number 0-100 (overall setup quality)
  "thought": one punchy sentence explaining the call
For BUY the take profit is above and the stop loss below the entry; for SELL the reverse.
Prices must be realistic for the market data provided. Respond with JSON only."""


class LLMInsightGenerator:
    """
    Usage:
        generator = LLMInsightGenerator(llm, price_oracle)
        insight = await generator.generate(SignalRequest(target="BTCUSDT"))
    """

    def __init__(self, llm: LLMClient, price_oracle=None):
        self.llm = llm
        self.price_oracle = price_oracle

    async def _market_context(self, request: SignalRequest) -> str:
        if self.price_oracle is None:
            return "No market data available."
        try:
            latest = await self.price_oracle.get_latest_price(request.target)
            summary = await self.price_oracle.get_price_summary(request.target)
        except Exception as e:
            logger.warning("market_context_failed", target=request.target, error=str(e), type=type(e).__name__)
            return "No market data available."
        current = f"Current price for {request.target} is {latest}." if latest else "Current price unavailable."
        return f"{current} {summary}"

    async def generate(self, request: SignalRequest) -> Insight:
        market_data = await self._market_context(request)
        user_prompt = (
            f"Target market: {request.target}\n"
            f"Trade mode: {request.trade_mode}\n"
            f"Risk tier: {request.risk}\n"
            f"Market data: {market_data}"
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        try:
            raw = await self.llm.chat_json(messages)
        except LLMError as e:
            logger.error("insight_generation_failed", target=request.target, error=str(e))
            raise InsightGenerationError(str(e)) from e

        try:
            insight = Insight.model_validate(raw)
        except ValidationError as e:
            logger.error("insight_invalid", target=request.target, errors=e.error_count())
            raise InsightGenerationError("The Shadow Core returned a malformed insight.") from e

        logger.info(
            "insight_generated",
            target=request.target,
            prediction=insight.prediction,
            confidence=insight.confidence,
        )
        return insight


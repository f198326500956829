"""
Binance Price Oracle
====================
Latest traded price for a symbol, straight from Binance's public API.

Two calls:
- get_latest_price("BTCUSDT") -> "26300.12000000" or None
- get_price_summary("BTCUSDT") -> one-line kline summary for LLM prompts

The oracle NEVER raises to its caller: any failure (HTTP error, timeout,
bad payload) is logged and returned as None. The lifecycle controller
treats None as "skip this poll".

API docs: https://binance-docs.github.io/apidocs/spot/en/#market-data-endpoints
"""

from datetime import datetime, timezone

import aiohttp

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)


class BinancePriceOracle:
    """
    Usage:
        oracle = BinancePriceOracle(settings)
        await oracle.initialize()
        price = await oracle.get_latest_price("BTCUSDT")
        await oracle.close()
    """

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.base_url = settings.binance_base_url.rstrip("/")
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.price_timeout)
            )
        logger.info("price_oracle_initialized", base_url=self.base_url)

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()

    def _headers(self) -> dict:
        if self.settings.binance_api_key:
            return {"X-MBX-APIKEY": self.settings.binance_api_key}
        return {}

    async def get_latest_price(self, symbol: str) -> str | None:
        """Latest traded price as Binance's numeric string, or None on any failure."""
        url = f"{self.base_url}/ticker/price"
        params = {"symbol": symbol.upper()}
        try:
            async with self.session.get(url, params=params, headers=self._headers()) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.warning("price_fetch_failed", symbol=symbol, status=response.status, error=error_text[:200])
                    return None
                data = await response.json()
        except Exception as e:
            logger.warning("price_fetch_exception", symbol=symbol, error=str(e), type=type(e).__name__)
            return None

        price = data.get("price") if isinstance(data, dict) else None
        if not price:
            logger.warning("price_missing_in_response", symbol=symbol)
            return None
        try:
            float(price)
        except (TypeError, ValueError):
            logger.warning("price_not_numeric", symbol=symbol, price=price)
            return None
        return str(price)

    async def get_price_summary(self, symbol: str, interval: str = "1h", limit: int = 5) -> str:
        """
        Summarize the latest kline (candlestick) for the insight prompt.
        Always returns a string: an explanatory one when data is unavailable.
        """
        symbol = symbol.upper()
        if not self.settings.binance_api_key:
            return "Binance API key not configured. Price data unavailable."

        url = f"{self.base_url}/klines"
        params = {"symbol": symbol, "interval": interval, "limit": str(limit)}
        try:
            async with self.session.get(url, params=params, headers=self._headers()) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error("klines_fetch_failed", symbol=symbol, status=response.status, error=error_text[:200])
                    return f"Error fetching price data from Binance for {symbol}: HTTP {response.status}."
                klines = await response.json()
        except Exception as e:
            logger.error("klines_fetch_exception", symbol=symbol, error=str(e))
            return f"Exception while fetching price data for {symbol}. Check server logs."

        if isinstance(klines, list) and not klines:
            return f"No price data found for {symbol} on Binance."

        # [openTime, open, high, low, close, volume, closeTime, ...]
        k = klines[-1] if isinstance(klines, list) else None
        if not isinstance(k, list) or len(k) < 7:
            logger.error("klines_unexpected_payload", symbol=symbol, payload=str(klines)[:200])
            return f"Unexpected price data from Binance for {symbol}."
        try:
            opened = datetime.fromtimestamp(k[0] / 1000, tz=timezone.utc).isoformat()
            closed = datetime.fromtimestamp(k[6] / 1000, tz=timezone.utc).isoformat()
        except (TypeError, ValueError, OverflowError, OSError) as e:
            logger.error("klines_bad_timestamps", symbol=symbol, error=str(e))
            return f"Unexpected price data from Binance for {symbol}."
        return (
            f"Latest price data for {symbol} ({interval}): Close {k[4]}, Volume {k[5]}. "
            f"Open: {k[1]}, High: {k[2]}, Low: {k[3]}. Period: {opened} to {closed}."
        )

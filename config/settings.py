"""
Configuration Manager
=====================
Single source of truth for ALL Shadow Arena settings.
Loads secrets (LLM key, Telegram token) from a .env file and defines
defaults for every tunable parameter.

How it works:
- On startup, it reads your .env file
- Each setting has a sensible default so the arena runs locally out of the box
- You can override anything by changing the .env file or setting environment variables
- The Settings object is created once and passed to every component that needs it
  (document store, lifecycle controller, dashboard). Tests build their own
  Settings pointing at a temp directory instead of touching real data files.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from .env file in the project root
load_dotenv(Path(__file__).parent.parent / ".env")


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as a boolean ("1", "true", "yes" are truthy)."""
    val = os.getenv(key)
    if not val:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


# Catalogs shared by the request form and validation
TRADE_MODES = ["Scalping", "Intraday", "Swing Trading", "Position Trading", "Options", "Futures"]
RISK_LEVELS = ["Low", "Medium", "High"]
REQUEST_OPTIONS = {"trade_modes": TRADE_MODES, "risk_levels": RISK_LEVELS}


@dataclass
class Settings:
    """
    All arena configuration in one place.

    Sections:
    - Storage: where the JSON collections live and which backend stores them
    - Signal Lifecycle: settling delay, poll period, timeouts
    - External Services: Binance price feed, LLM endpoint, Telegram
    - System: logging, dashboard host/port
    """

    # =========================================================================
    # Storage
    # =========================================================================

    # Directory holding users.json, agents.json, missions.json, signals.json
    data_dir: str = field(
        default_factory=lambda: _get_env("DATA_DIR", str(Path(__file__).parent.parent / "data"))
    )

    # "json" = one file per collection (default)
    # "sqlite" = every collection stored as one document row in a SQLite file
    store_backend: str = field(default_factory=lambda: _get_env("STORE_BACKEND", "json"))

    # Only used by the sqlite backend. Empty means <data_dir>/arena.db
    sqlite_path: str = field(default_factory=lambda: _get_env("SQLITE_PATH"))

    # Serialize read-modify-write per collection inside this process.
    # Does NOT protect against a second process writing the same files.
    serialize_writes: bool = field(default_factory=lambda: _get_env_bool("SERIALIZE_WRITES", True))

    # The player this process acts for (there is no authentication)
    current_user_id: str = field(default_factory=lambda: _get_env("CURRENT_USER_ID", "default_user"))

    # =========================================================================
    # Signal Lifecycle
    # =========================================================================

    # Pause between receiving an insight and the first price poll
    # (simulates order placement)
    settling_delay: float = field(default_factory=lambda: _get_env_float("SETTLING_DELAY", 3.0))

    # How often to poll the price oracle while tracking (in seconds)
    price_poll_interval: float = field(default_factory=lambda: _get_env_float("PRICE_POLL_INTERVAL", 5.0))

    # Upper bound on one insight generation call
    insight_timeout: float = field(default_factory=lambda: _get_env_float("INSIGHT_TIMEOUT", 60.0))

    # Upper bound on one price oracle call (a timeout counts as a missed poll)
    price_timeout: float = field(default_factory=lambda: _get_env_float("PRICE_TIMEOUT", 10.0))

    # Give up tracking after this long without TP or SL (0 disables the limit)
    tracking_timeout: float = field(default_factory=lambda: _get_env_float("TRACKING_TIMEOUT", 3600.0))

    # How many signals the history view shows
    signal_history_limit: int = field(default_factory=lambda: _get_env_int("SIGNAL_HISTORY_LIMIT", 10))

    # =========================================================================
    # External Services
    # =========================================================================

    # Binance public market data. Key is optional for ticker prices but the
    # kline summary used in insight prompts is skipped without it.
    binance_base_url: str = field(
        default_factory=lambda: _get_env("BINANCE_BASE_URL", "https://api.binance.com/api/v3")
    )
    binance_api_key: str = field(default_factory=lambda: _get_env("BINANCE_API_KEY"))

    # Any OpenAI-compatible chat completions endpoint
    llm_base_url: str = field(
        default_factory=lambda: _get_env("LLM_BASE_URL", "https://api.openai.com/v1")
    )
    llm_api_key: str = field(default_factory=lambda: _get_env("LLM_API_KEY"))
    llm_model: str = field(default_factory=lambda: _get_env("LLM_MODEL", "gpt-4o-mini"))
    llm_temperature: float = field(default_factory=lambda: _get_env_float("LLM_TEMPERATURE", 0.4))

    # Telegram (optional) - mirrors dashboard toasts to a chat
    telegram_bot_token: str = field(default_factory=lambda: _get_env("TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str = field(default_factory=lambda: _get_env("TELEGRAM_CHAT_ID"))

    # =========================================================================
    # System
    # =========================================================================

    # Logging level: DEBUG, INFO, WARNING, ERROR
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))

    # One JSON object per log line (for log shippers) instead of colored console output
    log_json: bool = field(default_factory=lambda: _get_env_bool("LOG_JSON", False))

    dashboard_host: str = field(default_factory=lambda: _get_env("DASHBOARD_HOST", "0.0.0.0"))
    dashboard_port: int = field(default_factory=lambda: _get_env_int("DASHBOARD_PORT", 8050))

    def collection_path(self, collection: str) -> Path:
        """Location of a collection's JSON file."""
        return Path(self.data_dir) / f"{collection}.json"

    @property
    def sqlite_full_path(self) -> str:
        return self.sqlite_path or str(Path(self.data_dir) / "arena.db")

    def validate(self) -> list[str]:
        """
        Check that the settings make sense.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if not self.llm_api_key:
            problems.append("LLM_API_KEY is not set - signal generation and oracle chat will fail")
        if self.store_backend not in ("json", "sqlite"):
            problems.append(f"STORE_BACKEND must be 'json' or 'sqlite', got '{self.store_backend}'")
        if not self.current_user_id:
            problems.append("CURRENT_USER_ID is empty")

        if self.settling_delay < 0:
            problems.append("SETTLING_DELAY cannot be negative")
        if self.price_poll_interval <= 0:
            problems.append("PRICE_POLL_INTERVAL must be greater than 0")
        if self.insight_timeout <= 0 or self.price_timeout <= 0:
            problems.append("INSIGHT_TIMEOUT and PRICE_TIMEOUT must be greater than 0")
        if self.tracking_timeout < 0:
            problems.append("TRACKING_TIMEOUT cannot be negative (use 0 to disable)")

        if bool(self.telegram_bot_token) != bool(self.telegram_chat_id):
            problems.append("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set together")

        return problems


# Create a global settings instance that other modules can import
# Usage: from config.settings import settings
settings = Settings()

"""
Notifier
========
User-visible notifications ("toasts") for the arena.

Every message is queued in memory for the dashboard to drain and, when
TELEGRAM_BOT_TOKEN + TELEGRAM_CHAT_ID are set, mirrored to Telegram.

Notifications sent:
- Insight received / signal resolved (with rewards)
- Generation failed (retryable)
- Persistence failed (ledger may be inconsistent)
- Tracking timed out

Sending never raises: a broken Telegram connection must not break a
signal lifecycle.
"""

from collections import deque
from dataclasses import asdict, dataclass, field

import telegram

from config.settings import Settings
from database.models import TP_HIT, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT = "default"
DESTRUCTIVE = "destructive"


@dataclass
class Toast:
    title: str
    description: str
    variant: str = DEFAULT
    created_at: str = field(default_factory=utc_now)


class Notifier:
    """
    Usage:
        notifier = Notifier(settings)
        await notifier.initialize()
        await notifier.notify("Trade placed", "BUY BTCUSDT submitted")
        toasts = notifier.drain()
    """

    def __init__(self, settings: Settings, max_queued: int = 50):
        self.settings = settings
        self._queue: deque[Toast] = deque(maxlen=max_queued)
        self.bot: telegram.Bot | None = None
        self.chat_id: int | None = None
        self.telegram_enabled: bool = False

    async def initialize(self) -> None:
        """Set up the optional Telegram mirror."""
        if not self.settings.telegram_bot_token or not self.settings.telegram_chat_id:
            logger.info("telegram_mirror_disabled", note="Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")
            return

        try:
            self.chat_id = int(self.settings.telegram_chat_id)
        except ValueError:
            logger.error("notifier_bad_chat_id", value=self.settings.telegram_chat_id)
            return

        self.bot = telegram.Bot(token=self.settings.telegram_bot_token)
        self.telegram_enabled = True
        logger.info("telegram_mirror_initialized")

    async def _send_telegram(self, text: str) -> None:
        if not self.telegram_enabled or not self.bot:
            return
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text)
        except Exception as e:
            logger.error("telegram_send_failed", error=str(e))

    async def notify(self, title: str, description: str, variant: str = DEFAULT) -> Toast:
        toast = Toast(title=title, description=description, variant=variant)
        self._queue.append(toast)
        logger.debug("toast_queued", title=title, variant=variant)
        await self._send_telegram(f"{title}\n{'=' * 20}\n\n{description}")
        return toast

    def drain(self) -> list[dict]:
        """Hand every queued toast to the UI and clear the queue."""
        toasts = [asdict(t) for t in self._queue]
        self._queue.clear()
        return toasts

    def pending(self) -> list[Toast]:
        return list(self._queue)

    # =========================================================================
    # Lifecycle Notifications
    # =========================================================================

    async def notify_insight_ready(self, target: str, prediction: str, confidence: float) -> None:
        await self.notify(
            "Shadow Core Analysis Complete!",
            f"{prediction} {target} at {confidence:.0f}% confidence. Tracking price...",
        )

    async def notify_signal_resolved(self, target: str, outcome: str, bsai: float, xp: float) -> None:
        label = "TAKE PROFIT HIT" if outcome == TP_HIT else "STOP LOSS HIT"
        await self.notify(f"{label}: {target}", f"+{bsai} BSAI, +{xp} XP")

    async def notify_generation_failed(self, details: str) -> None:
        await self.notify(
            "Error Commanding Shadow Core",
            f"{details or 'Failed to generate market insights.'} Please try again.",
            DESTRUCTIVE,
        )

    async def notify_persistence_failed(self, details: str) -> None:
        await self.notify(
            "Signal Not Saved",
            f"Your reward is shown but could not be recorded: {details}",
            DESTRUCTIVE,
        )

    async def notify_tracking_timeout(self, target: str) -> None:
        await self.notify(
            "Tracking Expired",
            f"{target} never reached take profit or stop loss. The signal was discarded.",
            DESTRUCTIVE,
        )

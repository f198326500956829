"""
Outcome Evaluation
==================
Decides whether a tracked signal has hit its take-profit or stop-loss.

The insight's price levels are free text ("$26,200", "26200 USDT"). They are
turned into numbers by dropping every character that isn't a digit, a sign
or a decimal point, so "$24,800" -> 24800.0.

Direction depends on the prediction:
- BUY:  TP when price >= take profit, SL when price <= stop loss
- anything else (SELL, HOLD): TP when price <= take profit, SL when price >= stop loss

Take-profit is checked first.
"""

import re

from database.models import SL_HIT, TP_HIT

_NON_NUMERIC = re.compile(r"[^0-9.+\-]")


def parse_price_level(text: str | float | int | None) -> float | None:
    """'$24,800' -> 24800.0. Returns None when nothing numeric is left."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    cleaned = _NON_NUMERIC.sub("", text)
    try:
        return float(cleaned)
    except ValueError:
        return None


def evaluate_outcome(
    prediction: str,
    current_price: float,
    stop_loss: str | float,
    take_profit: str | float,
) -> str | None:
    """TP_HIT, SL_HIT, or None (keep polling)."""
    tp = parse_price_level(take_profit)
    sl = parse_price_level(stop_loss)

    if str(prediction).upper() == "BUY":
        if tp is not None and current_price >= tp:
            return TP_HIT
        if sl is not None and current_price <= sl:
            return SL_HIT
    else:
        if tp is not None and current_price <= tp:
            return TP_HIT
        if sl is not None and current_price >= sl:
            return SL_HIT
    return None

"""
rsi.py

Relative Strength Index (RSI) with Wilder smoothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from spot_trading_bot.config.constants import RSI_OVERBOUGHT, RSI_OVERSOLD
from spot_trading_bot.utils.system_logger import log_anomaly

_EPS = 1e-12


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_gain < _EPS and avg_loss < _EPS:
        return 50.0  # flat
    if avg_loss < _EPS:
        return 100.0
    if avg_gain < _EPS:
        return 0.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Calculate the Relative Strength Index (RSI) for a given price series.

    Args:
        prices: Historical prices, oldest first.
        period: Lookback period. Defaults to 14.

    Returns:
        float: RSI value between 0 and 100.

    Raises:
        ValueError: If the input is invalid or too short (``period + 1`` points needed).
    """
    if prices is None:
        raise ValueError("RSI: prices is None")
    if period is None or period <= 0:
        raise ValueError(f"RSI: invalid period {period}")
    if len(prices) < period + 1:
        raise ValueError(f"RSI: insufficient data len={len(prices)} < {period + 1}")
    if any(p is None or p <= 0 for p in prices):
        raise ValueError("RSI: non-positive or None price encountered")

    deltas = np.diff(np.asarray(prices, dtype=float))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    # Seed with the simple mean of the first window, then Wilder smoothing
    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    rsi = _rsi_from_averages(avg_gain, avg_loss)
    if not np.isfinite(rsi):
        log_anomaly("RSI Invalid Output", value=str(rsi), avg_gain=avg_gain, avg_loss=avg_loss)
        rsi = 50.0
    return max(0.0, min(100.0, float(rsi)))


@dataclass(frozen=True)
class RSIReading:
    """An RSI value together with the thresholds it was judged against."""

    value: float
    oversold: float = RSI_OVERSOLD
    overbought: float = RSI_OVERBOUGHT

    @property
    def is_oversold(self) -> bool:
        return self.value < self.oversold

    @property
    def is_overbought(self) -> bool:
        return self.value > self.overbought


def read_rsi(
    prices: Sequence[float],
    period: int = 14,
    oversold: float = RSI_OVERSOLD,
    overbought: float = RSI_OVERBOUGHT,
) -> RSIReading:
    """Compute RSI and wrap it with oversold/overbought thresholds."""
    return RSIReading(calculate_rsi(prices, period), oversold=oversold, overbought=overbought)


__all__ = ["RSIReading", "calculate_rsi", "read_rsi"]

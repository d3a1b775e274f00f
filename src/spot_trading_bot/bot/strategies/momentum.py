"""
momentum.py

Three-candle range strategy: buy when the live price falls to the mean of
the last three candle lows, sell when it reaches the mean of the last three
highs. ``analyze_momentum`` and ``should_sell`` are also used by the position
manager for its profit-protect early exit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from spot_trading_bot.bot.interfaces import Candle
from spot_trading_bot.bot.strategies.base import BUY, SELL, BaseStrategy, TradeSignal, hold

BULLISH = "BULLISH"
BEARISH = "BEARISH"
NEUTRAL = "NEUTRAL"

_WINDOW = 3


@dataclass(frozen=True)
class MomentumReading:
    trend: str
    price_change_percent: float = 0.0
    volume_ratio: float = 1.0
    avg_lows: float = 0.0
    avg_highs: float = 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def average_lows(candles: Sequence[Candle]) -> float:
    return _mean([c.low for c in list(candles)[-_WINDOW:]]) if len(candles) >= _WINDOW else 0.0


def average_highs(candles: Sequence[Candle]) -> float:
    return _mean([c.high for c in list(candles)[-_WINDOW:]]) if len(candles) >= _WINDOW else 0.0


def analyze_momentum(
    prices: Optional[Sequence[float]] = None,
    volumes: Optional[Sequence[float]] = None,
    candles: Optional[Sequence[Candle]] = None,
) -> MomentumReading:
    """Classify the latest close against the three-candle range.

    BULLISH means the close sits at or under the average low (entry zone),
    BEARISH at or over the average high (exit zone).
    """
    if not candles or len(candles) < _WINDOW:
        return MomentumReading(NEUTRAL, volume_ratio=0.0)

    candles = list(candles)
    avg_lows = average_lows(candles)
    avg_highs = average_highs(candles)
    current = float(prices[-1]) if prices else candles[-1].close
    first = candles[0].close
    change = (current - first) / first * 100.0 if first else 0.0

    trend = NEUTRAL
    if current <= avg_lows:
        trend = BULLISH
    elif current >= avg_highs:
        trend = BEARISH

    volume_ratio = 1.0
    if volumes and len(volumes) >= _WINDOW:
        overall = _mean(list(volumes))
        volume_ratio = _mean(list(volumes)[-_WINDOW:]) / overall if overall else 1.0

    return MomentumReading(trend, change, volume_ratio, avg_lows, avg_highs)


def should_sell(candles: Sequence[Candle], current_price: Optional[float] = None) -> bool:
    """True when price reached the mean of the last three highs."""
    if not candles or len(candles) < _WINDOW:
        return False
    price = candles[-1].close if current_price is None else current_price
    return price >= average_highs(candles)


class MomentumStrategy(BaseStrategy):
    """Range strategy over the last three candles."""

    name = "momentum"

    def analyze_buy_opportunity(
        self,
        prices: Sequence[float],
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        if not candles or len(candles) < _WINDOW:
            return hold(f"Insufficient data: need {_WINDOW}+ candles")
        reading = analyze_momentum(prices, None, candles)
        current = float(prices[-1]) if prices else candles[-1].close
        if reading.trend == BULLISH:
            return TradeSignal(
                BUY,
                0.9,
                f"Price {current:.6g} <= mean of last {_WINDOW} lows {reading.avg_lows:.6g}",
                {"price": current, "avg_lows": reading.avg_lows, "avg_highs": reading.avg_highs},
            )
        if reading.trend == BEARISH:
            return hold("Price in sell zone (>= mean of last highs)", price=current)
        return hold(
            f"Waiting for price {current:.6g} to reach mean of lows {reading.avg_lows:.6g}",
            price=current,
        )

    def analyze_sell_opportunity(
        self,
        prices: Sequence[float],
        buy_price: Optional[float] = None,
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        if not candles or len(candles) < _WINDOW:
            return hold(f"Insufficient data: need {_WINDOW}+ candles")
        current = float(prices[-1]) if prices else candles[-1].close
        hard = self.hard_exit(current, buy_price)
        if hard is not None:
            return hard
        if should_sell(candles, current):
            avg_highs = average_highs(candles)
            return TradeSignal(
                SELL,
                0.9,
                f"Price {current:.6g} >= mean of last {_WINDOW} highs {avg_highs:.6g}",
                {"price": current, "avg_highs": avg_highs, "exit_type": "RANGE_HIGH"},
            )
        return hold("Holding until price reaches mean of last highs", price=current)


__all__ = [
    "BEARISH",
    "BULLISH",
    "NEUTRAL",
    "MomentumReading",
    "MomentumStrategy",
    "analyze_momentum",
    "average_highs",
    "average_lows",
    "should_sell",
]

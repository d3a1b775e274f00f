"""
mean_reversion.py

Bollinger Band + RSI mean-reversion strategy.

Buy rules (first match wins):
1. price <= lower band * 1.002 and RSI oversold          -> buy, 0.9
2. RSI below the deep-oversold level and price <= middle -> buy, 0.7

Sell rules (first match wins):
1. stop loss                                             -> sell, 1.0
2. take profit                                           -> sell, 0.9
3. price >= upper band * 0.998 and RSI overbought        -> sell, 0.9
4. RSI above the extreme level and price >= middle       -> sell, 0.7
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from spot_trading_bot.bot.interfaces import Candle
from spot_trading_bot.bot.strategies.base import BUY, HOLD, SELL, BaseStrategy, TradeSignal, hold
from spot_trading_bot.indicators.bollinger import BollingerBands, calculate_bollinger_bands
from spot_trading_bot.indicators.rsi import RSIReading, read_rsi
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("mean_reversion")


class MeanReversionStrategy(BaseStrategy):
    """Buys statistically stretched dips, sells stretched rallies."""

    name = "mean_reversion"

    def _indicators(self, prices: Sequence[float]) -> Optional[Tuple[BollingerBands, RSIReading]]:
        s = self.settings
        if prices is None or len(prices) < s.min_points:
            return None
        try:
            bands = calculate_bollinger_bands(prices, s.bb_period, s.bb_std_dev)
            rsi = read_rsi(prices, s.rsi_period, s.rsi_oversold, s.rsi_overbought)
        except ValueError as exc:
            logger.warning("Indicator calculation failed: %s", exc)
            return None
        return bands, rsi

    def _insufficient(self, prices: Sequence[float]) -> TradeSignal:
        got = 0 if prices is None else len(prices)
        return hold(f"Insufficient data: {got} prices, need {self.settings.min_points}")

    def analyze_buy_opportunity(
        self,
        prices: Sequence[float],
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        computed = self._indicators(prices)
        if computed is None:
            return self._insufficient(prices)
        bands, rsi = computed
        s = self.settings
        price = float(prices[-1])
        snapshot = {"price": price, "rsi": rsi.value, **bands.to_dict()}

        buy_line = bands.lower * s.lower_band_tolerance
        if price <= buy_line and rsi.is_oversold:
            return TradeSignal(
                BUY,
                0.9,
                f"Price {price:.6g} at lower band {bands.lower:.6g} with RSI {rsi.value:.1f} oversold",
                snapshot,
            )
        if rsi.value < s.rsi_deep_oversold and price <= bands.middle:
            return TradeSignal(
                BUY,
                0.7,
                f"RSI {rsi.value:.1f} below {s.rsi_deep_oversold:g} with price under middle band {bands.middle:.6g}",
                snapshot,
            )

        band_gap = (price - buy_line) / price * 100.0
        return TradeSignal(
            HOLD,
            0.0,
            f"No entry: price {band_gap:.2f}% above lower band, RSI {rsi.value:.1f} "
            f"(needs < {s.rsi_oversold:g} at band or < {s.rsi_deep_oversold:g} under middle)",
            snapshot,
        )

    def analyze_sell_opportunity(
        self,
        prices: Sequence[float],
        buy_price: Optional[float] = None,
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        computed = self._indicators(prices)
        if computed is None:
            return self._insufficient(prices)
        bands, rsi = computed
        s = self.settings
        price = float(prices[-1])

        hard = self.hard_exit(price, buy_price)
        if hard is not None:
            return hard

        snapshot = {"price": price, "rsi": rsi.value, **bands.to_dict()}
        if price >= bands.upper * s.upper_band_tolerance and rsi.is_overbought:
            return TradeSignal(
                SELL,
                0.9,
                f"Price {price:.6g} at upper band {bands.upper:.6g} with RSI {rsi.value:.1f} overbought",
                {**snapshot, "exit_type": "BAND_REVERSAL"},
            )
        if rsi.value > s.rsi_extreme_overbought and price >= bands.middle:
            return TradeSignal(
                SELL,
                0.7,
                f"RSI {rsi.value:.1f} above {s.rsi_extreme_overbought:g} with price over middle band",
                {**snapshot, "exit_type": "RSI_EXTREME"},
            )

        upper_gap = (bands.upper * s.upper_band_tolerance - price) / price * 100.0
        return TradeSignal(
            HOLD,
            0.0,
            f"Holding: price {upper_gap:.2f}% below upper band, RSI {rsi.value:.1f} "
            f"(needs > {s.rsi_overbought:g} at band or > {s.rsi_extreme_overbought:g} over middle)",
            snapshot,
        )


__all__ = ["MeanReversionStrategy"]

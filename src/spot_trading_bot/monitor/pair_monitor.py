"""
pair_monitor.py

In-memory store of recent prices, volumes and candles per watched symbol.

Each :class:`PairMonitor` keeps bounded buffers (oldest evicted first) and two
derived figures that are recomputed once at least ten prices are buffered:

- ``volatility``: population standard deviation of tick-to-tick returns, in percent
- ``price_change_percent``: change from the oldest to the newest buffered price
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from spot_trading_bot.bot.interfaces import Candle
from spot_trading_bot.config.constants import (
    CANDLE_BUFFER_SIZE,
    DEFAULT_MIN_VOLATILITY_PCT,
    MIN_VOLATILITY_POINTS,
    PAIR_SELECTION_MIN_QUOTE_VOLUME,
    PRICE_BUFFER_SIZE,
)
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("pair_monitor")


@dataclass
class PairMonitor:
    symbol: str
    prices: Deque[float] = field(default_factory=lambda: deque(maxlen=PRICE_BUFFER_SIZE))
    volumes: Deque[float] = field(default_factory=lambda: deque(maxlen=PRICE_BUFFER_SIZE))
    candles: Deque[Candle] = field(default_factory=lambda: deque(maxlen=CANDLE_BUFFER_SIZE))
    volatility: float = 0.0
    price_change_percent: float = 0.0
    last_update: Optional[float] = None
    active: bool = True

    @property
    def last_price(self) -> Optional[float]:
        return self.prices[-1] if self.prices else None

    def snapshot(self) -> "PairMonitor":
        """Detached copy safe to read outside the store lock."""
        return PairMonitor(
            symbol=self.symbol,
            prices=deque(self.prices, maxlen=self.prices.maxlen),
            volumes=deque(self.volumes, maxlen=self.volumes.maxlen),
            candles=deque(self.candles, maxlen=self.candles.maxlen),
            volatility=self.volatility,
            price_change_percent=self.price_change_percent,
            last_update=self.last_update,
            active=self.active,
        )

    def recompute(self) -> None:
        if len(self.prices) < MIN_VOLATILITY_POINTS:
            self.volatility = 0.0
            self.price_change_percent = 0.0
            return
        series = np.asarray(self.prices, dtype=float)
        returns = np.diff(series) / series[:-1]
        self.volatility = float(np.std(returns, ddof=0) * 100.0)
        first = series[0]
        self.price_change_percent = float((series[-1] - first) / first * 100.0) if first else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "prices": list(self.prices),
            "volumes": list(self.volumes),
            "candles": [c.to_dict() for c in self.candles],
            "volatility": self.volatility,
            "price_change_percent": self.price_change_percent,
            "last_update": self.last_update,
            "active": self.active,
        }


class PairMonitorStore:
    """Thread-safe map of symbol -> :class:`PairMonitor` for the watched set."""

    def __init__(
        self,
        price_buffer: int = PRICE_BUFFER_SIZE,
        candle_buffer: int = CANDLE_BUFFER_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._price_buffer = price_buffer
        self._candle_buffer = candle_buffer
        self._clock = clock
        self._monitors: Dict[str, PairMonitor] = {}
        self._lock = threading.RLock()

    def _new_monitor(self, symbol: str) -> PairMonitor:
        return PairMonitor(
            symbol=symbol,
            prices=deque(maxlen=self._price_buffer),
            volumes=deque(maxlen=self._price_buffer),
            candles=deque(maxlen=self._candle_buffer),
        )

    def watch(self, symbols: Iterable[str]) -> List[str]:
        """Start monitoring ``symbols``; returns the ones that were not already watched."""
        added = []
        with self._lock:
            for raw in symbols:
                symbol = raw.strip().upper()
                if not symbol or symbol in self._monitors:
                    continue
                self._monitors[symbol] = self._new_monitor(symbol)
                added.append(symbol)
        if added:
            logger.info("Watching %s", ", ".join(added))
        return added

    def unwatch(self, symbols: Iterable[str]) -> List[str]:
        """Stop monitoring ``symbols`` and drop their history."""
        removed = []
        with self._lock:
            for raw in symbols:
                symbol = raw.strip().upper()
                monitor = self._monitors.pop(symbol, None)
                if monitor is not None:
                    monitor.active = False
                    removed.append(symbol)
        if removed:
            logger.info("Stopped watching %s", ", ".join(removed))
        return removed

    def clear(self) -> None:
        with self._lock:
            for monitor in self._monitors.values():
                monitor.active = False
            self._monitors.clear()

    def add_observation(
        self,
        symbol: str,
        price: float,
        volume: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> Optional[PairMonitor]:
        """Append a price (and optional volume) for a watched symbol.

        Returns a snapshot of the updated monitor, or ``None`` when the symbol
        is not watched or the price is unusable.
        """
        if price is None or price <= 0:
            logger.debug("Ignoring non-positive price for %s: %r", symbol, price)
            return None
        with self._lock:
            monitor = self._monitors.get(symbol.upper())
            if monitor is None:
                return None
            monitor.prices.append(float(price))
            if volume is not None:
                monitor.volumes.append(float(volume))
            monitor.last_update = self._clock() if timestamp is None else timestamp
            monitor.recompute()
            return monitor.snapshot()

    def add_candle(self, symbol: str, candle: Candle) -> bool:
        """Append a candle, replacing the newest one when it shares the open time."""
        with self._lock:
            monitor = self._monitors.get(symbol.upper())
            if monitor is None:
                return False
            if monitor.candles and monitor.candles[-1].timestamp == candle.timestamp:
                monitor.candles[-1] = candle
            elif monitor.candles and candle.timestamp < monitor.candles[-1].timestamp:
                return False
            else:
                monitor.candles.append(candle)
            return True

    def set_candles(self, symbol: str, candles: Sequence[Candle]) -> int:
        """Merge a fetched candle batch (oldest first); returns how many were accepted."""
        return sum(1 for candle in candles if self.add_candle(symbol, candle))

    def get(self, symbol: str) -> Optional[PairMonitor]:
        with self._lock:
            monitor = self._monitors.get(symbol.upper())
            return monitor.snapshot() if monitor is not None else None

    def watched(self) -> List[str]:
        with self._lock:
            return list(self._monitors)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol.upper() in self._monitors

    def price_series(self, symbol: str) -> List[float]:
        """Candle closes with the live tick folded into the forming candle.

        Falls back to the raw tick prices when no candles are buffered.
        """
        with self._lock:
            monitor = self._monitors.get(symbol.upper())
            if monitor is None:
                return []
            if not monitor.candles:
                return list(monitor.prices)
            closes = [c.close for c in monitor.candles]
            last_candle = monitor.candles[-1]
            if monitor.prices and monitor.last_update is not None and monitor.last_update >= last_candle.timestamp:
                closes[-1] = monitor.prices[-1]
            return closes

    def candles(self, symbol: str) -> List[Candle]:
        with self._lock:
            monitor = self._monitors.get(symbol.upper())
            return list(monitor.candles) if monitor is not None else []

    def by_volatility(self) -> List[PairMonitor]:
        """Snapshots of all monitors, most volatile first."""
        with self._lock:
            snapshots = [m.snapshot() for m in self._monitors.values()]
        return sorted(snapshots, key=lambda m: m.volatility, reverse=True)

    def with_opportunity(
        self,
        buy_threshold: float = 0.0,
        min_volatility: float = DEFAULT_MIN_VOLATILITY_PCT,
    ) -> List[PairMonitor]:
        """Monitors that dipped at least to ``buy_threshold`` % with enough volatility.

        Sorted by price change ascending (deepest dip first).
        """
        with self._lock:
            snapshots = [m.snapshot() for m in self._monitors.values()]
        candidates = [
            m
            for m in snapshots
            if len(m.prices) >= MIN_VOLATILITY_POINTS
            and m.volatility >= min_volatility
            and m.price_change_percent <= buy_threshold
        ]
        return sorted(candidates, key=lambda m: m.price_change_percent)


def select_volatile_pairs(
    tickers: Iterable[Mapping[str, Any]],
    limit: int = 5,
    min_quote_volume: float = PAIR_SELECTION_MIN_QUOTE_VOLUME,
    quote_asset: str = "USDT",
) -> List[str]:
    """Pick the ``limit`` quote-asset pairs with the largest absolute 24h move.

    ``tickers`` are 24h ticker rows carrying ``symbol``, ``quoteVolume`` and
    ``priceChangePercent`` (the exchange's field names).
    """
    ranked = []
    for row in tickers:
        symbol = str(row.get("symbol", ""))
        if not symbol.endswith(quote_asset):
            continue
        try:
            quote_volume = float(row.get("quoteVolume", 0.0))
            change = float(row.get("priceChangePercent", 0.0))
        except (TypeError, ValueError):
            continue
        if quote_volume <= min_quote_volume:
            continue
        ranked.append((abs(change), symbol))
    ranked.sort(key=lambda item: item[0], reverse=True)
    return [symbol for _, symbol in ranked[: max(0, limit)]]


__all__ = ["PairMonitor", "PairMonitorStore", "select_volatile_pairs"]

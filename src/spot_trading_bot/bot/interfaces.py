"""
interfaces.py

Data shapes and collaborator protocols the trading core depends on.

The core never talks to an exchange or a database directly; it is handed
objects satisfying :class:`MarketDataClient`, :class:`ExecutionClient` and
:class:`TradeStore`. ``BinanceClient``, ``PaperExecutionClient`` and
``TradeLedger`` are the shipped implementations.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

BUY = "BUY"
SELL = "SELL"

STATUS_PENDING = "PENDING"
STATUS_EXECUTED = "EXECUTED"
STATUS_FAILED = "FAILED"
STATUS_CANCELLED = "CANCELLED"


class ExecutionError(RuntimeError):
    """Raised when an order is rejected, times out, or cannot be recorded."""


@dataclass(frozen=True)
class PriceData:
    price: float
    timestamp: float


@dataclass(frozen=True)
class MarketData:
    price: float
    volume: float
    high: float
    low: float
    price_change_percent: float
    quote_volume: Optional[float] = None

    @property
    def quote_volume_24h(self) -> float:
        """24h traded value in the quote currency."""
        if self.quote_volume is not None:
            return self.quote_volume
        return self.volume * self.price


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    timestamp: float
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OrderResult:
    trade_id: str
    executed_price: float
    status: str
    quantity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@runtime_checkable
class MarketDataClient(Protocol):
    def get_price(self, symbol: str) -> Optional[PriceData]:
        """Last traded price or ``None`` when unavailable."""

    def get_market_data(self, symbol: str) -> Optional[MarketData]:
        """24h ticker snapshot or ``None`` when unavailable."""

    def get_candles(self, symbol: str, interval: str = "1m", limit: int = 60) -> List[Candle]:
        """Candles oldest first; empty on failure."""


@runtime_checkable
class ExecutionClient(Protocol):
    def execute_order(self, symbol: str, side: str, quantity: float, test_mode: bool) -> OrderResult:
        """Place a market order; raises ``ExecutionError`` on failure."""


@runtime_checkable
class TradeStore(Protocol):
    def persist_round_trip_outcome(self, trade_id: str, profit_loss: float, closed_at: float) -> None:
        """Attach realized P&L to the opening trade record."""

    def load_trades(self, since: Optional[float] = None) -> List[Dict[str, Any]]:
        """Trade rows (oldest first), optionally restricted to ``created_at >= since``."""


__all__ = [
    "BUY",
    "SELL",
    "STATUS_CANCELLED",
    "STATUS_EXECUTED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "Candle",
    "ExecutionClient",
    "ExecutionError",
    "MarketData",
    "MarketDataClient",
    "OrderResult",
    "PriceData",
    "TradeStore",
]

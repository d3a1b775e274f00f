"""Shared fakes for the trading core unit tests."""

from __future__ import annotations

import itertools
import os
import tempfile
from typing import Any, Dict, List, Optional

# Keep rotating loggers out of the working tree; must run before package import.
os.environ.setdefault("SPOT_TRADING_BOT_LOG_DIR", tempfile.mkdtemp(prefix="spot-trading-bot-logs-"))

import pytest  # noqa: E402  pylint: disable=wrong-import-position

from spot_trading_bot.bot import interfaces  # noqa: E402  pylint: disable=wrong-import-position
from spot_trading_bot.bot.interfaces import (  # noqa: E402  pylint: disable=wrong-import-position
    BUY,
    STATUS_EXECUTED,
    STATUS_PENDING,
    Candle,
    ExecutionError,
    MarketData,
    OrderResult,
    PriceData,
)
from spot_trading_bot.bot.utils import alert  # noqa: E402  pylint: disable=wrong-import-position
from spot_trading_bot.ledger.trade_ledger import iso, record_time, to_epoch  # noqa: E402  pylint: disable=wrong-import-position

# pylint: disable=missing-function-docstring,missing-class-docstring

# 2024-03-01T12:00:00Z
BASE_TIME = 1709294400.0


class FakeClock:
    def __init__(self, start: float = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeMarket:
    """Scriptable market data client."""

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock or FakeClock()
        self.prices: Dict[str, float] = {}
        self.quote_volumes: Dict[str, float] = {}
        self.candle_data: Dict[str, List[Candle]] = {}
        self.candle_calls: List[str] = []
        self.unavailable: set = set()

    def set_price(self, symbol: str, price: float, quote_volume: float = 50_000_000.0) -> None:
        self.prices[symbol] = price
        self.quote_volumes[symbol] = quote_volume

    def get_price(self, symbol: str) -> Optional[PriceData]:
        if symbol in self.unavailable or symbol not in self.prices:
            return None
        return PriceData(self.prices[symbol], self.clock())

    def get_market_data(self, symbol: str) -> Optional[MarketData]:
        if symbol in self.unavailable or symbol not in self.prices:
            return None
        price = self.prices[symbol]
        return MarketData(
            price=price,
            volume=1000.0,
            high=price * 1.05,
            low=price * 0.95,
            price_change_percent=0.0,
            quote_volume=self.quote_volumes.get(symbol),
        )

    def get_candles(self, symbol: str, interval: str = "1m", limit: int = 60) -> List[Candle]:
        self.candle_calls.append(symbol)
        return list(self.candle_data.get(symbol, []))[-limit:]


class FakeExecutor:
    """Fills at the fake market's price; can be told to reject orders."""

    def __init__(self, market: FakeMarket) -> None:
        self.market = market
        self.orders: List[Dict[str, Any]] = []
        self.fail_sides: set = set()
        self.sell_fill_ratio = 1.0
        self._ids = itertools.count(1)

    def execute_order(self, symbol: str, side: str, quantity: float, test_mode: bool = True) -> OrderResult:
        self.orders.append({"symbol": symbol, "side": side, "quantity": quantity, "test_mode": test_mode})
        if side in self.fail_sides:
            raise ExecutionError(f"{side} {symbol} rejected")
        price = self.market.prices[symbol]
        if side == interfaces.SELL:
            quantity = quantity * self.sell_fill_ratio
        return OrderResult(f"T{next(self._ids)}", price, interfaces.STATUS_EXECUTED, quantity)


class MemoryStore:
    """In-memory trade store implementing the ``TradeStore`` protocol."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.outcomes: List[tuple] = []
        self.fail_persist = False

    def add(self, symbol: str, side: str, price: float, quantity: float = 1.0, **fields: Any) -> Dict[str, Any]:
        row = {
            "id": fields.pop("id", f"R{len(self.rows) + 1}"),
            "symbol": symbol,
            "side": side,
            "quantity": quantity,
            "price": price,
            "status": STATUS_EXECUTED,
            "profit_loss": None,
            "closed_at": None,
        }
        row.update(fields)
        for key in ("created_at", "executed_at", "closed_at"):
            if isinstance(row.get(key), (int, float)):
                row[key] = iso(row[key])
        self.rows.append(row)
        return row

    def add_round_trip(self, symbol: str, profit_loss: float, closed_at: float) -> Dict[str, Any]:
        return self.add(
            symbol,
            BUY,
            100.0,
            created_at=closed_at - 60,
            executed_at=closed_at - 60,
            closed_at=closed_at,
            profit_loss=profit_loss,
        )

    def persist_round_trip_outcome(self, trade_id: str, profit_loss: float, closed_at: Any) -> None:
        if self.fail_persist:
            raise OSError("disk full")
        self.outcomes.append((trade_id, profit_loss, closed_at))
        for row in self.rows:
            if row["id"] == trade_id:
                row.update(profit_loss=profit_loss, closed_at=iso(to_epoch(closed_at)), status=STATUS_EXECUTED)

    def load_trades(self, since: Any = None) -> List[Dict[str, Any]]:
        cutoff = to_epoch(since)
        rows = [dict(r) for r in self.rows]
        if cutoff is not None:
            rows = [r for r in rows if (record_time(r) or 0.0) >= cutoff]
        return rows

    def open_buys(self) -> List[Dict[str, Any]]:
        return [r for r in self.load_trades() if r["side"] == BUY and r["status"] == STATUS_PENDING]


class AlertRecorder:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, message: str, context: Optional[Dict[str, Any]] = None, level: str = "INFO", **_: Any):
        payload = {"message": message, "context": context or {}, "level": level}
        self.calls.append(payload)
        return payload

    def levels(self) -> List[str]:
        return [c["level"] for c in self.calls]


def make_candles(closes, start: float = BASE_TIME - 3600, spread: float = 0.5) -> List[Candle]:
    return [
        Candle(open=c, high=c + spread, low=c - spread, close=c, timestamp=start + i * 60, volume=10.0)
        for i, c in enumerate(closes)
    ]


@pytest.fixture(autouse=True)
def fixture_isolated_alerts(tmp_path, monkeypatch):
    monkeypatch.setattr(alert, "ALERTS_LOG_PATH", str(tmp_path / "alerts.log"))
    monkeypatch.setitem(alert.CONFIG, "alert_webhook", None)


@pytest.fixture(name="clock")
def fixture_clock():
    return FakeClock()


@pytest.fixture(name="market")
def fixture_market(clock):
    return FakeMarket(clock)


@pytest.fixture(name="executor")
def fixture_executor(market):
    return FakeExecutor(market)


@pytest.fixture(name="store")
def fixture_store():
    return MemoryStore()


@pytest.fixture(name="alerts")
def fixture_alerts():
    return AlertRecorder()

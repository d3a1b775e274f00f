"""
position_manager.py

Owns the open long positions and their NONE -> OPEN -> CLOSING -> NONE lifecycle.

- At most one position (open or being opened) per symbol
- Capacity counts in-flight opens, so concurrent ticks cannot exceed ``max_positions``
- A failed sell leaves the position OPEN for the next tick; it is never dropped
- A partially filled sell keeps the unsold remainder OPEN under the same trade id
- Realized P&L is handed to the trade store fire-and-forget
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from spot_trading_bot.bot.interfaces import (
    BUY,
    SELL,
    STATUS_PENDING,
    Candle,
    ExecutionClient,
    ExecutionError,
    TradeStore,
)
from spot_trading_bot.bot.strategies.base import BaseStrategy
from spot_trading_bot.bot.strategies.momentum import should_sell
from spot_trading_bot.bot.utils.alert import send_alert
from spot_trading_bot.ledger.trade_ledger import to_epoch
from spot_trading_bot.utils.system_logger import get_system_logger, log_anomaly

logger = get_system_logger().getChild("position_manager")

STOP_LOSS = "STOP_LOSS"
TAKE_PROFIT = "TAKE_PROFIT"
PROFIT_PROTECT = "PROFIT_PROTECT"
MAX_HOLD = "MAX_HOLD"
SIGNAL_EXIT = "SIGNAL"

# Remainders below this are exchange dust, not an open position
MIN_REMAINING_QUANTITY = 1e-8


@dataclass(frozen=True)
class Position:
    trade_id: str
    symbol: str
    buy_price: float
    quantity: float
    opened_at: float
    realized_pnl: float = 0.0

    def pnl_pct(self, price: float) -> float:
        return (price - self.buy_price) / self.buy_price * 100.0 if self.buy_price else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExitDecision:
    trade_id: str
    symbol: str
    price: float
    reason: str
    confidence: float
    detail: str = ""


@dataclass(frozen=True)
class ClosedTrade:
    position: Position
    sell_price: float
    profit_loss: float
    reason: str
    closed_at: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["position"] = self.position.to_dict()
        return data


class PositionManager:
    """Thread-safe registry of open positions keyed by trade id."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        executor: ExecutionClient,
        store: Optional[TradeStore] = None,
        *,
        max_positions: int = 5,
        test_mode: bool = True,
        max_hold_minutes: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        alert: Callable[..., Any] = send_alert,
    ) -> None:
        self.executor = executor
        self.store = store
        self.max_positions = max_positions
        self.test_mode = test_mode
        self.max_hold_minutes = max_hold_minutes
        self._clock = clock
        self._alert = alert
        self._lock = threading.RLock()
        self._positions: Dict[str, Position] = {}
        self._pending: set = set()
        self._closing: set = set()
        self._cooldowns: Dict[str, float] = {}

    # --- queries ---------------------------------------------------------

    @property
    def positions(self) -> Dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    def open_positions(self) -> List[Position]:
        with self._lock:
            return list(self._positions.values())

    def count(self) -> int:
        with self._lock:
            return len(self._positions)

    def has_position(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._pending or any(p.symbol == symbol for p in self._positions.values())

    def position_for(self, symbol: str) -> Optional[Position]:
        with self._lock:
            return next((p for p in self._positions.values() if p.symbol == symbol), None)

    def cooldown_remaining(self, symbol: str, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        with self._lock:
            return max(0.0, self._cooldowns.get(symbol, 0.0) - now)

    def can_open(self, symbol: str, now: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        """Return ``(allowed, reason)`` for a new entry on ``symbol``."""
        with self._lock:
            if self.has_position(symbol):
                return False, "position already open"
            if len(self._positions) + len(self._pending) >= self.max_positions:
                return False, f"max positions reached ({self.max_positions})"
            remaining = self.cooldown_remaining(symbol, now)
            if remaining > 0:
                return False, f"cooldown {remaining:.0f}s"
        return True, None

    # --- transitions -----------------------------------------------------

    def open_position(self, symbol: str, quantity: float) -> Optional[Position]:
        """Buy ``quantity`` of ``symbol`` and register the position.

        Returns ``None`` when capacity, an existing position or a cooldown
        blocks the entry. Raises :class:`ExecutionError` when the order fails;
        no position is created in that case.
        """
        with self._lock:
            allowed, why = self.can_open(symbol)
            if not allowed:
                logger.debug("Entry on %s skipped: %s", symbol, why)
                return None
            self._pending.add(symbol)

        try:
            result = self.executor.execute_order(symbol, BUY, quantity, self.test_mode)
            if not result.executed_price or result.executed_price <= 0:
                raise ExecutionError(f"BUY {symbol} returned no executed price")
            position = Position(
                trade_id=str(result.trade_id),
                symbol=symbol,
                buy_price=float(result.executed_price),
                quantity=float(result.quantity or quantity),
                opened_at=self._clock(),
            )
            with self._lock:
                self._positions[position.trade_id] = position
        except ExecutionError as exc:
            logger.warning("BUY %s failed: %s", symbol, exc)
            log_anomaly("Entry Failed", symbol=symbol, quantity=quantity, error=str(exc))
            raise
        finally:
            with self._lock:
                self._pending.discard(symbol)

        logger.info(
            "Opened %s: %.8f @ %.8f (trade %s)",
            symbol,
            position.quantity,
            position.buy_price,
            position.trade_id,
        )
        return position

    def evaluate_exit(  # pylint: disable=too-many-arguments
        self,
        position: Position,
        current_price: float,
        strategy: BaseStrategy,
        *,
        series: Optional[Sequence[float]] = None,
        candles: Optional[Sequence[Candle]] = None,
        min_confidence: float = 0.0,
        profit_protect_pct: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Optional[ExitDecision]:
        """Decide whether ``position`` should be closed at ``current_price``.

        Order: hard stop-loss / take-profit (``strategy``'s thresholds, always
        evaluated), strategy sell signal at or above ``min_confidence``,
        profit-protect on a momentum reversal, then max hold time.
        """
        hard = strategy.hard_exit(current_price, position.buy_price)
        if hard is not None:
            return ExitDecision(
                position.trade_id,
                position.symbol,
                current_price,
                hard.indicators.get("exit_type", STOP_LOSS),
                hard.confidence,
                hard.reason,
            )

        if series:
            signal = strategy.analyze_sell_opportunity(series, position.buy_price, candles)
            if signal.is_sell and signal.confidence >= min_confidence:
                return ExitDecision(
                    position.trade_id,
                    position.symbol,
                    current_price,
                    signal.indicators.get("exit_type", SIGNAL_EXIT),
                    signal.confidence,
                    signal.reason,
                )

        pnl_pct = position.pnl_pct(current_price)
        if profit_protect_pct is not None and pnl_pct >= profit_protect_pct and candles:
            if should_sell(candles, current_price):
                return ExitDecision(
                    position.trade_id,
                    position.symbol,
                    current_price,
                    PROFIT_PROTECT,
                    0.8,
                    f"Momentum reversal with +{pnl_pct:.2f}% open profit",
                )

        if self.max_hold_minutes:
            now = self._clock() if now is None else now
            held_minutes = (now - position.opened_at) / 60.0
            if held_minutes >= self.max_hold_minutes:
                return ExitDecision(
                    position.trade_id,
                    position.symbol,
                    current_price,
                    MAX_HOLD,
                    1.0,
                    f"Held {held_minutes:.1f} min (max {self.max_hold_minutes:g})",
                )
        return None

    def close_position(
        self,
        trade_id: str,
        reason: str,
        *,
        price_hint: Optional[float] = None,
        cooldown_seconds: float = 0.0,
        loss_cooldown_seconds: float = 0.0,
    ) -> Optional[ClosedTrade]:
        """Sell the full quantity of ``trade_id`` and drop it from the open set.

        Returns ``None`` when the position is unknown or already closing.
        Raises :class:`ExecutionError` when the sell fails; the position then
        stays open for the next attempt. On a partial fill the unsold
        remainder stays open under the same id and the returned trade covers
        only the sold quantity; the store receives the cumulative P&L once
        the last of it is sold.
        """
        with self._lock:
            position = self._positions.get(trade_id)
            if position is None or trade_id in self._closing:
                return None
            self._closing.add(trade_id)

        try:
            result = self.executor.execute_order(position.symbol, SELL, position.quantity, self.test_mode)
        except ExecutionError as exc:
            with self._lock:
                self._closing.discard(trade_id)
            logger.error("SELL %s failed (%s); position kept open: %s", position.symbol, reason, exc)
            log_anomaly("Exit Failed", trade_id=trade_id, symbol=position.symbol, reason=reason, error=str(exc))
            self._alert(
                f"[position_manager] Failed to close {position.symbol}",
                context={"trade_id": trade_id, "reason": reason, "error": str(exc)},
                level="ERROR",
            )
            raise

        sell_price = float(result.executed_price or price_hint or position.buy_price)
        sold = min(float(result.quantity or position.quantity), position.quantity)
        profit_loss = (sell_price - position.buy_price) * sold
        closed_at = self._clock()
        remaining = position.quantity - sold

        if remaining >= MIN_REMAINING_QUANTITY:
            leftover = replace(position, quantity=remaining, realized_pnl=position.realized_pnl + profit_loss)
            with self._lock:
                self._positions[trade_id] = leftover
                self._closing.discard(trade_id)
            logger.warning(
                "SELL %s partially filled (%s): %.8f of %.8f sold, %.8f still open",
                position.symbol,
                reason,
                sold,
                position.quantity,
                remaining,
            )
            log_anomaly("Partial Exit", trade_id=trade_id, symbol=position.symbol, sold=sold, remaining=remaining)
            self._alert(
                f"[position_manager] Partial close of {position.symbol}",
                context={"trade_id": trade_id, "reason": reason, "sold": sold, "remaining": remaining},
                level="WARN",
            )
            return ClosedTrade(replace(position, quantity=sold), sell_price, profit_loss, reason, closed_at)

        cooldown = cooldown_seconds
        total_pnl = position.realized_pnl + profit_loss
        if total_pnl < 0:
            cooldown = max(cooldown, loss_cooldown_seconds)

        with self._lock:
            self._positions.pop(trade_id, None)
            self._closing.discard(trade_id)
            if cooldown > 0:
                self._cooldowns[position.symbol] = closed_at + cooldown

        logger.info(
            "Closed %s (%s): %.8f -> %.8f, P&L %.8f",
            position.symbol,
            reason,
            position.buy_price,
            sell_price,
            profit_loss,
        )
        self._persist_outcome(trade_id, total_pnl, closed_at)
        return ClosedTrade(position, sell_price, profit_loss, reason, closed_at)

    def _persist_outcome(self, trade_id: str, profit_loss: float, closed_at: float) -> None:
        if self.store is None:
            return
        try:
            self.store.persist_round_trip_outcome(trade_id, profit_loss, closed_at)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.error("Failed to persist outcome for %s: %s", trade_id, exc)
            log_anomaly("Outcome Persist Failed", trade_id=trade_id, profit_loss=profit_loss, error=str(exc))

    # --- recovery --------------------------------------------------------

    def load_open_positions(self, records: Iterable[Dict[str, Any]]) -> int:
        """Rebuild open positions from BUY rows still ``PENDING``.

        A second open BUY for an already-held symbol is skipped and alerted.
        Returns the number of positions loaded.
        """
        loaded = 0
        for row in records:
            if str(row.get("side", "")).upper() != BUY or row.get("status") != STATUS_PENDING:
                continue
            try:
                position = Position(
                    trade_id=str(row["id"]),
                    symbol=str(row["symbol"]),
                    buy_price=float(row["price"]),
                    quantity=float(row["quantity"]),
                    opened_at=to_epoch(row.get("executed_at") or row.get("created_at")) or self._clock(),
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed open trade %r: %s", row.get("id"), exc)
                continue
            with self._lock:
                if position.trade_id in self._positions:
                    continue
                if self.has_position(position.symbol):
                    duplicate = True
                else:
                    duplicate = False
                    self._positions[position.trade_id] = position
            if duplicate:
                logger.warning("Duplicate open position for %s ignored (trade %s)", position.symbol, position.trade_id)
                self._alert(
                    f"[position_manager] Duplicate open trade for {position.symbol}",
                    context={"trade_id": position.trade_id},
                    level="WARN",
                )
                continue
            loaded += 1
        if loaded:
            logger.info("Reconciled %d open position(s) from the trade log", loaded)
        return loaded


__all__ = [
    "MAX_HOLD",
    "PROFIT_PROTECT",
    "STOP_LOSS",
    "TAKE_PROFIT",
    "ClosedTrade",
    "ExitDecision",
    "Position",
    "PositionManager",
]

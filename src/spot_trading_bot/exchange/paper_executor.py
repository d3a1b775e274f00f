"""
paper_executor.py

Simulated market orders filled at the current ticker price (plus optional
slippage) and recorded in the trade ledger like real fills.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from spot_trading_bot.bot.interfaces import (
    BUY,
    SELL,
    STATUS_EXECUTED,
    STATUS_PENDING,
    ExecutionError,
    MarketDataClient,
    OrderResult,
)
from spot_trading_bot.bot.utils.alert import send_alert
from spot_trading_bot.ledger.trade_ledger import TradeLedger
from spot_trading_bot.utils.system_logger import get_system_logger, log_anomaly

logger = get_system_logger().getChild("paper_executor")


def record_fill(
    ledger: Optional[TradeLedger],
    symbol: str,
    side: str,
    quantity: float,
    price: float,
    test_mode: bool,
    **extra: Any,
) -> OrderResult:
    """Record a filled market order and return its :class:`OrderResult`.

    BUY rows are stored ``PENDING`` (position open); SELL rows ``EXECUTED``.
    The order has already filled when this runs, so a failed ledger write is
    logged and alerted but the fill is still returned under a generated id.
    """
    status = STATUS_PENDING if side == BUY else STATUS_EXECUTED
    if ledger is None:
        trade_id = extra.pop("order_id", None) or uuid.uuid4().hex
    else:
        try:
            row = ledger.record_trade(symbol, side, quantity, price, status, test_mode=test_mode, **extra)
        except OSError as exc:
            trade_id = uuid.uuid4().hex
            logger.error("Filled %s %s %.8f @ %.8f but ledger write failed: %s", side, symbol, quantity, price, exc)
            log_anomaly(
                "Ledger Write Failed",
                trade_id=trade_id,
                symbol=symbol,
                side=side,
                quantity=quantity,
                price=price,
                error=str(exc),
            )
            send_alert(
                f"[ledger] Fill for {symbol} not recorded",
                context={"trade_id": trade_id, "side": side, "quantity": quantity, "price": price, "error": str(exc)},
                level="CRITICAL",
            )
        else:
            trade_id = row["id"]
    return OrderResult(trade_id=str(trade_id), executed_price=float(price), status=STATUS_EXECUTED, quantity=quantity)


def validate_order(symbol: str, side: str, quantity: float) -> str:
    side = (side or "").upper()
    if side not in (BUY, SELL):
        raise ExecutionError(f"Unsupported order side {side!r}")
    if quantity is None or quantity <= 0:
        raise ExecutionError(f"Order quantity for {symbol} must be positive (got {quantity!r})")
    return side


class PaperExecutionClient:
    """Fills every order at the market data client's current price."""

    def __init__(
        self,
        market_data: MarketDataClient,
        ledger: Optional[TradeLedger] = None,
        slippage_pct: float = 0.0,
    ) -> None:
        self.market_data = market_data
        self.ledger = ledger
        self.slippage_pct = slippage_pct

    def execute_order(self, symbol: str, side: str, quantity: float, test_mode: bool = True) -> OrderResult:
        side = validate_order(symbol, side, quantity)
        quote = self.market_data.get_price(symbol)
        if quote is None or quote.price <= 0:
            raise ExecutionError(f"No price available to fill {side} {symbol}")
        factor = 1 + self.slippage_pct / 100.0 if side == BUY else 1 - self.slippage_pct / 100.0
        fill_price = quote.price * factor
        logger.info("Paper fill %s %s %.8f @ %.8f", side, symbol, quantity, fill_price)
        return record_fill(self.ledger, symbol, side, quantity, fill_price, True, simulated=True)


__all__ = ["PaperExecutionClient", "record_fill", "validate_order"]

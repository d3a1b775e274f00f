"""
Base strategy interface for spot trading strategies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Sequence

from spot_trading_bot.bot.interfaces import Candle
from spot_trading_bot.config import StrategySettings
from spot_trading_bot.config.constants import DEFAULT_STOP_LOSS_PCT, DEFAULT_TAKE_PROFIT_PCT

BUY = "buy"
SELL = "sell"
HOLD = "hold"


@dataclass(frozen=True)
class TradeSignal:
    """Decision returned by a strategy: action, confidence (0-1) and rationale."""

    action: str
    confidence: float
    reason: str
    indicators: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_buy(self) -> bool:
        return self.action == BUY

    @property
    def is_sell(self) -> bool:
        return self.action == SELL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "confidence": self.confidence,
            "reason": self.reason,
            "indicators": dict(self.indicators),
        }


def hold(reason: str, **indicators: Any) -> TradeSignal:
    return TradeSignal(HOLD, 0.0, reason, indicators)


class BaseStrategy(ABC):
    """
    Abstract base class for all trading strategies.

    Strategies are stateless: every call is a pure function of the supplied
    series. Exit thresholds are percentages of the entry price.
    """

    name = "base"

    def __init__(
        self,
        settings: Optional[StrategySettings] = None,
        stop_loss_pct: float = DEFAULT_STOP_LOSS_PCT,
        take_profit_pct: float = DEFAULT_TAKE_PROFIT_PCT,
    ) -> None:
        self.settings = settings or StrategySettings()
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct

    def tuned(
        self,
        stop_loss_pct: Optional[float] = None,
        take_profit_pct: Optional[float] = None,
        **setting_changes: Any,
    ) -> "BaseStrategy":
        """Return a copy with different exit thresholds and/or indicator settings."""
        return type(self)(
            replace(self.settings, **setting_changes) if setting_changes else self.settings,
            self.stop_loss_pct if stop_loss_pct is None else stop_loss_pct,
            self.take_profit_pct if take_profit_pct is None else take_profit_pct,
        )

    def hard_exit(self, current_price: float, buy_price: Optional[float]) -> Optional[TradeSignal]:
        """Stop-loss / take-profit check shared by every strategy."""
        if buy_price is None or buy_price <= 0:
            return None
        change_pct = (current_price - buy_price) / buy_price * 100.0
        stop_price = buy_price * (1 - self.stop_loss_pct / 100.0)
        if current_price <= stop_price:
            return TradeSignal(
                SELL,
                1.0,
                f"Stop loss: {change_pct:.2f}% (limit -{self.stop_loss_pct:.2f}%)",
                {"exit_type": "STOP_LOSS", "change_pct": change_pct},
            )
        target_price = buy_price * (1 + self.take_profit_pct / 100.0)
        if current_price >= target_price:
            return TradeSignal(
                SELL,
                0.9,
                f"Take profit: +{change_pct:.2f}% (target +{self.take_profit_pct:.2f}%)",
                {"exit_type": "TAKE_PROFIT", "change_pct": change_pct},
            )
        return None

    @abstractmethod
    def analyze_buy_opportunity(
        self,
        prices: Sequence[float],
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        """Return a buy or hold signal for the latest price in ``prices``."""
        raise NotImplementedError("Subclasses must implement analyze_buy_opportunity.")

    @abstractmethod
    def analyze_sell_opportunity(
        self,
        prices: Sequence[float],
        buy_price: Optional[float] = None,
        candles: Optional[Sequence[Candle]] = None,
    ) -> TradeSignal:
        """Return a sell or hold signal for an open long entered at ``buy_price``."""
        raise NotImplementedError("Subclasses must implement analyze_sell_opportunity.")


__all__ = ["BUY", "HOLD", "SELL", "BaseStrategy", "TradeSignal", "hold"]

"""Strategy implementations and the name -> class registry."""

from __future__ import annotations

from typing import Dict, Optional, Type

from spot_trading_bot.config import ConfigurationError, StrategySettings, TradingConfig

from .base import BaseStrategy, TradeSignal
from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy

STRATEGIES: Dict[str, Type[BaseStrategy]] = {
    MeanReversionStrategy.name: MeanReversionStrategy,
    MomentumStrategy.name: MomentumStrategy,
}


def build_strategy(
    name: str,
    settings: Optional[StrategySettings] = None,
    stop_loss_pct: Optional[float] = None,
    take_profit_pct: Optional[float] = None,
) -> BaseStrategy:
    """Instantiate the strategy registered under ``name``."""
    try:
        cls = STRATEGIES[name]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown strategy {name!r}; expected one of {sorted(STRATEGIES)}") from exc
    strategy = cls(settings)
    return strategy.tuned(stop_loss_pct=stop_loss_pct, take_profit_pct=take_profit_pct)


def strategy_for(config: TradingConfig) -> BaseStrategy:
    return build_strategy(
        config.strategy,
        config.strategy_settings,
        config.stop_loss_percent,
        config.take_profit_percent,
    )


__all__ = [
    "STRATEGIES",
    "BaseStrategy",
    "MeanReversionStrategy",
    "MomentumStrategy",
    "TradeSignal",
    "build_strategy",
    "strategy_for",
]

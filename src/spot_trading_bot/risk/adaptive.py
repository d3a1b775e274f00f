"""
adaptive.py

Progressively more conservative trading parameters as losses accumulate.

Tiers by consecutive losing round trips:
- normal (0-1): base settings
- cautious (2): tighter stop, smaller allocation, stricter entry filters
- defensive (3+): tightest stop, minimum exposure, strictest filters

The tier is a pure function of the loss streak; nothing is persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from spot_trading_bot.config import TradingConfig

NORMAL = "normal"
CAUTIOUS = "cautious"
DEFENSIVE = "defensive"

_TIER_FACTORS: Dict[str, Dict[str, float]] = {
    NORMAL: {
        "stop_loss": 1.0,
        "take_profit": 1.0,
        "max_allocation": 1.0,
        "safety_reserve": 1.0,
        "min_volume": 1.0,
        "cooldown": 1.0,
        "profit_protect": 1.0,
        "min_volatility": 1.0,
        "rsi_oversold": 1.0,
    },
    CAUTIOUS: {
        "stop_loss": 0.8,
        "take_profit": 1.2,
        "max_allocation": 0.8,
        "safety_reserve": 1.5,
        "min_volume": 1.5,
        "cooldown": 1.5,
        "profit_protect": 0.8,
        "min_volatility": 1.3,
        "rsi_oversold": 0.9,
    },
    DEFENSIVE: {
        "stop_loss": 0.6,
        "take_profit": 1.4,
        "max_allocation": 0.6,
        "safety_reserve": 2.0,
        "min_volume": 2.0,
        "cooldown": 2.0,
        "profit_protect": 0.7,
        "min_volatility": 1.5,
        "rsi_oversold": 0.8,
    },
}

_CONFIDENCE_BUMP = {NORMAL: 0.0, CAUTIOUS: 0.15, DEFENSIVE: 0.3}


@dataclass(frozen=True)
class AdaptiveRiskParams:  # pylint: disable=too-many-instance-attributes
    mode: str
    loss_streak: int
    reason: str
    stop_loss_pct: float
    take_profit_pct: float
    max_allocation_per_pair_pct: float
    safety_reserve_pct: float
    min_quote_volume_24h: float
    pair_cooldown_seconds: float
    profit_protect_pct: float
    min_volatility_pct: float
    min_confidence: float
    rsi_oversold: float

    def to_dict(self) -> dict:
        return asdict(self)


def tier_for(loss_streak: int) -> str:
    if loss_streak <= 1:
        return NORMAL
    if loss_streak == 2:
        return CAUTIOUS
    return DEFENSIVE


def adaptive_params(loss_streak: int, config: Optional[TradingConfig] = None) -> AdaptiveRiskParams:
    """Return the parameter set for ``loss_streak`` scaled from ``config``'s base values."""

    base = config or TradingConfig(total_capital=1.0, symbols=("BTCUSDT",))
    risk = base.risk
    mode = tier_for(loss_streak)
    f = _TIER_FACTORS[mode]

    if mode == NORMAL:
        reason = "Normal operation: no recent loss streak"
    elif mode == CAUTIOUS:
        reason = f"{loss_streak} consecutive losses: cautious mode"
    else:
        reason = f"{loss_streak} consecutive losses: DEFENSIVE mode"

    return AdaptiveRiskParams(
        mode=mode,
        loss_streak=loss_streak,
        reason=reason,
        stop_loss_pct=base.stop_loss_percent * f["stop_loss"],
        take_profit_pct=base.take_profit_percent * f["take_profit"],
        max_allocation_per_pair_pct=risk.max_allocation_per_pair_pct * f["max_allocation"],
        safety_reserve_pct=min(risk.safety_reserve_pct * f["safety_reserve"], 99.0),
        min_quote_volume_24h=risk.min_quote_volume_24h * f["min_volume"],
        pair_cooldown_seconds=risk.pair_cooldown_seconds * f["cooldown"],
        profit_protect_pct=risk.profit_protect_pct * f["profit_protect"],
        min_volatility_pct=risk.min_volatility_pct * f["min_volatility"],
        min_confidence=min(1.0, base.min_confidence + _CONFIDENCE_BUMP[mode]),
        rsi_oversold=base.strategy_settings.rsi_oversold * f["rsi_oversold"],
    )


def has_mode_changed(previous_streak: int, current_streak: int) -> bool:
    return tier_for(previous_streak) != tier_for(current_streak)


def adjustment_summary(params: AdaptiveRiskParams) -> str:
    """Short human-readable list of the adjustments active in ``params``."""
    if params.mode == NORMAL:
        return ""
    f = _TIER_FACTORS[params.mode]

    def pct(factor: float) -> str:
        return f"{(factor - 1) * 100:+.0f}%"

    parts = [
        f"Stop loss: {pct(f['stop_loss'])}",
        f"Allocation: {pct(f['max_allocation'])}",
        f"Selectivity: +{_CONFIDENCE_BUMP[params.mode]:.2f} confidence",
        f"Min volume: {pct(f['min_volume'])}",
    ]
    if params.mode == DEFENSIVE:
        parts.append(f"Cooldown: {pct(f['cooldown'])}")
    return " | ".join(parts)


__all__ = [
    "CAUTIOUS",
    "DEFENSIVE",
    "NORMAL",
    "AdaptiveRiskParams",
    "adaptive_params",
    "adjustment_summary",
    "has_mode_changed",
    "tier_for",
]

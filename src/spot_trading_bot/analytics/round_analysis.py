"""Last-round performance review.

Summarizes the round trips closed in a recent window and turns them into
operator recommendations:

- Metrics: trade count, wins/losses, win rate, total/average P&L, best/worst trade
- Recommendations: ``danger`` / ``warning`` / ``info`` messages
- Suggested changes: tighter stop-loss, wider take-profit, higher min confidence
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from spot_trading_bot.bot.interfaces import TradeStore
from spot_trading_bot.safety.circuit_breaker import RoundTrip, round_trips

DANGER = "danger"
WARNING = "warning"
INFO = "info"

# Minimum sample sizes before win-rate/average-loss advice is given
_MIN_TRADES_FOR_WIN_RATE = 5
_MIN_TRADES_FOR_AVG_LOSS = 3


@dataclass(frozen=True)
class RoundMetrics:  # pylint: disable=too-many-instance-attributes
    last_round_time: Optional[float] = None
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    max_gain: float = 0.0
    max_loss: float = 0.0
    trips: List[RoundTrip] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RoundAnalysis:
    metrics: RoundMetrics
    needs_attention: bool
    recommendations: List[Dict[str, str]]
    suggested_changes: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "needs_attention": self.needs_attention,
            "recommendations": list(self.recommendations),
            "suggested_changes": dict(self.suggested_changes),
        }


def last_round_trades(store: TradeStore, window_minutes: float = 60.0, now: Optional[float] = None) -> List[Dict[str, Any]]:
    """Trades recorded in the last ``window_minutes``."""
    now = time.time() if now is None else now
    return store.load_trades(since=now - window_minutes * 60.0)


def calculate_round_metrics(trades: Iterable[Dict[str, Any]]) -> RoundMetrics:
    """Aggregate the closed round trips found in ``trades``."""
    trips = round_trips(trades)
    if not trips:
        return RoundMetrics()

    profits = [trip.profit_loss for trip in trips]
    total = sum(profits)
    wins = sum(1 for p in profits if p > 0)
    losses = sum(1 for p in profits if p < 0)
    return RoundMetrics(
        last_round_time=max(trip.closed_at for trip in trips),
        total_trades=len(trips),
        winning_trades=wins,
        losing_trades=losses,
        win_rate=wins / len(trips) * 100.0,
        total_pnl=total,
        avg_pnl=total / len(trips),
        max_gain=max(profits),
        max_loss=min(profits),
        trips=trips,
    )


def _recommendations(metrics: RoundMetrics) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    enough = metrics.total_trades >= _MIN_TRADES_FOR_WIN_RATE
    if enough and metrics.win_rate < 30:
        out.append({"type": DANGER, "message": "Win rate very low this round; raise the minimum signal confidence."})
    elif enough and metrics.win_rate < 50:
        out.append({"type": WARNING, "message": "Win rate below 50%; review the entry criteria."})

    if metrics.total_pnl < 0:
        out.append({"type": DANGER, "message": "Round closed at a loss; review stop-loss and take-profit levels."})

    if metrics.total_trades > 0 and abs(metrics.max_loss) > abs(metrics.avg_pnl) * 3:
        out.append({"type": WARNING, "message": "Worst loss far exceeds the average trade; tighten the stop-loss."})

    if 0 < metrics.max_gain < abs(metrics.max_loss) * 0.5:
        out.append({"type": INFO, "message": "Take-profit may be too conservative; consider widening it."})

    if metrics.total_trades >= _MIN_TRADES_FOR_AVG_LOSS and metrics.avg_pnl < -10:
        out.append({"type": DANGER, "message": "Average loss per trade is high; reduce position size."})
    return out


def _suggested_changes(metrics: RoundMetrics, stop_loss_cap_quote: float = 50.0) -> Dict[str, float]:
    changes: Dict[str, float] = {}
    enough = metrics.total_trades >= _MIN_TRADES_FOR_WIN_RATE
    if enough and metrics.win_rate < 30:
        changes["min_confidence"] = 0.85
    elif enough and metrics.win_rate < 50:
        changes["min_confidence"] = 0.75

    if abs(metrics.max_loss) > stop_loss_cap_quote:
        changes["stop_loss_percent"] = 2.0

    if metrics.win_rate > 0 and metrics.max_gain < abs(metrics.max_loss) * 0.7:
        changes["take_profit_percent"] = 5.0
    return changes


def analyze_round(metrics: RoundMetrics) -> RoundAnalysis:
    """Turn ``metrics`` into recommendations and suggested config overrides.

    ``suggested_changes`` keys match :class:`TradingConfig` field names so the
    result can be fed to ``TradingConfig.with_overrides``.
    """
    recommendations = _recommendations(metrics)
    needs_attention = (
        metrics.win_rate < 50 or metrics.total_pnl < 0 or any(r["type"] == DANGER for r in recommendations)
    )
    return RoundAnalysis(
        metrics=metrics,
        needs_attention=needs_attention,
        recommendations=recommendations,
        suggested_changes=_suggested_changes(metrics),
    )


__all__ = [
    "DANGER",
    "INFO",
    "WARNING",
    "RoundAnalysis",
    "RoundMetrics",
    "analyze_round",
    "calculate_round_metrics",
    "last_round_trades",
]

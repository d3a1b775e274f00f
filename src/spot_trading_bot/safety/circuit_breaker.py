"""Circuit breaker over realized round-trip outcomes.

Statistics are pulled from the trade log on demand (today's rows only), so a
restarted process sees the same loss streak and daily P&L as before. The
pause itself is persisted atomically so it also survives restarts.

A pause blocks new entries only; exit logic keeps running.
"""

from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from spot_trading_bot.bot.interfaces import BUY, SELL, STATUS_CANCELLED, STATUS_FAILED, TradeStore
from spot_trading_bot.bot.utils.alert import send_alert
from spot_trading_bot.config import RiskSettings
from spot_trading_bot.config.constants import CIRCUIT_BREAKER_STATE_FILE
from spot_trading_bot.ledger.trade_ledger import record_time, to_epoch
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("circuit_breaker")

_SKIPPED_STATUSES = {STATUS_FAILED, STATUS_CANCELLED}


@dataclass(frozen=True)
class RoundTrip:
    symbol: str
    profit_loss: float
    closed_at: float
    trade_id: Optional[str] = None


@dataclass(frozen=True)
class OperationStats:  # pylint: disable=too-many-instance-attributes
    loss_streak: int = 0
    daily_pnl: float = 0.0
    circuit_breaker_active: bool = False
    circuit_breaker_until: Optional[float] = None
    total_operations_today: int = 0
    last_operation_time: Optional[float] = None
    last_operation_profit: Optional[float] = None
    last_operation_side: Optional[str] = None
    last_operation_symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PauseDecision:
    pause: bool
    reason: Optional[str] = None
    pause_until: Optional[float] = None


def start_of_day(now: Optional[float] = None) -> float:
    """Epoch seconds of the most recent UTC midnight."""
    moment = datetime.fromtimestamp(time.time() if now is None else now, tz=timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0).timestamp()


def _as_float(value: Any) -> Optional[float]:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def round_trips(trades: Iterable[Dict[str, Any]]) -> List[RoundTrip]:
    """Pair trades into closed round trips, oldest first.

    Each SELL takes its own ``profit_loss`` when present, otherwise the most
    recent unmatched BUY of the same symbol supplies it (its recorded P&L, or
    the price difference times quantity). BUY rows carrying a recorded outcome
    but no matching SELL in the log count as round trips on their own.
    """
    rows = sorted(
        (row for row in trades if row.get("status") not in _SKIPPED_STATUSES),
        key=lambda row: to_epoch(row.get("executed_at") or row.get("created_at")) or 0.0,
    )
    open_buys: Dict[str, List[Dict[str, Any]]] = {}
    consumed: set = set()
    trips: List[RoundTrip] = []

    for row in rows:
        side = str(row.get("side", "")).upper()
        symbol = str(row.get("symbol", ""))
        if side == BUY:
            open_buys.setdefault(symbol, []).append(row)
            continue
        if side != SELL:
            continue
        buy = open_buys.get(symbol, []).pop() if open_buys.get(symbol) else None
        if buy is not None:
            consumed.add(buy.get("id"))
        pnl = _as_float(row.get("profit_loss"))
        if pnl is None and buy is not None:
            pnl = _as_float(buy.get("profit_loss"))
            if pnl is None:
                sell_price, buy_price = _as_float(row.get("price")), _as_float(buy.get("price"))
                qty = _as_float(row.get("quantity")) or _as_float(buy.get("quantity"))
                if None not in (sell_price, buy_price, qty):
                    pnl = (sell_price - buy_price) * qty
        if pnl is None:
            continue
        closed_at = to_epoch(row.get("executed_at") or row.get("created_at")) or 0.0
        trips.append(RoundTrip(symbol, pnl, closed_at, (buy or row).get("id")))

    for row in rows:
        if str(row.get("side", "")).upper() != BUY or row.get("id") in consumed:
            continue
        pnl = _as_float(row.get("profit_loss"))
        closed_at = to_epoch(row.get("closed_at"))
        if pnl is not None and closed_at is not None:
            trips.append(RoundTrip(str(row.get("symbol", "")), pnl, closed_at, row.get("id")))

    trips.sort(key=lambda trip: trip.closed_at)
    return trips


def loss_streak(trips: Iterable[RoundTrip]) -> int:
    """Consecutive losing round trips counted back from the most recent."""
    streak = 0
    for trip in sorted(trips, key=lambda t: t.closed_at, reverse=True):
        if trip.profit_loss < 0:
            streak += 1
        else:
            break
    return streak


def compute_stats(
    trades: Iterable[Dict[str, Any]],
    window_start: float,
    *,
    streak_start: Optional[float] = None,
    breaker_until: Optional[float] = None,
    now: Optional[float] = None,
) -> OperationStats:
    """Aggregate today's closed round trips into :class:`OperationStats`.

    ``streak_start`` limits the loss streak to round trips closed after the
    last resume; the daily P&L always covers the whole window.
    """
    now = time.time() if now is None else now
    trades = list(trades)
    trips = [trip for trip in round_trips(trades) if trip.closed_at >= window_start]
    streak_floor = window_start if streak_start is None else max(window_start, streak_start)

    todays_rows = [
        row
        for row in trades
        if row.get("status") not in _SKIPPED_STATUSES and (record_time(row) or 0.0) >= window_start
    ]
    last_row = max(todays_rows, key=lambda row: record_time(row) or 0.0) if todays_rows else None
    last_trip = trips[-1] if trips else None

    return OperationStats(
        loss_streak=loss_streak(trip for trip in trips if trip.closed_at >= streak_floor),
        daily_pnl=sum(trip.profit_loss for trip in trips),
        circuit_breaker_active=breaker_until is not None and now < breaker_until,
        circuit_breaker_until=breaker_until if breaker_until is not None and now < breaker_until else None,
        total_operations_today=len(todays_rows),
        last_operation_time=record_time(last_row) if last_row else None,
        last_operation_profit=last_trip.profit_loss if last_trip else None,
        last_operation_side=str(last_row.get("side")).upper() if last_row else None,
        last_operation_symbol=last_row.get("symbol") if last_row else None,
    )


def should_pause(
    stats: OperationStats,
    initial_capital: float,
    *,
    loss_streak_limit: int,
    daily_max_drawdown_pct: float,
    pause_minutes: float,
    now: Optional[float] = None,
) -> PauseDecision:
    """Decide whether new entries must pause.

    While a pause is active the same ``pause_until`` is returned until it
    elapses, so repeated calls are idempotent.
    """
    now = time.time() if now is None else now
    until = stats.circuit_breaker_until
    if stats.circuit_breaker_active and until is not None and now < until:
        return PauseDecision(True, "Circuit breaker active", until)

    reason = None
    if stats.loss_streak >= loss_streak_limit:
        reason = f"{stats.loss_streak} consecutive losses (limit {loss_streak_limit})"
    elif initial_capital > 0 and stats.daily_pnl / initial_capital <= -daily_max_drawdown_pct / 100.0:
        drawdown = -stats.daily_pnl / initial_capital * 100.0
        reason = f"Daily drawdown {drawdown:.2f}% >= {daily_max_drawdown_pct:.2f}%"
    if reason is None:
        return PauseDecision(False)
    return PauseDecision(True, reason, now + pause_minutes * 60.0)


def _default_state() -> Dict[str, Any]:
    return {
        "active": False,
        "until": None,
        "reason": None,
        "activated_at": None,
        "last_resume_at": None,
        "state_version": 1,
    }


class CircuitBreaker:
    """Stateful gate wrapping :func:`compute_stats` / :func:`should_pause`."""

    def __init__(
        self,
        store: TradeStore,
        initial_capital: float,
        risk: Optional[RiskSettings] = None,
        state_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        alert: Callable[..., Any] = send_alert,
    ) -> None:
        self._store = store
        self.initial_capital = initial_capital
        self.risk = risk or RiskSettings()
        self.state_path = Path(state_path) if state_path is not None else CIRCUIT_BREAKER_STATE_FILE
        self._clock = clock
        self._alert = alert
        self._lock = threading.RLock()
        self._state = self._load_state()
        self._stats = OperationStats()

    def _load_state(self) -> Dict[str, Any]:
        state = _default_state()
        if not self.state_path.exists():
            return state
        try:
            with self.state_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            if not isinstance(data, dict):
                raise ValueError("circuit breaker state malformed (not a mapping)")
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read breaker state at %s: %s; using defaults", self.state_path, exc)
            return state
        state.update(data)
        return state

    def _write_state(self) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = dict(self._state)
        snapshot["updated_at"] = datetime.now(timezone.utc).isoformat()
        tmp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(snapshot, handle, indent=2, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.state_path)

    @property
    def state(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._state)

    @property
    def stats(self) -> OperationStats:
        with self._lock:
            return self._stats

    def is_paused(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        with self._lock:
            until = self._state.get("until")
            return bool(self._state.get("active")) and until is not None and now < until

    def refresh_stats(self, now: Optional[float] = None) -> OperationStats:
        """Recompute stats from today's trades without changing the pause state."""
        now = self._clock() if now is None else now
        window = start_of_day(now)
        trades = self._store.load_trades(since=window)
        with self._lock:
            until = self._state.get("until") if self._state.get("active") else None
            self._stats = compute_stats(
                trades,
                window,
                streak_start=self._state.get("last_resume_at"),
                breaker_until=until,
                now=now,
            )
            return self._stats

    def evaluate(self, now: Optional[float] = None) -> PauseDecision:
        """Refresh stats, resume an elapsed pause, and activate a new one if needed."""
        now = self._clock() if now is None else now
        with self._lock:
            if self._state.get("active") and now >= (self._state.get("until") or 0.0):
                self._resume(now, "pause elapsed")
            stats = self.refresh_stats(now)
            decision = should_pause(
                stats,
                self.initial_capital,
                loss_streak_limit=self.risk.loss_streak_limit,
                daily_max_drawdown_pct=self.risk.daily_max_drawdown_pct,
                pause_minutes=self.risk.circuit_breaker_pause_minutes,
                now=now,
            )
            if decision.pause and not stats.circuit_breaker_active:
                self._activate(decision, now)
            return decision

    def _activate(self, decision: PauseDecision, now: float) -> None:
        self._state.update(
            {"active": True, "until": decision.pause_until, "reason": decision.reason, "activated_at": now}
        )
        self._write_state()
        self._stats = OperationStats(
            **{
                **asdict(self._stats),
                "circuit_breaker_active": True,
                "circuit_breaker_until": decision.pause_until,
            }
        )
        logger.warning("Circuit breaker activated: %s (until %s)", decision.reason, decision.pause_until)
        self._alert(
            "[circuit_breaker] New entries paused",
            context={"reason": decision.reason, "until": decision.pause_until, **self._stats.to_dict()},
            level="CRITICAL",
        )

    def _resume(self, now: float, why: str) -> None:
        self._state.update({"active": False, "until": None, "reason": None, "last_resume_at": now})
        self._write_state()
        logger.info("Circuit breaker cleared (%s); new entries may resume", why)
        self._alert("[circuit_breaker] Pause cleared", context={"why": why}, level="WARN")

    def reset(self, now: Optional[float] = None, why: str = "manual reset") -> None:
        """Clear the pause immediately regardless of elapsed time."""
        now = self._clock() if now is None else now
        with self._lock:
            self._resume(now, why)
            self.refresh_stats(now)


__all__ = [
    "CircuitBreaker",
    "OperationStats",
    "PauseDecision",
    "RoundTrip",
    "compute_stats",
    "loss_streak",
    "round_trips",
    "should_pause",
    "start_of_day",
]

"""
orchestrator.py

Wires the pair monitor, strategy, capital engine, position manager and
circuit breaker together behind three periodic tasks:

- market scan (~3s): refresh prices/candles, look for entries
- position check (~2s): re-price open positions, close on exit signals
- reinvestment check (~10s): breaker expiry / manual reset, tier changes,
  capital redistribution

Each task takes one adaptive-risk snapshot per tick. A failure on one symbol
never aborts the rest of the tick. Stopping halts the tasks only; open
positions and accounting are left untouched.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from spot_trading_bot.bot.interfaces import ExecutionClient, ExecutionError, MarketDataClient, TradeStore
from spot_trading_bot.bot.position_manager import Position, PositionManager
from spot_trading_bot.bot.scheduler import PeriodicTask
from spot_trading_bot.bot.strategies import BaseStrategy, strategy_for
from spot_trading_bot.bot.utils.alert import send_alert
from spot_trading_bot.capital.distribution import CapitalAllocation, CapitalDistributionEngine, calculate_quantity
from spot_trading_bot.config import TradingConfig
from spot_trading_bot.config.constants import (
    CANDLE_BUFFER_SIZE,
    CANDLE_REFRESH_SECONDS,
    MARKET_SCAN_INTERVAL,
    MIN_VOLATILITY_POINTS,
    POSITION_CHECK_INTERVAL,
    REINVEST_CHECK_INTERVAL,
    REINVEST_THRESHOLD_PCT,
)
from spot_trading_bot.monitor.pair_monitor import PairMonitorStore
from spot_trading_bot.risk.adaptive import AdaptiveRiskParams, adaptive_params, adjustment_summary, has_mode_changed
from spot_trading_bot.safety.circuit_breaker import CircuitBreaker
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("orchestrator")


class TradingOrchestrator:  # pylint: disable=too-many-instance-attributes
    """One trading session: owns all mutable session state."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        config: TradingConfig,
        market_data: MarketDataClient,
        executor: ExecutionClient,
        store: TradeStore,
        *,
        strategy: Optional[BaseStrategy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        reset_signal: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.time,
        scan_interval: float = MARKET_SCAN_INTERVAL,
        position_interval: float = POSITION_CHECK_INTERVAL,
        reinvest_interval: float = REINVEST_CHECK_INTERVAL,
        candle_refresh_seconds: float = CANDLE_REFRESH_SECONDS,
        alert: Callable[..., Any] = send_alert,
    ) -> None:
        self.config = config
        self.market_data = market_data
        self.executor = executor
        self.store = store
        self._strategy = strategy
        self._clock = clock
        self._alert = alert
        self._reset_signal = reset_signal
        self.intervals = {
            "market_scan": scan_interval,
            "position_check": position_interval,
            "reinvest_check": reinvest_interval,
        }
        self.candle_refresh_seconds = candle_refresh_seconds

        self.monitor = PairMonitorStore(clock=clock)
        self.capital_engine = CapitalDistributionEngine(self._lookup_price, config.risk)
        self.positions = PositionManager(
            executor,
            store,
            max_positions=config.max_positions,
            test_mode=config.test_mode,
            max_hold_minutes=config.max_hold_minutes,
            clock=clock,
            alert=alert,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            store, config.total_capital, config.risk, clock=clock, alert=alert
        )

        self._lock = threading.RLock()
        self._allocations: Dict[str, CapitalAllocation] = {}
        self._capital_base = config.total_capital
        self._session_pnl = 0.0
        self._last_streak = 0
        self._last_candle_fetch: Dict[str, float] = {}
        self._reset_requested = threading.Event()
        self._tasks: List[PeriodicTask] = []
        self._running = False

    # --- helpers ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def strategy(self) -> BaseStrategy:
        if self._strategy is None:
            self._strategy = strategy_for(self.config)
        return self._strategy

    @property
    def allocations(self) -> Dict[str, CapitalAllocation]:
        with self._lock:
            return dict(self._allocations)

    @property
    def session_capital(self) -> float:
        with self._lock:
            return self.config.total_capital + self._session_pnl

    def _lookup_price(self, symbol: str) -> Optional[float]:
        quote = self.market_data.get_price(symbol)
        return quote.price if quote is not None else None

    def risk_snapshot(self) -> AdaptiveRiskParams:
        """Adaptive parameters for the current loss streak."""
        return adaptive_params(self.circuit_breaker.stats.loss_streak, self.config)

    def _tuned_strategy(self, params: AdaptiveRiskParams) -> BaseStrategy:
        return self.strategy.tuned(
            stop_loss_pct=params.stop_loss_pct,
            take_profit_pct=params.take_profit_pct,
            rsi_oversold=params.rsi_oversold,
        )

    def _distribute(self, capital: float, params: AdaptiveRiskParams) -> Dict[str, CapitalAllocation]:
        allocations = self.capital_engine.distribute(
            capital,
            list(self.config.symbols),
            self.config.quantity_per_trade,
            max_allocation_pct=params.max_allocation_per_pair_pct,
            safety_reserve_pct=params.safety_reserve_pct,
        )
        with self._lock:
            self._allocations = allocations
            self._capital_base = capital
        return allocations

    # --- lifecycle -------------------------------------------------------

    def start(self, run_tasks: bool = True) -> None:
        """Validate config, seed state and start the periodic tasks.

        Raises ``ConfigurationError`` (and stays stopped) on invalid options.
        """
        if self._running:
            return
        self.config.validate()
        strategy = self.strategy

        self.monitor.watch(self.config.symbols)
        self.reconcile()
        self.circuit_breaker.evaluate()
        params = self.risk_snapshot()
        self._last_streak = params.loss_streak
        allocations = self._distribute(self.session_capital, params)
        if not allocations:
            logger.warning("No capital allocated at start (prices unavailable); will retry on reinvestment check")

        self._running = True
        if run_tasks:
            self._tasks = [
                PeriodicTask("market_scan", self.intervals["market_scan"], self.scan_market),
                PeriodicTask("position_check", self.intervals["position_check"], self.check_positions),
                PeriodicTask("reinvest_check", self.intervals["reinvest_check"], self.reinvest_check),
            ]
            for task in self._tasks:
                task.start()
        logger.info(
            "Trading started: %d pairs, capital %.2f, strategy %s, %s mode",
            len(self.config.symbols),
            self.config.total_capital,
            strategy.name,
            "TEST" if self.config.test_mode else "LIVE",
        )
        self._alert(
            "[orchestrator] Trading started",
            context={"symbols": list(self.config.symbols), "test_mode": self.config.test_mode},
        )

    def stop(self) -> None:
        """Halt all periodic tasks. Open positions are not liquidated."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.stop()
        was_running = self._running
        self._running = False
        self.monitor.clear()
        self._last_candle_fetch.clear()
        if was_running:
            logger.info("Trading stopped with %d open position(s) left untouched", self.positions.count())

    def reconcile(self) -> int:
        """Reload positions still open in the trade store."""
        try:
            records = self.store.load_trades()
        except (OSError, ValueError) as exc:
            logger.error("Reconcile failed to read trades: %s", exc)
            return 0
        return self.positions.load_open_positions(records)

    def clear_circuit_breaker(self) -> None:
        """Immediately lift a circuit-breaker pause."""
        self.circuit_breaker.reset(why="manual reset")
        self._reset_requested.clear()

    def request_manual_reset(self) -> None:
        """Queue a breaker reset for the next reinvestment check."""
        self._reset_requested.set()

    def update_watchlist(self, symbols: Iterable[str]) -> Dict[str, CapitalAllocation]:
        """Replace the watch set and rebalance capital across it."""
        new_config = self.config.with_overrides(symbols=tuple(symbols))
        old = set(self.config.symbols)
        self.config = new_config
        current = set(new_config.symbols)
        self.monitor.unwatch(old - current)
        self.monitor.watch([s for s in new_config.symbols if s not in old])
        params = self.risk_snapshot()
        with self._lock:
            existing = dict(self._allocations)
        rebalanced = self.capital_engine.rebalance(
            self.session_capital,
            new_config.symbols,
            existing,
            new_config.quantity_per_trade,
            max_allocation_pct=params.max_allocation_per_pair_pct,
            safety_reserve_pct=params.safety_reserve_pct,
        )
        with self._lock:
            self._allocations = rebalanced
        return rebalanced

    # --- market scan -----------------------------------------------------

    def _refresh_candles(self, symbol: str, now: float) -> None:
        last = self._last_candle_fetch.get(symbol)
        if last is not None and now - last < self.candle_refresh_seconds:
            return
        candles = self.market_data.get_candles(symbol, "1m", CANDLE_BUFFER_SIZE)
        if candles:
            self.monitor.set_candles(symbol, candles)
            self._last_candle_fetch[symbol] = now

    def scan_market(self) -> None:
        params = self.risk_snapshot()
        strategy = self._tuned_strategy(params)
        paused = self.circuit_breaker.is_paused(self._clock())
        for symbol in self.monitor.watched():
            try:
                self._scan_symbol(symbol, params, strategy, paused)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error("Market scan failed for %s: %s", symbol, exc, exc_info=True)

    def _scan_symbol(self, symbol: str, params: AdaptiveRiskParams, strategy: BaseStrategy, paused: bool) -> None:
        data = self.market_data.get_market_data(symbol)
        if data is None:
            logger.debug("No market data for %s this tick", symbol)
            return
        now = self._clock()
        snapshot = self.monitor.add_observation(symbol, data.price, data.volume, now)
        if snapshot is None:
            return
        self._refresh_candles(symbol, now)

        if paused:
            return
        allowed, why = self.positions.can_open(symbol, now)
        if not allowed:
            logger.debug("Skip %s: %s", symbol, why)
            return
        if len(snapshot.prices) < MIN_VOLATILITY_POINTS:
            return
        if snapshot.volatility < params.min_volatility_pct:
            logger.debug("Skip %s: volatility %.4f%% < %.4f%%", symbol, snapshot.volatility, params.min_volatility_pct)
            return
        if data.quote_volume_24h < params.min_quote_volume_24h:
            logger.debug("Skip %s: 24h quote volume %.0f below minimum", symbol, data.quote_volume_24h)
            return

        signal = strategy.analyze_buy_opportunity(self.monitor.price_series(symbol), self.monitor.candles(symbol))
        if not signal.is_buy or signal.confidence < params.min_confidence:
            return

        with self._lock:
            allocation = self._allocations.get(symbol)
            capital = self._capital_base
        if allocation is None:
            logger.info("Buy signal on %s ignored: no capital allocated", symbol)
            return
        amount = min(allocation.allocated_amount, capital * params.max_allocation_per_pair_pct / 100.0)
        quantity = calculate_quantity(amount, data.price)
        if quantity <= 0:
            return

        logger.info("Buy signal %s (%.2f, %s): %s", symbol, signal.confidence, params.mode, signal.reason)
        try:
            self.positions.open_position(symbol, quantity)
        except ExecutionError:
            # Already logged by the position manager; retry on a later tick
            return

    # --- position check --------------------------------------------------

    def check_positions(self) -> None:
        params = self.risk_snapshot()
        strategy = self._tuned_strategy(params)
        for position in self.positions.open_positions():
            try:
                self._check_position(position, params, strategy)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error("Position check failed for %s: %s", position.symbol, exc, exc_info=True)

    def _series_with_price(self, symbol: str, price: float) -> List[float]:
        series = self.monitor.price_series(symbol)
        if not series:
            return []
        if self.monitor.candles(symbol):
            series[-1] = price
        else:
            series.append(price)
        return series

    def _check_position(self, position: Position, params: AdaptiveRiskParams, strategy: BaseStrategy) -> None:
        quote = self.market_data.get_price(position.symbol)
        if quote is None:
            logger.debug("No price for open position %s this tick", position.symbol)
            return
        price = quote.price
        decision = self.positions.evaluate_exit(
            position,
            price,
            strategy,
            series=self._series_with_price(position.symbol, price),
            candles=self.monitor.candles(position.symbol),
            # Tier selectivity applies to entries only; exits keep the base bar
            min_confidence=self.config.min_confidence,
            profit_protect_pct=params.profit_protect_pct,
        )
        if decision is None:
            return

        logger.info("Exit %s (%s): %s", position.symbol, decision.reason, decision.detail)
        try:
            closed = self.positions.close_position(
                position.trade_id,
                decision.reason,
                price_hint=price,
                cooldown_seconds=params.pair_cooldown_seconds,
                loss_cooldown_seconds=self.config.risk.loss_cooldown_base_minutes * 60.0,
            )
        except ExecutionError:
            return
        if closed is None:
            return
        with self._lock:
            self._session_pnl += closed.profit_loss
        self.circuit_breaker.evaluate()
        self._note_tier_change()

    # --- reinvestment check ----------------------------------------------

    def _note_tier_change(self) -> None:
        streak = self.circuit_breaker.stats.loss_streak
        with self._lock:
            previous, self._last_streak = self._last_streak, streak
        if has_mode_changed(previous, streak):
            params = adaptive_params(streak, self.config)
            summary = adjustment_summary(params)
            logger.warning("Risk mode -> %s: %s %s", params.mode, params.reason, summary)
            self._alert(
                f"[orchestrator] Risk mode changed to {params.mode}",
                context={"loss_streak": streak, "summary": summary},
                level="WARN" if params.mode != "normal" else "INFO",
            )

    def _reset_wanted(self) -> bool:
        if self._reset_requested.is_set():
            return True
        if self._reset_signal is None:
            return False
        try:
            return bool(self._reset_signal())
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Reset signal check failed: %s", exc)
            return False

    def reinvest_check(self) -> None:
        if self._reset_wanted():
            self.clear_circuit_breaker()
        self.circuit_breaker.evaluate()
        self._note_tier_change()

        params = self.risk_snapshot()
        capital = self.session_capital
        with self._lock:
            base = self._capital_base
            missing = [s for s in self.config.symbols if s not in self._allocations]

        moved_pct = abs(capital - base) / base * 100.0 if base > 0 else 0.0
        if self.config.auto_reinvest and moved_pct >= REINVEST_THRESHOLD_PCT:
            logger.info("Capital moved %.2f%% (%.2f -> %.2f); redistributing", moved_pct, base, capital)
            self._distribute(capital, params)
        elif missing:
            with self._lock:
                existing = dict(self._allocations)
            rebalanced = self.capital_engine.rebalance(
                base,
                self.config.symbols,
                existing,
                self.config.quantity_per_trade,
                max_allocation_pct=params.max_allocation_per_pair_pct,
                safety_reserve_pct=params.safety_reserve_pct,
            )
            with self._lock:
                self._allocations = rebalanced

    # --- observability ---------------------------------------------------

    def status(self) -> Dict[str, Any]:
        params = self.risk_snapshot()
        stats = self.circuit_breaker.stats
        return {
            "running": self._running,
            "test_mode": self.config.test_mode,
            "strategy": self.strategy.name,
            "capital": self.session_capital,
            "session_pnl": self._session_pnl,
            "open_positions": [p.to_dict() for p in self.positions.open_positions()],
            "allocations": {s: a.to_dict() for s, a in self.allocations.items()},
            "risk_mode": params.mode,
            "paused": self.circuit_breaker.is_paused(self._clock()),
            "stats": stats.to_dict(),
            "tasks": {t.name: {"runs": t.runs, "failures": t.failures} for t in self._tasks},
        }


__all__ = ["TradingOrchestrator"]

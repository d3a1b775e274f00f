"""Tests for the trading session orchestrator."""

from __future__ import annotations

import time

import pytest

from conftest import AlertRecorder, FakeClock, FakeMarket, make_candles
from spot_trading_bot.bot.interfaces import BUY, SELL, STATUS_PENDING
from spot_trading_bot.bot.orchestrator import TradingOrchestrator
from spot_trading_bot.config import ConfigurationError, TradingConfig
from spot_trading_bot.exchange.paper_executor import PaperExecutionClient
from spot_trading_bot.ledger.trade_ledger import TradeLedger
from spot_trading_bot.risk.adaptive import CAUTIOUS, DEFENSIVE, NORMAL
from spot_trading_bot.safety.circuit_breaker import CircuitBreaker

# pylint: disable=missing-function-docstring

DIP_CANDLES = make_candles([100.0, 101.0] * 10 + [101.0])


@pytest.fixture(name="config")
def fixture_config():
    return TradingConfig(
        total_capital=1000.0,
        symbols=("BTCUSDT", "ETHUSDT"),
        take_profit_percent=1.5,
        stop_loss_percent=1.0,
    )


@pytest.fixture(name="breaker")
def fixture_breaker(store, clock, alerts, tmp_path):
    return CircuitBreaker(store, 1000.0, state_path=tmp_path / "breaker.json", clock=clock, alert=alerts)


@pytest.fixture(name="orchestrator")
def fixture_orchestrator(config, market, executor, store, breaker, clock, alerts):
    market.set_price("BTCUSDT", 100.0)
    market.set_price("ETHUSDT", 50.0)
    orch = TradingOrchestrator(
        config,
        market,
        executor,
        store,
        circuit_breaker=breaker,
        clock=clock,
        alert=alerts,
    )
    yield orch
    orch.stop()


def _scan_into_dip(orchestrator, market, clock, symbol="BTCUSDT"):
    """Nine choppy ticks then a sharp drop onto the lower band."""
    market.candle_data[symbol] = DIP_CANDLES
    for price in [100.0, 101.0] * 4 + [100.0]:
        market.set_price(symbol, price)
        orchestrator.scan_market()
        clock.advance(3)
    market.set_price(symbol, 85.0)
    orchestrator.scan_market()


def test_start_distributes_capital(orchestrator, alerts):
    orchestrator.start(run_tasks=False)
    allocations = orchestrator.allocations
    assert orchestrator.running
    assert set(allocations) == {"BTCUSDT", "ETHUSDT"}
    assert allocations["BTCUSDT"].allocated_amount == pytest.approx(90.0)
    assert allocations["ETHUSDT"].quantity == pytest.approx(1.8)
    assert orchestrator.monitor.watched() == ["BTCUSDT", "ETHUSDT"]
    assert alerts.calls[-1]["message"].endswith("Trading started")


def test_invalid_config_fails_fast(market, executor, store, breaker, clock, alerts):
    bad = TradingConfig(total_capital=0.0, symbols=("BTCUSDT",))
    orch = TradingOrchestrator(bad, market, executor, store, circuit_breaker=breaker, clock=clock, alert=alerts)
    with pytest.raises(ConfigurationError):
        orch.start(run_tasks=False)
    assert not orch.running


def test_scan_opens_position_on_dip(orchestrator, market, executor, clock):
    orchestrator.start(run_tasks=False)
    _scan_into_dip(orchestrator, market, clock)

    buys = [o for o in executor.orders if o["side"] == BUY]
    assert len(buys) == 1
    assert buys[0]["symbol"] == "BTCUSDT"
    assert buys[0]["quantity"] == pytest.approx(90.0 / 85.0, abs=1e-8)
    position = orchestrator.positions.position_for("BTCUSDT")
    assert position.buy_price == 85.0

    # Already holding: the next scan does not buy again
    orchestrator.scan_market()
    assert len([o for o in executor.orders if o["side"] == BUY]) == 1


def test_scan_requires_enough_ticks_and_volume(orchestrator, market, executor, clock):
    orchestrator.start(run_tasks=False)
    market.candle_data["BTCUSDT"] = DIP_CANDLES
    market.set_price("BTCUSDT", 85.0, quote_volume=1_000.0)
    for _ in range(12):
        orchestrator.scan_market()
        clock.advance(3)
    assert executor.orders == []


def test_candles_refresh_once_per_minute(orchestrator, market, clock):
    orchestrator.start(run_tasks=False)
    market.candle_data["BTCUSDT"] = DIP_CANDLES
    orchestrator.scan_market()
    orchestrator.scan_market()
    assert market.candle_calls.count("BTCUSDT") == 1
    clock.advance(60)
    orchestrator.scan_market()
    assert market.candle_calls.count("BTCUSDT") == 2


def test_one_symbol_failure_does_not_abort_tick(orchestrator, market, clock, monkeypatch):
    orchestrator.start(run_tasks=False)
    original = market.get_market_data

    def flaky(symbol):
        if symbol == "ETHUSDT":
            raise RuntimeError("socket closed")
        return original(symbol)

    monkeypatch.setattr(market, "get_market_data", flaky)
    _scan_into_dip(orchestrator, market, clock)
    assert orchestrator.positions.has_position("BTCUSDT")


def test_paused_breaker_blocks_entries_but_keeps_monitoring(orchestrator, store, market, executor, clock):
    for i in range(4):
        store.add_round_trip("SOLUSDT", -1.0, clock() - 600 + i * 60)
    orchestrator.start(run_tasks=False)
    assert orchestrator.circuit_breaker.is_paused()

    _scan_into_dip(orchestrator, market, clock)
    assert executor.orders == []
    assert orchestrator.monitor.get("BTCUSDT").last_price == 85.0


def test_check_positions_closes_on_stop_loss(orchestrator, market, executor, clock):
    orchestrator.start(run_tasks=False)
    _scan_into_dip(orchestrator, market, clock)

    orchestrator.check_positions()
    assert orchestrator.positions.count() == 1

    market.set_price("BTCUSDT", 84.0)
    orchestrator.check_positions()
    assert orchestrator.positions.count() == 0
    assert executor.orders[-1]["side"] == SELL
    assert orchestrator.status()["session_pnl"] == pytest.approx(-90.0 / 85.0, abs=1e-6)
    # Losing exit: re-entry blocked for the loss cooldown
    assert orchestrator.positions.cooldown_remaining("BTCUSDT") == pytest.approx(180.0)


def test_failed_close_keeps_position_for_next_tick(orchestrator, market, executor, clock, alerts):
    orchestrator.start(run_tasks=False)
    _scan_into_dip(orchestrator, market, clock)
    executor.fail_sides.add(SELL)
    market.set_price("BTCUSDT", 80.0)

    orchestrator.check_positions()
    assert orchestrator.positions.count() == 1
    assert "ERROR" in alerts.levels()

    executor.fail_sides.clear()
    orchestrator.check_positions()
    assert orchestrator.positions.count() == 0


def test_reinvest_redistributes_after_profit(orchestrator, market, clock):
    orchestrator.start(run_tasks=False)
    orchestrator.positions.open_position("BTCUSDT", 1.0)
    market.set_price("BTCUSDT", 150.0)
    orchestrator.check_positions()
    assert orchestrator.session_capital == pytest.approx(1050.0)

    orchestrator.reinvest_check()
    assert orchestrator.allocations["BTCUSDT"].allocated_amount == pytest.approx(94.5)


def test_reinvest_skipped_below_threshold(orchestrator, config, market):
    orchestrator.start(run_tasks=False)
    orchestrator.positions.open_position("BTCUSDT", 1.0)
    market.set_price("BTCUSDT", 101.6)
    orchestrator.check_positions()
    assert orchestrator.session_capital == pytest.approx(1001.6)
    orchestrator.reinvest_check()
    assert orchestrator.allocations["BTCUSDT"].allocated_amount == pytest.approx(90.0)
    assert config.auto_reinvest


def test_manual_reset_clears_pause(orchestrator, store, clock):
    for i in range(4):
        store.add_round_trip("SOLUSDT", -1.0, clock() - 600 + i * 60)
    orchestrator.start(run_tasks=False)
    assert orchestrator.circuit_breaker.is_paused()

    orchestrator.request_manual_reset()
    orchestrator.reinvest_check()
    assert not orchestrator.circuit_breaker.is_paused()
    assert orchestrator.risk_snapshot().mode == NORMAL


def test_reset_signal_is_polled(market, executor, store, breaker, clock, alerts, config):
    for i in range(4):
        store.add_round_trip("SOLUSDT", -1.0, clock() - 600 + i * 60)
    signals = iter([False, True])
    orch = TradingOrchestrator(
        config,
        market,
        executor,
        store,
        circuit_breaker=breaker,
        reset_signal=lambda: next(signals, False),
        clock=clock,
        alert=alerts,
    )
    market.set_price("BTCUSDT", 100.0)
    orch.start(run_tasks=False)
    orch.reinvest_check()
    assert orch.circuit_breaker.is_paused()
    orch.reinvest_check()
    assert not orch.circuit_breaker.is_paused()
    orch.stop()


def test_update_watchlist_rebalances(orchestrator, market):
    orchestrator.start(run_tasks=False)
    market.set_price("SOLUSDT", 20.0)
    allocations = orchestrator.update_watchlist(["BTCUSDT", "SOLUSDT"])
    assert set(allocations) == {"BTCUSDT", "SOLUSDT"}
    assert allocations["SOLUSDT"].allocated_amount == pytest.approx(90.0)
    assert sorted(orchestrator.monitor.watched()) == ["BTCUSDT", "SOLUSDT"]
    with pytest.raises(ConfigurationError):
        orchestrator.update_watchlist([])


def test_reconcile_restores_open_positions(orchestrator, store, clock):
    store.add("BTCUSDT", BUY, 97.0, quantity=0.4, status=STATUS_PENDING, created_at=clock() - 120)
    orchestrator.start(run_tasks=False)
    position = orchestrator.positions.position_for("BTCUSDT")
    assert position.buy_price == 97.0
    assert orchestrator.status()["open_positions"][0]["symbol"] == "BTCUSDT"


def test_stop_does_not_liquidate(orchestrator, executor):
    orchestrator.start(run_tasks=False)
    orchestrator.positions.open_position("ETHUSDT", 1.0)
    orchestrator.stop()
    assert not orchestrator.running
    assert orchestrator.positions.count() == 1
    assert [o["side"] for o in executor.orders] == [BUY]


def test_start_runs_periodic_tasks(orchestrator):
    orchestrator.intervals = {"market_scan": 0.01, "position_check": 0.01, "reinvest_check": 0.01}
    orchestrator.start()
    deadline = time.time() + 2.0
    while time.time() < deadline and not all(t["runs"] > 1 for t in orchestrator.status()["tasks"].values()):
        time.sleep(0.01)
    tasks = orchestrator.status()["tasks"]
    orchestrator.stop()
    assert set(tasks) == {"market_scan", "position_check", "reinvest_check"}
    assert all(t["failures"] == 0 for t in tasks.values())


def test_losses_escalate_risk_tier_with_real_ledger(tmp_path):
    clock = FakeClock(time.time())
    market = FakeMarket(clock)
    alerts = AlertRecorder()
    ledger = TradeLedger(tmp_path / "trades.jsonl")
    executor = PaperExecutionClient(market, ledger)
    config = TradingConfig(total_capital=1000.0, symbols=("BTCUSDT", "ETHUSDT"), stop_loss_percent=1.0)
    breaker = CircuitBreaker(ledger, 1000.0, state_path=tmp_path / "breaker.json", clock=clock, alert=alerts)
    orch = TradingOrchestrator(config, market, executor, ledger, circuit_breaker=breaker, clock=clock, alert=alerts)
    market.set_price("BTCUSDT", 100.0)
    market.set_price("ETHUSDT", 50.0)
    orch.start(run_tasks=False)

    for symbol, entry in (("BTCUSDT", 100.0), ("ETHUSDT", 50.0)):
        orch.positions.open_position(symbol, 1.0)
        market.set_price(symbol, entry * 0.95)
        orch.check_positions()
        clock.advance(5)

    assert orch.circuit_breaker.stats.loss_streak == 2
    assert orch.risk_snapshot().mode == CAUTIOUS
    assert any("cautious" in c["message"] for c in alerts.calls)
    assert ledger.open_buys() == []
    orch.stop()


def test_scan_buys_from_ticks_when_candles_unavailable(orchestrator, market, executor, clock):
    orchestrator.start(run_tasks=False)
    for price in [100.0, 101.0] * 9 + [100.0, 85.0]:
        market.set_price("BTCUSDT", price)
        orchestrator.scan_market()
        clock.advance(3)

    assert orchestrator.monitor.candles("BTCUSDT") == []
    assert len(orchestrator.monitor.price_series("BTCUSDT")) == 20
    buys = [o for o in executor.orders if o["side"] == BUY]
    assert [o["symbol"] for o in buys] == ["BTCUSDT"]
    assert orchestrator.positions.position_for("BTCUSDT").buy_price == 85.0


def test_defensive_tier_still_takes_signal_exits(market, executor, store, breaker, clock, alerts):
    config = TradingConfig(
        total_capital=1000.0,
        symbols=("BTCUSDT",),
        take_profit_percent=20.0,
        stop_loss_percent=10.0,
        min_confidence=0.7,
    )
    for i in range(3):
        store.add_round_trip("SOLUSDT", -1.0, clock() - 600 + i * 60)
    market.set_price("BTCUSDT", 100.0)
    orch = TradingOrchestrator(config, market, executor, store, circuit_breaker=breaker, clock=clock, alert=alerts)
    orch.start(run_tasks=False)
    params = orch.risk_snapshot()
    assert params.mode == DEFENSIVE
    assert params.min_confidence == pytest.approx(1.0)

    orch.positions.open_position("BTCUSDT", 1.0)
    orch.monitor.set_candles("BTCUSDT", make_candles([100.0, 99.0] * 10 + [100.0]))
    market.set_price("BTCUSDT", 115.0)
    orch.check_positions()

    assert orch.positions.count() == 0
    assert executor.orders[-1]["side"] == SELL
    orch.stop()

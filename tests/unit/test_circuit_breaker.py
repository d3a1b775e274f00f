"""Tests for round-trip statistics and the persisted circuit breaker."""

from __future__ import annotations

import json

import pytest

from conftest import BASE_TIME
from spot_trading_bot.bot.interfaces import BUY, SELL, STATUS_FAILED
from spot_trading_bot.safety.circuit_breaker import (
    CircuitBreaker,
    OperationStats,
    compute_stats,
    loss_streak,
    round_trips,
    should_pause,
    start_of_day,
)

# pylint: disable=missing-function-docstring

DAY_START = BASE_TIME - 12 * 3600


@pytest.fixture(name="breaker")
def fixture_breaker(store, clock, alerts, tmp_path):
    return CircuitBreaker(store, 1000.0, state_path=tmp_path / "breaker.json", clock=clock, alert=alerts)


def _losses(store, count, start=BASE_TIME - 600, amount=-1.0):
    for i in range(count):
        store.add_round_trip("BTCUSDT", amount, start + i * 60)


def test_start_of_day_is_utc_midnight():
    assert start_of_day(BASE_TIME) == DAY_START


def test_sell_rows_pair_with_latest_buy(store):
    store.add("ETHUSDT", BUY, 100.0, quantity=2.0, created_at=BASE_TIME - 300)
    store.add("ETHUSDT", SELL, 103.0, quantity=2.0, created_at=BASE_TIME - 200)
    store.add("ETHUSDT", BUY, 100.0, created_at=BASE_TIME - 100, profit_loss=-4.0, closed_at=BASE_TIME - 20)
    store.add("ETHUSDT", SELL, 96.0, created_at=BASE_TIME - 20)
    store.add("ETHUSDT", SELL, 90.0, created_at=BASE_TIME - 10, profit_loss=-7.5)
    store.add("ETHUSDT", BUY, 50.0, created_at=BASE_TIME - 5, status=STATUS_FAILED, profit_loss=-99.0)

    trips = round_trips(store.load_trades())
    assert [t.profit_loss for t in trips] == [pytest.approx(6.0), -4.0, -7.5]
    assert trips[1].trade_id == "R3"


def test_closed_buy_without_sell_counts_once(store):
    store.add_round_trip("BTCUSDT", 2.5, BASE_TIME - 60)
    trips = round_trips(store.load_trades())
    assert len(trips) == 1
    assert trips[0].profit_loss == 2.5
    assert trips[0].closed_at == BASE_TIME - 60


def test_loss_streak_counts_back_from_latest(store):
    for pnl, offset in [(-1.0, 500), (2.0, 400), (-1.0, 300), (-3.0, 200), (-0.5, 100)]:
        store.add_round_trip("BTCUSDT", pnl, BASE_TIME - offset)
    assert loss_streak(round_trips(store.load_trades())) == 3


def test_zero_pnl_breaks_the_streak(store):
    for pnl, offset in [(-1.0, 300), (0.0, 200), (-1.0, 100)]:
        store.add_round_trip("BTCUSDT", pnl, BASE_TIME - offset)
    assert loss_streak(round_trips(store.load_trades())) == 1


def test_streak_grows_with_each_loss_and_resets_on_a_win(store):
    streaks = []
    for i, pnl in enumerate([-5.0, -3.0, -2.0, 1.0]):
        store.add_round_trip("BTCUSDT", pnl, BASE_TIME - 400 + i * 100)
        streaks.append(compute_stats(store.load_trades(), DAY_START, now=BASE_TIME).loss_streak)
    assert streaks == [1, 2, 3, 0]


def test_compute_stats_uses_todays_window(store):
    store.add_round_trip("BTCUSDT", -10.0, DAY_START - 60)
    store.add_round_trip("ETHUSDT", -2.0, BASE_TIME - 120)
    store.add_round_trip("SOLUSDT", 5.0, BASE_TIME - 60)
    stats = compute_stats(store.load_trades(), DAY_START, now=BASE_TIME)
    assert stats.daily_pnl == pytest.approx(3.0)
    assert stats.loss_streak == 0
    assert stats.total_operations_today == 2
    assert stats.last_operation_symbol == "SOLUSDT"
    assert stats.last_operation_profit == 5.0
    assert not stats.circuit_breaker_active


def test_streak_only_counts_after_last_resume(store):
    _losses(store, 3, start=BASE_TIME - 600)
    stats = compute_stats(store.load_trades(), DAY_START, streak_start=BASE_TIME - 500, now=BASE_TIME)
    assert stats.loss_streak == 1
    assert stats.daily_pnl == pytest.approx(-3.0)


def test_should_pause_on_streak_and_drawdown():
    kwargs = {"loss_streak_limit": 4, "daily_max_drawdown_pct": 5.0, "pause_minutes": 30, "now": BASE_TIME}
    assert not should_pause(OperationStats(loss_streak=3, daily_pnl=-49.0), 1000.0, **kwargs).pause

    streak = should_pause(OperationStats(loss_streak=4), 1000.0, **kwargs)
    assert streak.pause
    assert streak.pause_until == BASE_TIME + 1800
    assert "consecutive" in streak.reason

    drawdown = should_pause(OperationStats(daily_pnl=-50.0), 1000.0, **kwargs)
    assert drawdown.pause
    assert "drawdown" in drawdown.reason.lower()


def test_should_pause_is_idempotent_while_active():
    stats = OperationStats(circuit_breaker_active=True, circuit_breaker_until=BASE_TIME + 100)
    first = should_pause(stats, 1000.0, loss_streak_limit=4, daily_max_drawdown_pct=5, pause_minutes=30, now=BASE_TIME)
    second = should_pause(
        stats, 1000.0, loss_streak_limit=4, daily_max_drawdown_pct=5, pause_minutes=30, now=BASE_TIME + 50
    )
    assert first.pause and second.pause
    assert first.pause_until == second.pause_until == BASE_TIME + 100


def test_breaker_activates_persists_and_alerts(breaker, store, alerts, tmp_path, clock):
    _losses(store, 4)
    decision = breaker.evaluate()
    assert decision.pause
    assert breaker.is_paused()
    assert breaker.stats.circuit_breaker_active
    assert alerts.levels() == ["CRITICAL"]

    state = json.loads((tmp_path / "breaker.json").read_text(encoding="utf-8"))
    assert state["active"] is True
    assert state["until"] == clock() + 1800

    # Evaluating again keeps the same window and does not re-alert
    breaker.evaluate()
    assert alerts.levels() == ["CRITICAL"]

    reloaded = CircuitBreaker(store, 1000.0, state_path=tmp_path / "breaker.json", clock=clock, alert=alerts)
    assert reloaded.is_paused()


def test_breaker_resumes_after_pause_without_retriggering(breaker, store, clock):
    _losses(store, 4)
    breaker.evaluate()
    clock.advance(1800)
    decision = breaker.evaluate()
    assert not decision.pause
    assert not breaker.is_paused()
    assert breaker.stats.loss_streak == 0
    assert breaker.state["last_resume_at"] == clock()

    store.add_round_trip("BTCUSDT", -1.0, clock() + 10)
    clock.advance(20)
    breaker.evaluate()
    assert breaker.stats.loss_streak == 1


def test_manual_reset_clears_immediately(breaker, store, alerts):
    _losses(store, 5)
    breaker.evaluate()
    assert breaker.is_paused()
    breaker.reset()
    assert not breaker.is_paused()
    assert breaker.stats.loss_streak == 0
    assert alerts.levels() == ["CRITICAL", "WARN"]


def test_drawdown_pause(breaker, store):
    store.add_round_trip("BTCUSDT", -60.0, BASE_TIME - 30)
    assert breaker.evaluate().pause


def test_malformed_state_file_falls_back_to_defaults(store, clock, alerts, tmp_path):
    path = tmp_path / "breaker.json"
    path.write_text("[1, 2", encoding="utf-8")
    breaker = CircuitBreaker(store, 1000.0, state_path=path, clock=clock, alert=alerts)
    assert not breaker.is_paused()
    assert breaker.state["active"] is False

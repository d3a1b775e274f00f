"""Shared tuning constants for the spot trading bot."""

from __future__ import annotations

import os
from pathlib import Path

# --- Exit thresholds (percent of entry price) ---

DEFAULT_STOP_LOSS_PCT: float = 1.0
DEFAULT_TAKE_PROFIT_PCT: float = 1.5
DEFAULT_PROFIT_PROTECT_PCT: float = 1.0
DEFAULT_MAX_HOLD_MINUTES: int = 10

# --- Capital allocation (percent of total capital) ---

DEFAULT_CAPITAL_PER_ROUND_PCT: float = 20.0
DEFAULT_MAX_ALLOCATION_PER_PAIR_PCT: float = 10.0
DEFAULT_SAFETY_RESERVE_PCT: float = 10.0
DEFAULT_MAX_POSITIONS: int = 5
QUANTITY_DECIMALS: int = 8

# --- Market filters ---

DEFAULT_MIN_QUOTE_VOLUME_24H: float = 2_000_000.0
DEFAULT_MIN_VOLATILITY_PCT: float = 0.005
DEFAULT_PAIR_COOLDOWN_SECONDS: float = 60.0
PAIR_SELECTION_MIN_QUOTE_VOLUME: float = 5_000_000.0

# --- Circuit breaker ---

DEFAULT_LOSS_STREAK_LIMIT: int = 4
DEFAULT_DAILY_MAX_DRAWDOWN_PCT: float = 5.0
DEFAULT_CIRCUIT_BREAKER_PAUSE_MINUTES: float = 30.0
DEFAULT_LOSS_COOLDOWN_BASE_MINUTES: float = 3.0

# --- Signal generation ---

DEFAULT_MIN_CONFIDENCE: float = 0.4
BB_PERIOD: int = 20
BB_STD_DEV: float = 2.0
RSI_PERIOD: int = 14
RSI_OVERSOLD: float = 30.0
RSI_OVERBOUGHT: float = 70.0
RSI_DEEP_OVERSOLD: float = 25.0
RSI_EXTREME_OVERBOUGHT: float = 75.0
MIN_SIGNAL_POINTS: int = max(BB_PERIOD, RSI_PERIOD + 1)

# --- Pair monitor buffers ---

PRICE_BUFFER_SIZE: int = 20
CANDLE_BUFFER_SIZE: int = 60
MIN_VOLATILITY_POINTS: int = 10

# --- Scheduling (seconds) ---

MARKET_SCAN_INTERVAL: float = 3.0
POSITION_CHECK_INTERVAL: float = 2.0
REINVEST_CHECK_INTERVAL: float = 10.0
CANDLE_REFRESH_SECONDS: float = 60.0
REINVEST_THRESHOLD_PCT: float = 1.0

# --- Safety sentinels ---

CIRCUIT_BREAKER_STATE_FILE = Path(
    os.getenv("SPOT_TRADING_BOT_BREAKER_STATE", "logs/circuit_breaker_state.json")
).expanduser()
CIRCUIT_BREAKER_RESET_FLAG = Path(
    os.getenv("SPOT_TRADING_BOT_RESET_FLAG", "logs/circuit_breaker_reset.flag")
).expanduser()
TRADE_LEDGER_FILE = Path(os.getenv("SPOT_TRADING_BOT_LEDGER", "logs/trades.jsonl")).expanduser()

__all__ = [
    "BB_PERIOD",
    "BB_STD_DEV",
    "CANDLE_BUFFER_SIZE",
    "CANDLE_REFRESH_SECONDS",
    "CIRCUIT_BREAKER_RESET_FLAG",
    "CIRCUIT_BREAKER_STATE_FILE",
    "DEFAULT_CAPITAL_PER_ROUND_PCT",
    "DEFAULT_CIRCUIT_BREAKER_PAUSE_MINUTES",
    "DEFAULT_DAILY_MAX_DRAWDOWN_PCT",
    "DEFAULT_LOSS_COOLDOWN_BASE_MINUTES",
    "DEFAULT_LOSS_STREAK_LIMIT",
    "DEFAULT_MAX_ALLOCATION_PER_PAIR_PCT",
    "DEFAULT_MAX_HOLD_MINUTES",
    "DEFAULT_MAX_POSITIONS",
    "DEFAULT_MIN_CONFIDENCE",
    "DEFAULT_MIN_QUOTE_VOLUME_24H",
    "DEFAULT_MIN_VOLATILITY_PCT",
    "DEFAULT_PAIR_COOLDOWN_SECONDS",
    "DEFAULT_PROFIT_PROTECT_PCT",
    "DEFAULT_SAFETY_RESERVE_PCT",
    "DEFAULT_STOP_LOSS_PCT",
    "DEFAULT_TAKE_PROFIT_PCT",
    "MARKET_SCAN_INTERVAL",
    "MIN_SIGNAL_POINTS",
    "MIN_VOLATILITY_POINTS",
    "PAIR_SELECTION_MIN_QUOTE_VOLUME",
    "POSITION_CHECK_INTERVAL",
    "PRICE_BUFFER_SIZE",
    "QUANTITY_DECIMALS",
    "REINVEST_CHECK_INTERVAL",
    "REINVEST_THRESHOLD_PCT",
    "RSI_DEEP_OVERSOLD",
    "RSI_EXTREME_OVERBOUGHT",
    "RSI_OVERBOUGHT",
    "RSI_OVERSOLD",
    "RSI_PERIOD",
    "TRADE_LEDGER_FILE",
]

"""Configuration loader for spot_trading_bot.

Loads environment variables from a `.env` file (project root) and exposes
runtime toggles via the ``CONFIG`` dictionary. Session options live in the
immutable :class:`TradingConfig`, validated once before the orchestrator starts.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import dotenv_values

from .constants import (
    BB_PERIOD,
    BB_STD_DEV,
    CIRCUIT_BREAKER_RESET_FLAG,
    CIRCUIT_BREAKER_STATE_FILE,
    DEFAULT_CAPITAL_PER_ROUND_PCT,
    DEFAULT_CIRCUIT_BREAKER_PAUSE_MINUTES,
    DEFAULT_DAILY_MAX_DRAWDOWN_PCT,
    DEFAULT_LOSS_COOLDOWN_BASE_MINUTES,
    DEFAULT_LOSS_STREAK_LIMIT,
    DEFAULT_MAX_ALLOCATION_PER_PAIR_PCT,
    DEFAULT_MAX_POSITIONS,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MIN_QUOTE_VOLUME_24H,
    DEFAULT_MIN_VOLATILITY_PCT,
    DEFAULT_PAIR_COOLDOWN_SECONDS,
    DEFAULT_PROFIT_PROTECT_PCT,
    DEFAULT_SAFETY_RESERVE_PCT,
    DEFAULT_STOP_LOSS_PCT,
    DEFAULT_TAKE_PROFIT_PCT,
    RSI_DEEP_OVERSOLD,
    RSI_EXTREME_OVERBOUGHT,
    RSI_OVERBOUGHT,
    RSI_OVERSOLD,
    RSI_PERIOD,
    TRADE_LEDGER_FILE,
)

logger = logging.getLogger(__name__)

KNOWN_STRATEGIES = ("mean_reversion", "momentum")
_ENV_PREFIX = "SPOT_TRADING_BOT_"
_TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(RuntimeError):
    """Raised when mandatory configuration is missing or invalid."""


def _sanitize_value(value: str) -> str:
    """Trim whitespace and strip wrapping quotes."""

    stripped = (value or "").strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {'"', "'"}:
        stripped = stripped[1:-1]
    return stripped.strip()


def _load_dotenv_into_env() -> Dict[str, str]:
    """Load variables from a project-level .env file into ``os.environ``.

    Existing environment variables are never overwritten. Returns the mapping
    of keys loaded from the file.
    """

    candidates = []
    root_env = os.getenv("SPOT_TRADING_BOT_ROOT")
    if root_env:
        candidates.append(Path(root_env).expanduser())
    try:
        candidates.append(Path(__file__).resolve().parents[3])
    except IndexError:  # pragma: no cover - shallow install paths
        candidates.append(Path(__file__).resolve().parent)
    candidates.append(Path.cwd())

    loaded: Dict[str, str] = {}
    for base in candidates:
        env_path = base / ".env"
        if not env_path.is_file():
            continue
        try:
            raw_values = dotenv_values(env_path)
        except (OSError, ValueError):  # pragma: no cover - dotenv internals
            continue
        for key, value in (raw_values or {}).items():
            if value is None or key in loaded:
                continue
            loaded[key] = str(value)
            if not os.getenv(key):
                os.environ[key] = str(value)
        break
    if loaded:
        logger.debug("Loaded %d entries from .env (without overriding existing environment)", len(loaded))
    return loaded


_load_dotenv_into_env()

CONFIG: dict = {
    "log_dir": os.getenv("SPOT_TRADING_BOT_LOG_DIR", "logs"),
    "breaker_state_file": str(CIRCUIT_BREAKER_STATE_FILE),
    "reset_flag_file": str(CIRCUIT_BREAKER_RESET_FLAG),
    "ledger_file": str(TRADE_LEDGER_FILE),
    "binance_base_urls": [
        url.strip()
        for url in os.getenv(
            "SPOT_TRADING_BOT_BINANCE_URLS",
            "https://api.binance.com,https://api1.binance.com,https://api2.binance.com,https://api3.binance.com",
        ).split(",")
        if url.strip()
    ],
    "binance_api_key": _sanitize_value(os.getenv("BINANCE_API_KEY", "")),
    "binance_api_secret": _sanitize_value(os.getenv("BINANCE_API_SECRET", "")),
    "request_timeout": float(os.getenv("SPOT_TRADING_BOT_REQUEST_TIMEOUT", "10") or "10"),
    "alert_webhook": os.getenv("SPOT_TRADING_BOT_ALERT_WEBHOOK") or None,
}


@dataclass(frozen=True)
class RiskSettings:
    """Base (normal tier) risk knobs; adaptive tiers scale these."""

    capital_per_round_pct: float = DEFAULT_CAPITAL_PER_ROUND_PCT
    max_allocation_per_pair_pct: float = DEFAULT_MAX_ALLOCATION_PER_PAIR_PCT
    safety_reserve_pct: float = DEFAULT_SAFETY_RESERVE_PCT
    profit_protect_pct: float = DEFAULT_PROFIT_PROTECT_PCT
    min_quote_volume_24h: float = DEFAULT_MIN_QUOTE_VOLUME_24H
    min_volatility_pct: float = DEFAULT_MIN_VOLATILITY_PCT
    pair_cooldown_seconds: float = DEFAULT_PAIR_COOLDOWN_SECONDS
    loss_streak_limit: int = DEFAULT_LOSS_STREAK_LIMIT
    daily_max_drawdown_pct: float = DEFAULT_DAILY_MAX_DRAWDOWN_PCT
    circuit_breaker_pause_minutes: float = DEFAULT_CIRCUIT_BREAKER_PAUSE_MINUTES
    loss_cooldown_base_minutes: float = DEFAULT_LOSS_COOLDOWN_BASE_MINUTES


@dataclass(frozen=True)
class StrategySettings:
    """Indicator periods and thresholds shared by the strategies."""

    bb_period: int = BB_PERIOD
    bb_std_dev: float = BB_STD_DEV
    rsi_period: int = RSI_PERIOD
    rsi_oversold: float = RSI_OVERSOLD
    rsi_overbought: float = RSI_OVERBOUGHT
    rsi_deep_oversold: float = RSI_DEEP_OVERSOLD
    rsi_extreme_overbought: float = RSI_EXTREME_OVERBOUGHT
    lower_band_tolerance: float = 1.002
    upper_band_tolerance: float = 0.998

    @property
    def min_points(self) -> int:
        """Shortest price series the indicators can evaluate."""
        return max(self.bb_period, self.rsi_period + 1)


@dataclass(frozen=True)
class TradingConfig:  # pylint: disable=too-many-instance-attributes
    """Immutable options for one trading session."""

    total_capital: float
    symbols: Tuple[str, ...]
    take_profit_percent: float = DEFAULT_TAKE_PROFIT_PCT
    stop_loss_percent: float = DEFAULT_STOP_LOSS_PCT
    test_mode: bool = True
    max_positions: int = DEFAULT_MAX_POSITIONS
    quantity_per_trade: Optional[float] = None
    strategy: str = "mean_reversion"
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    auto_reinvest: bool = True
    max_hold_minutes: Optional[float] = None
    risk: RiskSettings = field(default_factory=RiskSettings)
    strategy_settings: StrategySettings = field(default_factory=StrategySettings)

    def __post_init__(self) -> None:
        normalized = tuple(dict.fromkeys(str(sym).strip().upper() for sym in self.symbols if str(sym).strip()))
        object.__setattr__(self, "symbols", normalized)

    def validate(self) -> "TradingConfig":
        """Raise ``ConfigurationError`` on the first invalid option; return self."""

        # pylint: disable=too-many-branches
        if not self.total_capital or self.total_capital <= 0:
            raise ConfigurationError(f"total_capital must be positive (got {self.total_capital!r})")
        if not self.symbols:
            raise ConfigurationError("symbols watch list must not be empty")
        if self.quantity_per_trade is not None:
            if self.quantity_per_trade <= 0:
                raise ConfigurationError(f"quantity_per_trade must be positive (got {self.quantity_per_trade!r})")
            if self.quantity_per_trade > self.total_capital:
                raise ConfigurationError("quantity_per_trade cannot exceed total_capital")
        for name in ("stop_loss_percent", "take_profit_percent"):
            value = getattr(self, name)
            if value <= 0 or value >= 100:
                raise ConfigurationError(f"{name} must be within (0, 100) (got {value!r})")
        if self.max_positions < 1:
            raise ConfigurationError(f"max_positions must be >= 1 (got {self.max_positions!r})")
        if self.strategy not in KNOWN_STRATEGIES:
            raise ConfigurationError(f"Unknown strategy {self.strategy!r}; expected one of {KNOWN_STRATEGIES}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigurationError(f"min_confidence must be within [0, 1] (got {self.min_confidence!r})")
        if self.max_hold_minutes is not None and self.max_hold_minutes <= 0:
            raise ConfigurationError("max_hold_minutes must be positive when set")

        risk = self.risk
        for name in ("capital_per_round_pct", "max_allocation_per_pair_pct", "daily_max_drawdown_pct"):
            value = getattr(risk, name)
            if value <= 0 or value > 100:
                raise ConfigurationError(f"risk.{name} must be within (0, 100] (got {value!r})")
        if not 0 <= risk.safety_reserve_pct < 100:
            raise ConfigurationError(f"risk.safety_reserve_pct must be within [0, 100) (got {risk.safety_reserve_pct!r})")
        if risk.loss_streak_limit < 1:
            raise ConfigurationError("risk.loss_streak_limit must be >= 1")
        if risk.circuit_breaker_pause_minutes <= 0:
            raise ConfigurationError("risk.circuit_breaker_pause_minutes must be positive")
        return self

    def with_overrides(self, **overrides: Any) -> "TradingConfig":
        """Return a validated copy with ``overrides`` applied."""

        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        return replace(self, **overrides).validate()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["symbols"] = list(self.symbols)
        return data

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, validate: bool = True) -> "TradingConfig":
        """Build a config from ``SPOT_TRADING_BOT_*`` variables (validated unless ``validate`` is False)."""

        env = os.environ if environ is None else environ

        def _get(name: str) -> str:
            return _sanitize_value(env.get(_ENV_PREFIX + name, ""))

        def _number(name: str, default, cast=float):
            raw = _get(name)
            if not raw:
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{_ENV_PREFIX}{name} is not a valid number: {raw!r}") from exc

        def _flag(name: str, default: bool) -> bool:
            raw = _get(name)
            return default if not raw else raw.lower() in _TRUTHY

        symbols = tuple(sym for sym in _get("SYMBOLS").split(",") if sym.strip())
        config = cls(
            total_capital=_number("TOTAL_CAPITAL", 0.0),
            symbols=symbols,
            take_profit_percent=_number("TAKE_PROFIT_PCT", DEFAULT_TAKE_PROFIT_PCT),
            stop_loss_percent=_number("STOP_LOSS_PCT", DEFAULT_STOP_LOSS_PCT),
            test_mode=_flag("TEST_MODE", True),
            max_positions=_number("MAX_POSITIONS", DEFAULT_MAX_POSITIONS, int),
            quantity_per_trade=_number("QUANTITY_PER_TRADE", None),
            strategy=_get("STRATEGY") or "mean_reversion",
            min_confidence=_number("MIN_CONFIDENCE", DEFAULT_MIN_CONFIDENCE),
            auto_reinvest=_flag("AUTO_REINVEST", True),
            max_hold_minutes=_number("MAX_HOLD_MINUTES", None),
        )
        return config.validate() if validate else config


__all__ = [
    "CONFIG",
    "ConfigurationError",
    "KNOWN_STRATEGIES",
    "RiskSettings",
    "StrategySettings",
    "TradingConfig",
]

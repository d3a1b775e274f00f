"""
Main entry point for the spot trading bot.

Runs the orchestrator headless against Binance market data until SIGINT /
SIGTERM. Session options come from ``SPOT_TRADING_BOT_*`` variables (.env) and
can be overridden on the command line. Creating the reset flag file
(``logs/circuit_breaker_reset.flag`` by default) clears an active
circuit-breaker pause on the next reinvestment check.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from spot_trading_bot.bot.orchestrator import TradingOrchestrator
from spot_trading_bot.config import CONFIG, ConfigurationError, KNOWN_STRATEGIES, TradingConfig
from spot_trading_bot.config.constants import PAIR_SELECTION_MIN_QUOTE_VOLUME
from spot_trading_bot.exchange.binance_client import BinanceClient
from spot_trading_bot.exchange.paper_executor import PaperExecutionClient
from spot_trading_bot.ledger.trade_ledger import TradeLedger
from spot_trading_bot.monitor.pair_monitor import select_volatile_pairs
from spot_trading_bot.safety.circuit_breaker import CircuitBreaker

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("spot_trading_bot.main")


def reset_flag_signal(flag_path: Path) -> Callable[[], bool]:
    """Return a callable that consumes ``flag_path`` and reports whether it existed."""

    def _check() -> bool:
        if not flag_path.exists():
            return False
        try:
            flag_path.unlink()
        except FileNotFoundError:
            return False
        log.warning("Circuit breaker reset requested via %s", flag_path)
        return True

    return _check


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-pair spot trading bot")
    parser.add_argument("--symbols", help="Comma-separated watch list, e.g. BTCUSDT,ETHUSDT")
    parser.add_argument("--capital", type=float, help="Total capital in quote currency")
    parser.add_argument("--quantity-per-trade", type=float, help="Fixed quote amount per entry")
    parser.add_argument("--max-positions", type=int, help="Maximum simultaneous positions")
    parser.add_argument("--strategy", choices=KNOWN_STRATEGIES, help="Signal strategy")
    parser.add_argument(
        "--auto-select",
        type=int,
        metavar="N",
        help="Pick the N most volatile USDT pairs when no watch list is given",
    )
    parser.add_argument("--paper", action="store_true", help="Fill orders locally instead of via the exchange")
    parser.add_argument("--live", action="store_true", help="Place real orders (requires API credentials)")
    parser.add_argument(
        "--reset-breaker",
        action="store_true",
        help="Clear an active circuit-breaker pause before starting",
    )
    parser.add_argument("--status-interval", type=float, default=60.0, help="Seconds between status lines")
    return parser


def resolve_config(args: argparse.Namespace, client: BinanceClient) -> TradingConfig:
    """Merge env-based options with CLI overrides and validate the result."""
    config = TradingConfig.from_env(validate=False)
    overrides: Dict[str, object] = {}
    if args.symbols:
        overrides["symbols"] = tuple(args.symbols.split(","))
    if args.capital is not None:
        overrides["total_capital"] = args.capital
    if args.quantity_per_trade is not None:
        overrides["quantity_per_trade"] = args.quantity_per_trade
    if args.max_positions is not None:
        overrides["max_positions"] = args.max_positions
    if args.strategy:
        overrides["strategy"] = args.strategy
    if args.live:
        overrides["test_mode"] = False

    if not overrides.get("symbols") and not config.symbols and args.auto_select:
        picked = select_volatile_pairs(
            client.get_tickers(),
            limit=args.auto_select,
            min_quote_volume=PAIR_SELECTION_MIN_QUOTE_VOLUME,
        )
        log.info("Auto-selected pairs: %s", ", ".join(picked) or "none")
        overrides["symbols"] = tuple(picked)
    return config.with_overrides(**overrides)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.live and args.paper:
        parser.error("--live is incompatible with --paper")

    ledger = TradeLedger(CONFIG["ledger_file"])
    client = BinanceClient(ledger=ledger)
    try:
        config = resolve_config(args, client)
    except ConfigurationError as exc:
        log.critical("Invalid configuration: %s", exc)
        return 1

    if not config.test_mode:
        if not client.has_credentials:
            log.critical("Live trading requires BINANCE_API_KEY and BINANCE_API_SECRET")
            return 1
        log.warning("Live trading enabled; orders will execute against real funds.")

    executor = PaperExecutionClient(client, ledger) if args.paper else client
    breaker = CircuitBreaker(ledger, config.total_capital, config.risk, state_path=Path(CONFIG["breaker_state_file"]))
    if args.reset_breaker:
        breaker.reset(why="CLI --reset-breaker")

    orchestrator = TradingOrchestrator(
        config,
        client,
        executor,
        ledger,
        circuit_breaker=breaker,
        reset_signal=reset_flag_signal(Path(CONFIG["reset_flag_file"])),
    )

    stop_event = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        log.info("Received signal %s; stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        orchestrator.start()
    except ConfigurationError as exc:
        log.critical("Failed to start: %s", exc)
        return 1

    try:
        while not stop_event.wait(args.status_interval):
            status = orchestrator.status()
            symbols: List[str] = [p["symbol"] for p in status["open_positions"]]
            log.info(
                "capital=%.2f pnl=%.4f mode=%s paused=%s open=%s",
                status["capital"],
                status["session_pnl"],
                status["risk_mode"],
                status["paused"],
                ",".join(symbols) or "-",
            )
    finally:
        orchestrator.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

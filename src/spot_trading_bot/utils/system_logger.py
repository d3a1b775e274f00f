"""Shared rotating loggers for the trading bot.

``get_system_logger`` writes human-readable diagnostics to ``logs/system.log``;
``get_anomalies_logger`` writes compact JSON lines to ``logs/anomalies.log`` for
events that need post-mortem review (indicator failures, rejected orders).
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_DIR = Path(os.getenv("SPOT_TRADING_BOT_LOG_DIR", "logs")).expanduser()
SYSTEM_LOG_PATH = LOG_DIR / "system.log"
ANOMALIES_LOG_PATH = LOG_DIR / "anomalies.log"

# Standard rotation policy: 10MB, keep 3 backups
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 3

_DEBUG_MODE = os.getenv("DEBUG_MODE", "0") == "1"
_ANOMALIES_LOGGER_NAME = "spot_trading_bot.anomalies"


def _rotating_handler(
    path: Path, fmt: str, max_bytes: int = MAX_LOG_SIZE, backup_count: int = BACKUP_COUNT
) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        mode="a",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
        delay=True,
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def get_system_logger(name: str = "spot_trading_bot.system") -> logging.Logger:
    """Return a configured RotatingFile logger for system diagnostics."""

    logger = logging.getLogger(name)
    if logger.hasHandlers():
        return logger

    logger.addHandler(_rotating_handler(SYSTEM_LOG_PATH, "%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.setLevel(logging.DEBUG if _DEBUG_MODE else logging.INFO)
    logger.propagate = False
    return logger


def get_jsonl_logger(
    name: str, path: Path, max_bytes: int = MAX_LOG_SIZE, backup_count: int = BACKUP_COUNT
) -> logging.Logger:
    """Return a message-only rotating logger bound to ``path``.

    Callers pass pre-serialized JSON. The logger keeps a single handler; asking
    for a different path swaps it, so a redirected log file takes effect on the
    next record.
    """
    logger = logging.getLogger(name)
    target = os.path.abspath(path)
    for handler in list(logger.handlers):
        if getattr(handler, "baseFilename", None) == target:
            return logger
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_rotating_handler(Path(path), "%(message)s", max_bytes, backup_count))
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def get_anomalies_logger() -> logging.Logger:
    """Return the shared rotating logger for logs/anomalies.log."""
    return get_jsonl_logger(_ANOMALIES_LOGGER_NAME, ANOMALIES_LOG_PATH)


def log_anomaly(kind: str, **fields: Any) -> None:
    """Append one compact JSON anomaly record; never raises on bad payloads."""

    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), "type": kind, **fields}
    try:
        get_anomalies_logger().info(json.dumps(payload, separators=(",", ":"), default=str))
    except (ValueError, TypeError):
        # Best-effort anomaly logging
        pass


__all__ = [
    "ANOMALIES_LOG_PATH",
    "LOG_DIR",
    "SYSTEM_LOG_PATH",
    "get_anomalies_logger",
    "get_jsonl_logger",
    "get_system_logger",
    "log_anomaly",
]

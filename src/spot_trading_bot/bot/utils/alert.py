"""
alert.py

Operator alerts for the trading session.
- Writes JSONL to logs/alerts.log (size-rotated)
- Optionally POSTs the payload to a webhook; webhook failures are logged as ERROR alerts
"""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from spot_trading_bot.config import CONFIG
from spot_trading_bot.utils.system_logger import LOG_DIR, get_jsonl_logger

ALERTS_LOG_PATH = str(LOG_DIR / "alerts.log")
MAX_ALERT_LOG_BYTES = int(os.getenv("SPOT_TRADING_BOT_ALERT_LOG_BYTES", str(5 * 1024 * 1024)))
ALERT_LOG_BACKUPS = int(os.getenv("SPOT_TRADING_BOT_ALERT_LOG_BACKUPS", "3"))
_ALERTS_LOGGER_NAME = "spot_trading_bot.alerts"


def _write_alert_line(payload: Dict[str, Any], path: Optional[str] = None) -> None:
    target = path or ALERTS_LOG_PATH
    try:
        alerts_logger = get_jsonl_logger(_ALERTS_LOGGER_NAME, Path(target), MAX_ALERT_LOG_BYTES, ALERT_LOG_BACKUPS)
    except OSError:
        # Never raise from the alert path
        return
    alerts_logger.info(json.dumps(payload, default=str))


def send_alert(
    message: str,
    context: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
    webhook_url: Optional[str] = None,
    timeout: int = 5,
) -> Dict[str, Any]:
    """
    Log an alert to logs/alerts.log as JSONL and optionally post it to a webhook.

    Args:
        message: Human-readable message.
        context: Optional structured context payload.
        level: INFO | WARN | ERROR | CRITICAL
        webhook_url: URL to POST the payload to; defaults to ``CONFIG["alert_webhook"]``.
        timeout: seconds for the webhook request.

    Returns the payload that was written.
    """
    payload: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "message": message,
    }
    if context:
        payload["context"] = context

    _write_alert_line(payload)

    url = webhook_url or CONFIG.get("alert_webhook")
    if url:
        try:
            req = urllib.request.Request(
                url,
                data=json.dumps(payload, default=str).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=timeout) as _:
                pass
        except (urllib.error.URLError, ValueError) as exc:
            _write_alert_line(
                {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "level": "ERROR",
                    "message": "Alert webhook dispatch failed",
                    "context": {"error": str(exc), "original_message": message},
                }
            )
    return payload


__all__ = ["ALERTS_LOG_PATH", "send_alert"]

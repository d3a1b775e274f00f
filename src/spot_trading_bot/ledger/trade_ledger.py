"""
Trade Ledger Module

Append-only JSONL store of trade rows with in-place outcome updates.

Row schema::

    {"id", "symbol", "side": BUY|SELL, "type": "MARKET", "quantity", "price",
     "status": PENDING|EXECUTED|FAILED|CANCELLED, "profit_loss", "test_mode",
     "created_at", "executed_at", "closed_at"}

An opening BUY stays ``PENDING`` while its position is open; recording the
round-trip outcome stamps ``profit_loss`` / ``closed_at`` and marks it
``EXECUTED``. Rewrites go through a temp file and ``os.replace`` while an
exclusive ``fcntl`` lock is held on the source.
"""

from __future__ import annotations

import fcntl
import json
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from spot_trading_bot.bot.interfaces import BUY, STATUS_EXECUTED, STATUS_PENDING
from spot_trading_bot.config.constants import TRADE_LEDGER_FILE
from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("trade_ledger")

Timestamp = Union[float, int, str, datetime, None]


def to_epoch(value: Timestamp) -> Optional[float]:
    """Convert an ISO-8601 string, datetime or epoch number to epoch seconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def iso(epoch: Optional[float] = None) -> str:
    moment = datetime.now(timezone.utc) if epoch is None else datetime.fromtimestamp(epoch, tz=timezone.utc)
    return moment.isoformat()


def record_time(row: Dict[str, Any]) -> Optional[float]:
    """Best timestamp describing when a row last changed state."""
    for key in ("closed_at", "executed_at", "created_at"):
        ts = to_epoch(row.get(key))
        if ts is not None:
            return ts
    return None


@contextmanager
def _locked_file(path: Path, mode: str = "r") -> Iterator[Any]:
    """Open ``path`` and hold an exclusive lock for the duration of the context."""
    with open(path, mode, encoding="utf-8") as handle:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX)
            yield handle
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


class TradeLedger:
    """JSONL-backed trade store used by the executors and the circuit breaker."""

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self.path = Path(path) if path is not None else TRADE_LEDGER_FILE
        self._lock = threading.Lock()

    def _read_rows(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        rows: List[Dict[str, Any]] = []
        with _locked_file(self.path, "r") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError as exc:
                    raw = line.strip()
                    logger.warning("Skipping malformed ledger line: %s (%s)", raw[:200], exc)
                    continue
                if isinstance(row, dict) and row.get("id"):
                    rows.append(row)
        return rows

    def _rewrite(self, rows: List[Dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with _locked_file(self.path, "r+"):
            with open(tmp_path, "w", encoding="utf-8") as handle:
                for row in rows:
                    handle.write(json.dumps(row) + "\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)

    def record_trade(
        self,
        symbol: str,
        side: str,
        quantity: float,
        price: float,
        status: str = STATUS_EXECUTED,
        *,
        trade_id: Optional[str] = None,
        profit_loss: Optional[float] = None,
        test_mode: bool = True,
        **extra: Any,
    ) -> Dict[str, Any]:
        """Append a trade row and return it."""
        now = iso()
        row: Dict[str, Any] = {
            "id": trade_id or uuid.uuid4().hex,
            "symbol": symbol,
            "side": side.upper(),
            "type": "MARKET",
            "quantity": float(quantity),
            "price": float(price),
            "status": status,
            "profit_loss": profit_loss,
            "test_mode": bool(test_mode),
            "created_at": now,
            "executed_at": now if status in (STATUS_EXECUTED, STATUS_PENDING) else None,
            "closed_at": None,
        }
        row.update(extra)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
            with _locked_file(self.path, "a") as handle:
                handle.write(json.dumps(row) + "\n")
                handle.flush()
                os.fsync(handle.fileno())
        logger.info("Recorded %s %s %.8f @ %.8f (%s) id=%s", row["side"], symbol, row["quantity"], row["price"], status, row["id"])
        return row

    def update_trade(self, trade_id: str, **changes: Any) -> Optional[Dict[str, Any]]:
        """Apply ``changes`` to the row ``trade_id``; returns the updated row or ``None``."""
        with self._lock:
            rows = self._read_rows()
            target = next((row for row in rows if row.get("id") == trade_id), None)
            if target is None:
                logger.warning("Ledger update skipped: trade %s not found", trade_id)
                return None
            target.update(changes)
            self._rewrite(rows)
            return dict(target)

    def persist_round_trip_outcome(self, trade_id: str, profit_loss: float, closed_at: Timestamp = None) -> None:
        """Attach realized P&L to the opening trade and mark it closed."""
        closed = to_epoch(closed_at)
        updated = self.update_trade(
            trade_id,
            profit_loss=float(profit_loss),
            closed_at=iso(closed),
            status=STATUS_EXECUTED,
        )
        if updated is not None:
            logger.info("Round trip %s closed with P&L %.8f", trade_id, profit_loss)

    def load_trades(self, since: Timestamp = None) -> List[Dict[str, Any]]:
        """Rows ordered by creation time, optionally only those touched at/after ``since``."""
        with self._lock:
            rows = self._read_rows()
        cutoff = to_epoch(since)
        if cutoff is not None:
            rows = [row for row in rows if (record_time(row) or 0.0) >= cutoff]
        rows.sort(key=lambda row: to_epoch(row.get("created_at")) or 0.0)
        return rows

    def open_buys(self) -> List[Dict[str, Any]]:
        """BUY rows still ``PENDING`` (positions opened but not closed)."""
        return [
            row
            for row in self.load_trades()
            if str(row.get("side", "")).upper() == BUY and row.get("status") == STATUS_PENDING
        ]


__all__ = ["TradeLedger", "iso", "record_time", "to_epoch"]

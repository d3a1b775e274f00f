"""Durable trade records."""

from .trade_ledger import TradeLedger, iso, record_time, to_epoch

__all__ = ["TradeLedger", "iso", "record_time", "to_epoch"]

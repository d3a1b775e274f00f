"""Per-symbol market monitoring."""

from .pair_monitor import PairMonitor, PairMonitorStore, select_volatile_pairs

__all__ = ["PairMonitor", "PairMonitorStore", "select_volatile_pairs"]

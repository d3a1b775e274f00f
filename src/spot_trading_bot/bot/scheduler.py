"""
Scheduler Module

Runs the orchestrator's periodic jobs (market scan, position check,
reinvestment check) on independent daemon threads, each driving its own
``schedule.Scheduler``.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import schedule

from spot_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("scheduler")


class PeriodicTask:
    """Call ``func`` every ``interval`` seconds until stopped.

    An exception inside one run is logged and the next run proceeds on
    schedule. ``stop`` never waits longer than ``join_timeout``.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], None], run_immediately: bool = True) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive (got {interval!r})")
        self.name = name
        self.interval = interval
        self.func = func
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self.last_run: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """Execute one iteration; returns False when it raised."""
        self.last_run = time.time()
        self.runs += 1
        try:
            self.func()
            return True
        except Exception:  # pylint: disable=broad-exception-caught
            self.failures += 1
            logger.exception("Task %s failed", self.name)
            return False

    def _loop(self) -> None:
        scheduler = schedule.Scheduler()
        scheduler.every(self.interval).seconds.do(self.run_once)
        if self.run_immediately and not self._stop.is_set():
            scheduler.run_all()
        while not self._stop.is_set():
            scheduler.run_pending()
            idle = scheduler.idle_seconds
            self._stop.wait(self.interval if idle is None else min(max(idle, 0.0), self.interval))

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"task-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Started task %s (every %.1fs)", self.name, self.interval)

    def stop(self, join_timeout: float = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)
        self._thread = None
        logger.info("Stopped task %s after %d run(s)", self.name, self.runs)


__all__ = ["PeriodicTask"]

"""
Refresh scheduler for PowerWatch.

Runs the cache's non-forced refresh on a fixed interval in a daemon
thread. Each tick goes through CacheManager.refresh_snapshot, so the
timer never runs the engine concurrently with a request-triggered
refresh.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from powerwatch.observability import get_logger

if TYPE_CHECKING:
    from powerwatch.cache import CacheManager, RefreshResult


_RATE_PATTERN = re.compile(
    r"^(\d+)\s*(second|seconds|minute|minutes|hour|hours|day|days)$", re.I
)


@dataclass
class RateExpression:
    """
    Rate-based schedule expression.

    Runs at fixed intervals from the start time.

    Examples:
        - "rate(5 minutes)" - Every 5 minutes
        - "rate(1 hour)" - Every hour
        - "rate(1 day)" - Every day
    """

    expression: str
    _interval: timedelta = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Parse the rate expression."""
        expr = self.expression.strip()

        if expr.startswith("rate(") and expr.endswith(")"):
            expr = expr[5:-1].strip()

        match = _RATE_PATTERN.match(expr)
        if not match:
            raise ValueError(f"Invalid rate expression: {self.expression}")

        value = int(match.group(1))
        if value <= 0:
            raise ValueError(f"Rate must be positive: {self.expression}")

        unit = match.group(2).lower().rstrip("s")
        self._interval = timedelta(**{f"{unit}s": value})

    @classmethod
    def every(cls, seconds: float) -> RateExpression:
        """Build an expression from an interval in seconds."""
        seconds = int(seconds)
        if seconds % 86400 == 0:
            return cls(f"rate({seconds // 86400} days)")
        if seconds % 3600 == 0:
            return cls(f"rate({seconds // 3600} hours)")
        if seconds % 60 == 0:
            return cls(f"rate({seconds // 60} minutes)")
        return cls(f"rate({seconds} seconds)")

    def get_next_run(self, after: datetime | None = None) -> datetime:
        """Get the next run time after the given datetime."""
        if after is None:
            after = datetime.now(timezone.utc)
        return after + self._interval

    @property
    def interval(self) -> timedelta:
        """Get the interval between runs."""
        return self._interval


class RefreshScheduler:
    """
    Background timer for cache refreshes.

    Exceptions raised by a tick are logged and the loop keeps running.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        schedule: RateExpression | str = "rate(60 minutes)",
        run_on_start: bool = True,
    ):
        """
        Initialize the refresh scheduler.

        Args:
            cache_manager: Cache whose snapshot is refreshed
            schedule: Interval between refreshes
            run_on_start: Tick once immediately when started
        """
        if isinstance(schedule, str):
            schedule = RateExpression(schedule)
        self.cache_manager = cache_manager
        self.schedule = schedule
        self.run_on_start = run_on_start
        self._logger = get_logger("scheduling")
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._run_count = 0
        self._last_run: datetime | None = None
        self._next_run: datetime | None = None
        self._last_result: RefreshResult | None = None

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self.is_running():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="powerwatch-refresh", daemon=True
        )
        self._thread.start()
        self._logger.info(
            "Refresh scheduler started",
            interval_seconds=self.schedule.interval.total_seconds(),
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the scheduler background thread."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            self._thread = None
            self._logger.info("Refresh scheduler stopped")

    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    def run_now(self) -> RefreshResult | None:
        """
        Run one tick immediately on the calling thread.

        Returns:
            The refresh result, or None if the tick raised
        """
        return self._tick()

    def _run_loop(self) -> None:
        interval = self.schedule.interval.total_seconds()
        if self.run_on_start:
            self._tick()

        while True:
            with self._lock:
                self._next_run = self.schedule.get_next_run()
            if self._stop_event.wait(interval):
                break
            self._tick()

    def _tick(self) -> RefreshResult | None:
        now = datetime.now(timezone.utc)
        try:
            result = self.cache_manager.refresh_snapshot(force=False)
        except Exception as e:
            self._logger.error("Scheduled refresh raised", exc_info=True, error=str(e))
            result = None

        with self._lock:
            self._run_count += 1
            self._last_run = now
            self._last_result = result
        return result

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        with self._lock:
            return {
                "running": self.is_running(),
                "expression": self.schedule.expression,
                "interval_seconds": self.schedule.interval.total_seconds(),
                "run_count": self._run_count,
                "last_run": self._last_run.isoformat() if self._last_run else None,
                "next_run": self._next_run.isoformat() if self._next_run else None,
                "last_status": self._last_result.status.value if self._last_result else None,
            }

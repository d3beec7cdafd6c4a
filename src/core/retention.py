"""
Retention policy engine - age cutoff first, then record-count cap.

A pass runs once when the store opens, then on a fixed interval from a
background thread, and on demand through RecordStore.run_cleanup_now().
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from util.logging import logger

from .db import RecordTable
from .schema import CleanupReport, utc_now


def run_cleanup(table: RecordTable, max_age_minutes: int, max_records: int,
                now: Optional[datetime] = None) -> CleanupReport:
    """
    Enforce both retention caps in one pass.

    Args:
        table: Record table to prune
        max_age_minutes: Records created strictly before now - max_age_minutes are deleted
        max_records: After the age step, the oldest records beyond this count are deleted
        now: Reference time (defaults to the current UTC time)

    Returns:
        CleanupReport: Counts deleted by each policy and the records left
    """
    now = now or utc_now()
    cutoff = now - timedelta(minutes=max_age_minutes)

    deleted_by_age, deleted_by_count, remaining = table.cleanup(cutoff, max_records)

    return CleanupReport(
        deleted_by_age=deleted_by_age,
        deleted_by_count=deleted_by_count,
        remaining_records=remaining,
        started_at=now,
    )


class RetentionScheduler:
    """Runs a cleanup task on a fixed interval in a daemon thread."""

    def __init__(self, task: Callable[[], object], interval_sec: float, name: str = "retention"):
        if not callable(task):
            raise ValueError(f"Task function must be callable: {task}")

        if interval_sec <= 0:
            raise ValueError(f"Interval must be > 0 seconds: {interval_sec}")

        self.task = task
        self.interval_sec = interval_sec
        self.name = name
        self.last_run: Optional[float] = None
        self.runs = 0
        self.failures = 0
        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the timer thread. The first run happens one interval from now."""
        if self.is_running:
            raise RuntimeError(f"Scheduler '{self.name}' already running")

        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._loop, name=f"{self.name}-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Started {self.name} scheduler (every {self.interval_sec:g}s)")

    def stop(self, timeout: float = 5.0):
        """Stop the timer thread and wait for an in-flight run to finish. Safe to call twice."""
        self._shutdown_event.set()

        thread = self._thread
        if thread is None:
            return

        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info(f"Stopped {self.name} scheduler")

    def _loop(self):
        while not self._shutdown_event.wait(self.interval_sec):
            self.run_once()

    def run_once(self):
        """Execute the task once, isolating failures from the loop."""
        start_time = time.monotonic()
        try:
            self.task()
            self.runs += 1
        except Exception as e:
            # Error isolation - log error but keep the timer alive
            self.failures += 1
            duration = time.monotonic() - start_time
            logger.error(f"Scheduled task '{self.name}' failed after {duration:.2f}s: {e}")
        finally:
            self.last_run = time.monotonic()

    def get_status(self) -> Dict[str, object]:
        """Return current scheduler status for monitoring."""
        return {
            "status": "running" if self.is_running else "stopped",
            "interval_sec": self.interval_sec,
            "last_run": self.last_run,
            "next_run": self.last_run + self.interval_sec if self.last_run else None,
            "runs": self.runs,
            "failures": self.failures,
        }

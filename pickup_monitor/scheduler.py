"""Periodic driver for the availability tracker.

A single daemon thread waits one interval, then runs a check. The wait
is interruptible so pause/resume, interval changes and stop take effect
without waiting out the current period.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Optional

from . import config
from .tracker import BUSY, AvailabilityTracker, CheckOutcome

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        tracker: AvailabilityTracker,
        *,
        interval_minutes: int = config.CHECK_INTERVAL_MINUTES,
        enabled: bool = config.CHECK_ENABLED,
    ) -> None:
        self.tracker = tracker
        self.interval_minutes = config.validate_interval(interval_minutes)
        self.enabled = enabled
        self.check_count = 0
        self.start_time: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None
        self._paused = False
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    # ---- lifecycle --------------------------------------------------------

    def start(self, *, run_immediately: bool = True) -> None:
        """Start the periodic loop; an immediate check runs first by default."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scheduler with %d minute interval", self.interval_minutes)
        self.start_time = datetime.now()
        self._started_monotonic = time.monotonic()
        self._paused = False
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(
            target=self._loop,
            kwargs={"run_immediately": run_immediately},
            name="availability-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Scheduler started successfully")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait up to ``timeout`` seconds for it.

        If the loop is still inside a check when the wait ends, its handle is
        kept, so `running` stays True and `start` refuses to launch a second
        loop until it has exited.
        """
        if self._thread is None:
            return
        self._stop.set()
        self._wake.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Scheduler still finishing a check; it will stop when the check ends")
            return
        self._thread = None
        logger.info("Scheduler stopped")

    def pause(self) -> bool:
        if not self.running:
            return False
        self._paused = True
        logger.info("Scheduler paused")
        return True

    def resume(self) -> bool:
        if not self.running:
            return False
        self._paused = False
        self._wake.set()
        logger.info("Scheduler resumed")
        return True

    def update_interval(self, minutes) -> int:
        """Change the period; raises `ConfigValidationError` and keeps the old one if invalid."""
        self.interval_minutes = config.validate_interval(minutes)
        self._wake.set()
        logger.info("Check interval updated to %d minutes", self.interval_minutes)
        return self.interval_minutes

    # ---- checks -----------------------------------------------------------

    def run_now(self) -> CheckOutcome:
        """Out-of-band check; shares the tracker's busy guard with the timer."""
        logger.info("Running immediate check")
        return self.tracker.run_check()

    def _tick(self) -> CheckOutcome:
        logger.info("Running scheduled check #%d", self.check_count + 1)
        outcome = self.tracker.run_check()
        if outcome.status == BUSY:
            logger.warning("Previous check still running, skipping this interval")
        else:
            self.check_count += 1
        return outcome

    def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            self._safe_tick()
        while not self._stop.is_set():
            # an interval change or resume restarts the wait with the current period
            if self._wake.wait(self.interval_seconds):
                self._wake.clear()
                continue
            if self._stop.is_set():
                break
            if self._paused:
                continue
            self._safe_tick()

    def _safe_tick(self) -> None:
        try:
            self._tick()
        except Exception:
            logger.exception("Error during scheduled check")

    def get_status(self) -> dict:
        uptime = time.monotonic() - self._started_monotonic if self._started_monotonic else 0
        return {
            "running": self.running,
            "paused": self._paused,
            "currentlyChecking": self.tracker.is_checking,
            "checkCount": self.check_count,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "uptime": int(uptime),
            "intervalMinutes": self.interval_minutes,
            "enabled": self.enabled,
        }


__all__ = ["Scheduler"]

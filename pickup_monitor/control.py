"""Operations exposed to the control server (and anything else embedding the monitor)."""
from __future__ import annotations

import logging
import time
from datetime import datetime

from . import config
from .notifier import AvailabilityNotifier
from .scheduler import Scheduler
from .tracker import AvailabilityTracker

logger = logging.getLogger(__name__)


class ControlSurface:
    def __init__(
        self,
        tracker: AvailabilityTracker,
        scheduler: Scheduler,
        notifier: AvailabilityNotifier,
    ) -> None:
        self.tracker = tracker
        self.scheduler = scheduler
        self.notifier = notifier
        self._booted = time.monotonic()

    def get_status(self) -> dict:
        preferred = self.tracker.preferred
        return {
            "scheduler": self.scheduler.get_status(),
            "checker": self.tracker.get_status(),
            "notifications": self.notifier.stats(),
            "config": {
                "product": {
                    "name": self.notifier.product_name,
                    "sku": preferred.sku,
                    "model": preferred.model,
                    "storage": preferred.storage,
                    "color": preferred.color,
                    "variantCount": len(self.tracker.variants),
                },
                "stores": {
                    "ids": list(self.tracker.store_ids),
                    "names": {sid: config.STORE_NAMES.get(sid, sid) for sid in self.tracker.store_ids},
                },
                "checkInterval": self.scheduler.interval_minutes,
            },
        }

    def check_now(self) -> dict:
        logger.info("Manual check requested")
        return self.scheduler.run_now().to_dict()

    def get_history(self, limit: int = 10) -> dict:
        return {
            "history": [r.to_dict() for r in self.tracker.get_history(limit)],
            "currentAvailability": {sid: s.to_dict() for sid, s in self.tracker.snapshot.items()},
        }

    def update_interval(self, minutes) -> dict:
        """Raises `ConfigValidationError` for values outside 1..60."""
        value = self.scheduler.update_interval(minutes)
        return {"success": True, "message": f"Interval updated to {value} minutes"}

    def pause(self) -> dict:
        if not self.scheduler.pause():
            return {"success": False, "message": "Scheduler is not running"}
        return {"success": True, "message": "Scheduler paused"}

    def resume(self) -> dict:
        if not self.scheduler.resume():
            return {"success": False, "message": "Scheduler is not running"}
        return {"success": True, "message": "Scheduler resumed"}

    def send_test_notification(self) -> dict:
        logger.info("Test SMS requested")
        ok = self.notifier.send_test_message()
        return {
            "success": ok,
            "message": "Test SMS sent successfully" if ok else "Failed to send test SMS",
        }

    def health(self) -> dict:
        return {
            "status": "healthy",
            "uptime": round(time.monotonic() - self._booted, 3),
            "timestamp": datetime.now().astimezone().isoformat(),
        }


__all__ = ["ControlSurface"]

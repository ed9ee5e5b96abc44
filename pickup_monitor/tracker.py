"""Availability state machine.

Owns the last-known availability per store and runs one check cycle:
fetch, diff against the previous snapshot, alert on preferred-variant
transitions, replace the snapshot and record history.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional, Sequence

from . import config
from .gate import Clock
from .notifier import AvailabilityNotifier
from .scraper import AvailabilitySource, Snapshot, StoreAvailability, Variant, find_variant
from .utils import SystemClock

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

COMPLETED = "completed"
BUSY = "busy"
FAILED = "failed"


class CycleError(Exception):
    """A whole check cycle failed; the previous snapshot is kept."""


@dataclass(frozen=True)
class CheckRecord:
    timestamp: datetime
    duration_ms: int
    source: Optional[str]
    snapshot: Snapshot

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration_ms,
            "source": self.source,
            "results": {sid: s.to_dict() for sid, s in self.snapshot.items()},
        }


@dataclass(frozen=True)
class CheckOutcome:
    status: str
    message: str
    record: Optional[CheckRecord] = None
    alerted: tuple = ()

    @property
    def success(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> dict:
        return {"success": self.success, "status": self.status, "message": self.message}


class AvailabilityTracker:
    def __init__(
        self,
        source: AvailabilitySource,
        notifier: AvailabilityNotifier,
        variants: Sequence[Variant],
        store_ids: Sequence[str],
        *,
        preferred_sku: str = config.PRODUCT_SKU,
        clock: Optional[Clock] = None,
    ) -> None:
        self.source = source
        self.notifier = notifier
        self.variants = list(variants)
        self.store_ids = list(store_ids)
        self.preferred_sku = preferred_sku
        self.clock: Clock = clock or SystemClock()
        self._busy = threading.Lock()
        self._snapshot: Snapshot = {}
        self._history: Deque[CheckRecord] = deque(maxlen=HISTORY_LIMIT)
        self.check_total = 0

        preferred = find_variant(preferred_sku, self.variants)
        if preferred is None:
            raise ValueError(f"Preferred SKU {preferred_sku!r} is not among the polled variants")
        self.preferred: Variant = preferred

    # ---- state ------------------------------------------------------------

    @property
    def is_checking(self) -> bool:
        return self._busy.locked()

    @property
    def snapshot(self) -> Snapshot:
        return dict(self._snapshot)

    def get_history(self, limit: Optional[int] = None) -> List[CheckRecord]:
        records = list(self._history)
        return records if limit is None else records[:limit]

    def get_status(self) -> dict:
        last = self._history[0] if self._history else None
        return {
            "lastCheck": last.timestamp.isoformat() if last else None,
            "currentAvailability": {sid: s.to_dict() for sid, s in self._snapshot.items()},
            "recentChecks": [r.to_dict() for r in self.get_history(10)],
            "checkCount": self.check_total,
        }

    # ---- cycle ------------------------------------------------------------

    def run_check(self) -> CheckOutcome:
        """Run one full cycle, or return a ``busy`` outcome if one is in flight."""
        if not self._busy.acquire(blocking=False):
            logger.warning("Check already in progress")
            return CheckOutcome(BUSY, "Check already in progress")
        try:
            return self._cycle()
        finally:
            self._busy.release()

    def _cycle(self) -> CheckOutcome:
        logger.info("Starting availability check...")
        started = time.monotonic()
        try:
            fresh = self._fetch()
        except CycleError as e:
            logger.error("Error during availability check: %s", e, exc_info=e.__cause__)
            return CheckOutcome(FAILED, f"Check failed: {e}")

        alerted = self._process(fresh)
        self._snapshot = fresh

        duration_ms = int((time.monotonic() - started) * 1000)
        record = CheckRecord(
            timestamp=self.clock.now(),
            duration_ms=duration_ms,
            source=getattr(self.source, "last_source", None) or getattr(self.source, "name", None),
            snapshot=fresh,
        )
        self._history.appendleft(record)
        self.check_total += 1
        logger.info("Availability check completed in %dms", duration_ms)
        return CheckOutcome(COMPLETED, "Check completed successfully", record, tuple(alerted))

    def _fetch(self) -> Snapshot:
        try:
            return dict(self.source.fetch(self.variants, self.store_ids))
        except Exception as e:
            raise CycleError(str(e) or type(e).__name__) from e

    def _process(self, fresh: Snapshot) -> List[str]:
        """Log per-store changes and alert on preferred transitions; returns alerted store ids."""
        alerted: List[str] = []
        for store_id, store in fresh.items():
            previous = self._snapshot.get(store_id)
            if store.variants:
                logger.info(
                    "Available variants at %s: %s",
                    store.name,
                    ", ".join(f"{v.variant.model} {v.variant.color} {v.variant.storage}" for v in store.variants),
                )

            was_preferred = previous is not None and previous.has_sku(self.preferred_sku)
            if store.has_sku(self.preferred_sku) and not was_preferred:
                logger.info(
                    "Preferred %s (%s %s) is NOW AVAILABLE at %s",
                    self.preferred.model, self.preferred.color, self.preferred.storage, store.name,
                )
                self._alert(store)
                alerted.append(store_id)
            elif store.available and not (previous is not None and previous.available):
                logger.info(
                    "Other variants available at %s, but not the preferred %s %s %s",
                    store.name, self.preferred.model, self.preferred.color, self.preferred.storage,
                )
            elif not store.available:
                logger.debug("No variants available at %s", store.name)
        return alerted

    def _alert(self, store: StoreAvailability) -> None:
        try:
            self.notifier.notify_available(store, self.preferred)
        except Exception:
            # a failed send never aborts the cycle
            logger.exception("Notification for store %s failed", store.store_id)


__all__ = [
    "AvailabilityTracker",
    "CheckOutcome",
    "CheckRecord",
    "CycleError",
    "HISTORY_LIMIT",
    "COMPLETED",
    "BUSY",
    "FAILED",
]

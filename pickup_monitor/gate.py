"""Cooldown and daily-limit policy for availability alerts."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import Dict, Mapping, Optional, Protocol

from . import config
from .utils import SystemClock

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class NotificationGate:
    """Decides whether an alert for a store may be sent right now.

    Two independent gates must both pass: a process-wide daily counter
    (reset when the local calendar date changes) and a per-store cooldown.
    `should_notify` only reads and resets state; the caller records a
    send with `record_sent` once the transport has delivered it.
    """

    def __init__(
        self,
        *,
        cooldown_minutes: int = config.COOLDOWN_MINUTES,
        max_per_day: int = config.MAX_NOTIFICATIONS_PER_DAY,
        clock: Optional[Clock] = None,
    ) -> None:
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.max_per_day = max_per_day
        self.clock: Clock = clock or SystemClock()
        self.last_sent: Dict[str, datetime] = {}
        self.daily_count = 0
        self.reset_date: date = self.clock.now().date()

    def _roll_day(self, now: datetime) -> None:
        if now.date() != self.reset_date:
            self.daily_count = 0
            self.reset_date = now.date()
            logger.info("Daily notification counter reset")

    def should_notify(self, store_id: str) -> bool:
        now = self.clock.now()
        self._roll_day(now)

        if self.daily_count >= self.max_per_day:
            logger.warning("Daily notification limit reached (%d)", self.max_per_day)
            return False

        last = self.last_sent.get(store_id)
        if last is not None:
            elapsed = now - last
            if elapsed < self.cooldown:
                remaining = math.ceil((self.cooldown - elapsed).total_seconds() / 60)
                logger.debug("Cooldown active for store %s - %d minutes remaining", store_id, remaining)
                return False

        return True

    def record_sent(self, store_id: str) -> None:
        now = self.clock.now()
        self._roll_day(now)
        self.last_sent[store_id] = now
        self.daily_count += 1

    def stats(self, store_names: Optional[Mapping[str, str]] = None) -> dict:
        names = store_names if store_names is not None else config.STORE_NAMES
        return {
            "dailyCount": self.daily_count,
            "dailyLimit": self.max_per_day,
            "cooldownMinutes": int(self.cooldown.total_seconds() // 60),
            "lastNotifications": [
                {"storeId": store_id, "storeName": names.get(store_id, store_id), "time": ts.isoformat()}
                for store_id, ts in self.last_sent.items()
            ],
        }


__all__ = ["Clock", "NotificationGate"]

"""Shared fakes for the monitor tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from pickup_monitor.gate import NotificationGate
from pickup_monitor.notifier import AvailabilityNotifier, NotificationTransportError
from pickup_monitor.scraper import AvailableVariant, StoreAvailability, Variant, empty_store
from pickup_monitor.tracker import AvailabilityTracker

PREFERRED = Variant("MZ7C3ZP/A", "Pro Max", "256GB", "Silver")
OTHER = Variant("MZ5E3ZP/A", "Pro", "256GB", "Graphite")
VARIANTS = [PREFERRED, OTHER]
STORES = ["R669", "R673", "R676"]


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 10, 19, 9, 0, 0)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeSender:
    """Records messages; fails when ``fail`` is set."""

    configured = True

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[tuple] = []

    def send(self, to_address: str, from_address: str, body: str) -> str:
        if self.fail:
            raise NotificationTransportError("boom")
        self.sent.append((to_address, from_address, body))
        return f"SM{len(self.sent):04d}"


class StaticSource:
    """Returns queued snapshots (or raises queued exceptions) in order."""

    name = "static"

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0
        self.before_return: Optional[Callable[[], None]] = None

    def push(self, result) -> None:
        self.results.append(result)

    def fetch(self, variants: Sequence[Variant], stores: Sequence[str]) -> Dict[str, StoreAvailability]:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if self.before_return is not None:
            self.before_return()
        if isinstance(result, Exception):
            raise result
        return {k: v for k, v in result.items()}


def store(store_id: str, *variants: Variant) -> StoreAvailability:
    entry = empty_store(store_id)
    for v in variants:
        entry.available = True
        entry.variants.append(AvailableVariant(v, "Today"))
    if variants:
        entry.message = f"{len(variants)} variant(s) available"
    return entry


def snapshot(**stores: Sequence[Variant]) -> Dict[str, StoreAvailability]:
    return {sid: store(sid, *vs) for sid, vs in stores.items()}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def gate(clock: FakeClock) -> NotificationGate:
    return NotificationGate(cooldown_minutes=30, max_per_day=10, clock=clock)


@pytest.fixture
def notifier(sender: FakeSender, gate: NotificationGate) -> AvailabilityNotifier:
    return AvailabilityNotifier(
        sender,
        gate,
        phone_to="+6590000000",
        phone_from="+15550000000",
        product_name="iPhone 17 Pro Max",
        purchase_url="https://example.test/buy",
    )


@pytest.fixture
def make_tracker(notifier: AvailabilityNotifier, clock: FakeClock):
    def _make(source) -> AvailabilityTracker:
        return AvailabilityTracker(
            source, notifier, VARIANTS, STORES, preferred_sku=PREFERRED.sku, clock=clock
        )

    return _make

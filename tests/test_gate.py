"""Tests for NotificationGate cooldown and daily-limit policy."""

from datetime import datetime

from conftest import FakeClock

from pickup_monitor.gate import NotificationGate


def _send(gate: NotificationGate, store_id: str) -> bool:
    if gate.should_notify(store_id):
        gate.record_sent(store_id)
        return True
    return False


class TestDailyLimit:
    def test_third_send_same_day_denied_regardless_of_elapsed_time(self) -> None:
        clock = FakeClock(datetime(2026, 10, 19, 8, 0))
        gate = NotificationGate(cooldown_minutes=30, max_per_day=2, clock=clock)

        assert _send(gate, "R669") is True
        clock.advance(hours=2)
        assert _send(gate, "R669") is True
        clock.advance(hours=5)
        assert gate.should_notify("R669") is False
        assert gate.daily_count == 2

    def test_limit_is_process_wide_not_per_store(self) -> None:
        clock = FakeClock()
        gate = NotificationGate(cooldown_minutes=30, max_per_day=2, clock=clock)

        assert _send(gate, "R669") is True
        assert _send(gate, "R673") is True
        assert gate.should_notify("R676") is False

    def test_counter_resets_when_date_changes(self) -> None:
        clock = FakeClock(datetime(2026, 10, 19, 23, 50))
        gate = NotificationGate(cooldown_minutes=0, max_per_day=1, clock=clock)

        assert _send(gate, "R669") is True
        assert gate.should_notify("R673") is False

        clock.advance(minutes=15)  # 00:05 next day
        assert gate.should_notify("R673") is True
        assert gate.daily_count == 0
        assert gate.reset_date == datetime(2026, 10, 20).date()

    def test_counter_not_reset_within_same_day(self) -> None:
        clock = FakeClock(datetime(2026, 10, 19, 0, 1))
        gate = NotificationGate(cooldown_minutes=0, max_per_day=5, clock=clock)

        _send(gate, "R669")
        clock.advance(hours=23, minutes=58)
        gate.should_notify("R669")
        assert gate.daily_count == 1


class TestCooldown:
    def test_second_event_within_cooldown_denied(self) -> None:
        clock = FakeClock()
        gate = NotificationGate(cooldown_minutes=30, max_per_day=10, clock=clock)

        assert _send(gate, "R669") is True
        clock.advance(minutes=10)
        assert gate.should_notify("R669") is False

    def test_second_event_after_cooldown_allowed(self) -> None:
        clock = FakeClock()
        gate = NotificationGate(cooldown_minutes=30, max_per_day=10, clock=clock)

        assert _send(gate, "R669") is True
        clock.advance(minutes=31)
        assert gate.should_notify("R669") is True

    def test_cooldown_is_per_store(self) -> None:
        clock = FakeClock()
        gate = NotificationGate(cooldown_minutes=30, max_per_day=10, clock=clock)

        _send(gate, "R669")
        assert gate.should_notify("R673") is True

    def test_should_notify_does_not_record(self) -> None:
        gate = NotificationGate(cooldown_minutes=30, max_per_day=10, clock=FakeClock())

        assert gate.should_notify("R669") is True
        assert gate.should_notify("R669") is True
        assert gate.daily_count == 0
        assert gate.last_sent == {}


class TestStats:
    def test_stats_lists_last_sends(self) -> None:
        clock = FakeClock(datetime(2026, 10, 19, 9, 30))
        gate = NotificationGate(cooldown_minutes=30, max_per_day=10, clock=clock)
        _send(gate, "R669")

        stats = gate.stats({"R669": "Apple Orchard Road"})

        assert stats["dailyCount"] == 1
        assert stats["dailyLimit"] == 10
        assert stats["cooldownMinutes"] == 30
        assert stats["lastNotifications"] == [
            {"storeId": "R669", "storeName": "Apple Orchard Road", "time": "2026-10-19T09:30:00"}
        ]

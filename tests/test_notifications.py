"""Tests for the notification port and its sinks."""

import logging

import pytest

from stock_sim.notifications import (
    CompositeNotifier,
    EventBus,
    LoggingNotifier,
    Notification,
    NotificationKind,
    safe_notify,
)


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[NotificationKind, str, str]] = []

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        self.calls.append((kind, title, message))


class Broken:
    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        raise ConnectionError("sink offline")


class TestEventBus:
    """Tests for in-process fan-out."""

    def test_delivers_to_every_subscriber(self) -> None:
        """Test that each subscriber receives the same event."""
        bus = EventBus()
        first: list[Notification] = []
        second: list[Notification] = []
        bus.subscribe(first.append)
        bus.subscribe(second.append)

        bus.notify(NotificationKind.DAY_CHANGED, "Day 2", "Day 2 is live")

        assert len(first) == len(second) == 1
        assert first[0] is second[0]
        assert first[0].kind == NotificationKind.DAY_CHANGED
        assert first[0].message == "Day 2 is live"

    def test_unsubscribe(self) -> None:
        """Test that the returned callable removes the subscriber."""
        bus = EventBus()
        seen: list[Notification] = []
        unsubscribe = bus.subscribe(seen.append)
        assert bus.subscriber_count == 1

        unsubscribe()
        unsubscribe()
        bus.notify(NotificationKind.SIMULATION_ENDED, "Ended", "Done")

        assert seen == []
        assert bus.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that a raising subscriber is logged and skipped."""
        bus = EventBus()
        seen: list[Notification] = []

        def broken(event: Notification) -> None:
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        with caplog.at_level(logging.WARNING, logger="stock_sim.notifications"):
            bus.notify(NotificationKind.SIMULATION_RESET, "Reset", "Wiped")

        assert len(seen) == 1
        assert "simulation_reset" in caplog.text


class TestSafeNotify:
    """Tests for the fire-and-forget helper."""

    def test_none_is_ignored(self) -> None:
        safe_notify(None, NotificationKind.DAY_CHANGED, "t", "m")

    def test_swallows_sink_errors(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that sink failures are logged instead of raised."""
        with caplog.at_level(logging.WARNING, logger="stock_sim.notifications"):
            safe_notify(Broken(), NotificationKind.INTEREST_CREDITED, "Interest", "Paid")

        assert "sink offline" in caplog.text

    def test_forwards_arguments(self) -> None:
        recorder = Recorder()
        safe_notify(recorder, NotificationKind.SIMULATION_PAUSED, "Paused", "Hold")
        assert recorder.calls == [(NotificationKind.SIMULATION_PAUSED, "Paused", "Hold")]


class TestCompositeNotifier:
    """Tests for fan-out across sinks."""

    def test_broken_sink_does_not_stop_others(self) -> None:
        """Test that every healthy sink still receives the event."""
        first, second = Recorder(), Recorder()
        composite = CompositeNotifier(first, Broken(), second)

        composite.notify(NotificationKind.SIMULATION_STARTED, "Started", "Day 1")

        assert len(first.calls) == 1
        assert len(second.calls) == 1

    def test_logging_notifier_writes_record(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test the log sink output."""
        with caplog.at_level(logging.INFO, logger="stock_sim.notifications"):
            LoggingNotifier().notify(NotificationKind.DAY_CHANGED, "Day 3", "Live")

        assert "[day_changed] Day 3: Live" in caplog.text

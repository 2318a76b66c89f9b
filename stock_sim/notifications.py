"""Outbound notification port.

The core calls :func:`safe_notify` after a transaction commits. Sinks are
fire-and-forget: a failing sink is logged and never affects the operation
that triggered it.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Events broadcast to observers."""

    DAY_CHANGED = "day_changed"
    INTEREST_CREDITED = "interest_credited"
    SIMULATION_STARTED = "simulation_started"
    SIMULATION_ENDED = "simulation_ended"
    SIMULATION_PAUSED = "simulation_paused"
    SIMULATION_RESUMED = "simulation_resumed"
    SIMULATION_RESET = "simulation_reset"
    TRANSACTION_COMPLETED = "transaction_completed"


@dataclass(frozen=True)
class Notification:
    """A delivered event."""

    kind: NotificationKind
    title: str
    message: str
    created_at: datetime = field(default_factory=datetime.now)


class Notifier(Protocol):
    """Anything that accepts notifications."""

    def notify(self, kind: NotificationKind, title: str, message: str) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        logger.log(
            self.level,
            f"[{kind.value}] {title}: {message}",
            extra={"extra_fields": {"notification": kind.value}},
        )


Subscriber = Callable[[Notification], None]


class EventBus:
    """In-process publish/subscribe fan-out.

    Example:
        >>> bus = EventBus()
        >>> seen = []
        >>> unsubscribe = bus.subscribe(seen.append)
        >>> bus.notify(NotificationKind.DAY_CHANGED, "Day 2", "Day 2 is live")
        >>> len(seen)
        1
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback.

        Returns:
            A function that removes the callback again.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        event = Notification(kind=kind, title=title, message=message)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber {callback!r} failed on {kind.value}: {e}")


class CompositeNotifier:
    """Forwards every notification to several sinks."""

    def __init__(self, *sinks: Notifier):
        self.sinks = list(sinks)

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        for sink in self.sinks:
            safe_notify(sink, kind, title, message)


def safe_notify(
    notifier: Notifier | None, kind: NotificationKind, title: str, message: str
) -> None:
    """Deliver a notification, logging and discarding any sink failure."""
    if notifier is None:
        return
    try:
        notifier.notify(kind, title, message)
    except Exception as e:
        logger.warning(f"Notification {kind.value} not delivered: {e}")

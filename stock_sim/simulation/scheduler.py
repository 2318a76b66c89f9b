"""Auto-advance scheduler.

A one-shot timer is re-armed after every tick so the simulation advances
one day per interval. The enabled flag and interval are persisted in the
settings table; after a restart the timer is re-armed for a fresh full
interval. The countdown itself is kept in memory only.

The authoritative guard against double advances is the day-control
transaction. The scheduler's own lock only stops ticks from overlapping.
"""

import functools
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from stock_sim.errors import (
    ConcurrentModificationError,
    DaySimulationError,
    ErrorCode,
)
from stock_sim.ledger.models import (
    SCHEDULER_SETTING_KEY,
    SchedulerConfig,
    SchedulerStatus,
)
from stock_sim.ledger.storage import LedgerStorage
from stock_sim.simulation.day_control import DayControlService

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000


class TimerHandle(Protocol):
    """The subset of :class:`threading.Timer` the scheduler relies on."""

    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], Any]], TimerHandle]


class TickOutcome(str, Enum):
    """What a scheduler tick did."""

    STARTED = "started"
    ADVANCED = "advanced"
    DISABLED = "disabled"
    SKIPPED = "skipped"
    FAILED = "failed"


class AutoDayScheduler:
    """Restart-safe timer that advances the simulation on an interval.

    Args:
        storage: Ledger store holding the persisted configuration.
        day_control: State machine the timer drives.
        default_interval_minutes: Interval used when none was configured.
        timer_factory: Creates one-shot timers; ``threading.Timer`` by default.
        clock: Source of the current time for the countdown.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        day_control: DayControlService,
        *,
        default_interval_minutes: int = 6,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.day_control = day_control
        self.default_interval_minutes = default_interval_minutes
        self._timer_factory = timer_factory
        self._clock = clock

        self._enabled = False
        self._interval_ms: int | None = None
        self._next_run_at: datetime | None = None
        self._timer: TimerHandle | None = None
        self._timer_generation = 0
        self._paused = False
        self._paused_remaining_ms: int | None = None

        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_config(self) -> SchedulerConfig:
        """Persisted configuration, or a disabled default."""
        raw = self.storage.get_setting(SCHEDULER_SETTING_KEY)
        if raw is None:
            return SchedulerConfig(
                enabled=False, interval_minutes=self.default_interval_minutes
            )
        return SchedulerConfig.model_validate(raw)

    def configure(
        self, enabled: bool, interval_minutes: int | None = None
    ) -> SchedulerStatus:
        """Persist and apply a new configuration.

        Args:
            enabled: Arm or disarm the timer.
            interval_minutes: New interval; keeps the stored one when omitted.

        Returns:
            Scheduler status after the change.

        Raises:
            pydantic.ValidationError: If the interval is not positive.
        """
        current = self.load_config()
        config = SchedulerConfig(
            enabled=enabled,
            interval_minutes=(
                interval_minutes if interval_minutes is not None else current.interval_minutes
            ),
        )
        self._save(config)

        with self._state_lock:
            if config.enabled:
                self._enabled = True
                self._interval_ms = config.interval_minutes * MS_PER_MINUTE
                self._paused = False
                self._paused_remaining_ms = None
                self._arm(self._interval_ms)
            else:
                self._disarm()

        logger.info(
            f"Auto-day scheduler {'enabled' if config.enabled else 'disabled'} "
            f"(every {config.interval_minutes} min)"
        )
        return self.status()

    def initialize(self) -> SchedulerStatus:
        """Reload the persisted configuration at process start.

        A simulation that was paused keeps a frozen countdown instead of an
        armed timer.
        """
        config = self.load_config()
        if not config.enabled:
            return self.status()

        control = self.day_control.get_control()
        with self._state_lock:
            self._enabled = True
            self._interval_ms = config.interval_minutes * MS_PER_MINUTE
            if control is not None and control.is_paused:
                self._paused = True
                self._paused_remaining_ms = (
                    control.paused_remaining_ms
                    if control.paused_remaining_ms is not None
                    else self._interval_ms
                )
                logger.info(
                    f"Scheduler restored paused with {self._paused_remaining_ms} ms left"
                )
            else:
                self._arm(self._interval_ms)
                logger.info(f"Scheduler restored, next run at {self._next_run_at}")
        return self.status()

    def status(self) -> SchedulerStatus:
        with self._state_lock:
            return SchedulerStatus(
                enabled=self._enabled,
                interval_minutes=(
                    self._interval_ms // MS_PER_MINUTE if self._interval_ms else None
                ),
                next_run_at=self._next_run_at,
                paused=self._paused,
                remaining_ms=self._remaining_ms_locked(),
                running=self._tick_lock.locked(),
            )

    # ------------------------------------------------------------------
    # Countdown control
    # ------------------------------------------------------------------

    def remaining_ms(self) -> int | None:
        """Milliseconds until the next tick, or None when not counting down."""
        with self._state_lock:
            return self._remaining_ms_locked()

    def pause(self) -> int | None:
        """Freeze the countdown.

        Returns:
            The frozen remaining milliseconds, or None when disabled.
        """
        with self._state_lock:
            if not self._enabled:
                return None
            if self._paused:
                return self._paused_remaining_ms
            remaining = self._remaining_ms_locked()
            self._cancel_timer()
            self._paused = True
            self._paused_remaining_ms = remaining
            logger.info(f"Scheduler countdown paused with {remaining} ms left")
            return remaining

    def resume(self, remaining_ms: int | None = None) -> None:
        """Restart the countdown from the frozen remaining time.

        Args:
            remaining_ms: Overrides the frozen value, e.g. the value stored
                on the day-control record.
        """
        with self._state_lock:
            frozen = self._paused_remaining_ms
            self._paused = False
            self._paused_remaining_ms = None
            if not self._enabled or self._interval_ms is None:
                return
            delay = remaining_ms if remaining_ms is not None else frozen
            self._arm(delay if delay is not None else self._interval_ms)

    def reset_timer(self) -> None:
        """Restart the countdown at a full interval.

        Called after manual day changes so the timer cannot fire right after
        an admin advance.
        """
        with self._state_lock:
            if not self._enabled or self._interval_ms is None:
                return
            if self._paused:
                self._paused_remaining_ms = self._interval_ms
                return
            self._arm(self._interval_ms)

    def shutdown(self) -> None:
        """Cancel the timer without touching the persisted configuration."""
        with self._state_lock:
            self._cancel_timer()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_tick(self) -> TickOutcome:
        """Run one scheduler step.

        Overlapping calls return SKIPPED. Unexpected errors are logged and
        reported as FAILED so the timer keeps running.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Scheduler tick already running, skipping")
            return TickOutcome.SKIPPED
        try:
            with self._state_lock:
                if not self._enabled or self._paused:
                    return TickOutcome.SKIPPED
            return self._tick()
        except ConcurrentModificationError as e:
            logger.info(f"Scheduler tick lost a race: {e}")
            return TickOutcome.SKIPPED
        except Exception:
            logger.exception("Unexpected error during scheduler tick")
            return TickOutcome.FAILED
        finally:
            self._tick_lock.release()

    def _tick(self) -> TickOutcome:
        control = self.day_control.get_control()
        if control is None or not control.is_active or control.current_day == 0:
            return self._ensure_started()

        if control.current_day >= control.total_days:
            logger.info("Reached final day, disabling scheduler")
            self._disable()
            return TickOutcome.DISABLED

        try:
            result = self.day_control.advance()
        except DaySimulationError as e:
            if e.code == ErrorCode.LIMIT_REACHED:
                logger.info("Limit reached, disabling scheduler")
                self._disable()
                return TickOutcome.DISABLED
            if e.code == ErrorCode.NOT_ACTIVE:
                return self._ensure_started()
            raise
        logger.info(f"Scheduler advanced to day {result.day}")
        return TickOutcome.ADVANCED

    def _ensure_started(self) -> TickOutcome:
        try:
            self.day_control.start()
        except DaySimulationError as e:
            if e.code == ErrorCode.ALREADY_STARTED:
                logger.info("Simulation already started by another caller")
                return TickOutcome.SKIPPED
            raise
        return TickOutcome.STARTED

    def _on_timer(self, generation: int) -> None:
        # A callback already in flight when its timer was cancelled or
        # replaced must neither tick nor re-arm.
        with self._state_lock:
            if generation != self._timer_generation:
                logger.debug("Ignoring superseded scheduler timer")
                return
            self._timer = None
            self._next_run_at = None
        self.run_tick()
        with self._state_lock:
            if (
                generation == self._timer_generation
                and self._enabled
                and not self._paused
                and self._timer is None
            ):
                self._arm(self._interval_ms)

    def _disable(self) -> None:
        self._save(SchedulerConfig(enabled=False, interval_minutes=self._interval_minutes()))
        with self._state_lock:
            self._disarm()

    # ------------------------------------------------------------------
    # Internals (callers hold _state_lock)
    # ------------------------------------------------------------------

    def _arm(self, delay_ms: int | None) -> None:
        self._cancel_timer()
        if not self._enabled or delay_ms is None:
            return
        delay_ms = max(0, delay_ms)
        self._next_run_at = self._clock() + timedelta(milliseconds=delay_ms)
        generation = self._timer_generation
        timer = self._timer_factory(
            delay_ms / 1000, functools.partial(self._on_timer, generation)
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _disarm(self) -> None:
        self._enabled = False
        self._interval_ms = None
        self._paused = False
        self._paused_remaining_ms = None
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_run_at = None

    def _remaining_ms_locked(self) -> int | None:
        if self._paused:
            return self._paused_remaining_ms
        if self._next_run_at is None:
            return None
        delta = self._next_run_at - self._clock()
        return max(0, int(delta.total_seconds() * 1000))

    def _interval_minutes(self) -> int:
        if self._interval_ms:
            return self._interval_ms // MS_PER_MINUTE
        return self.default_interval_minutes

    def _save(self, config: SchedulerConfig) -> None:
        self.storage.save_setting(
            SCHEDULER_SETTING_KEY,
            config.model_dump(),
            description="Auto-advance scheduler configuration",
        )

"""Admin facade over day control and the auto-advance scheduler.

Manual transitions go through here so the scheduler countdown follows them:
a manual start or advance restarts the countdown, pausing freezes it,
and ending or resetting the simulation switches auto-advance off.
"""

import logging

from stock_sim.errors import DaySimulationError, ErrorCode
from stock_sim.ledger.models import DayAdvanceResult, DayStatus, SchedulerStatus
from stock_sim.simulation.day_control import DayControlService
from stock_sim.simulation.scheduler import AutoDayScheduler

logger = logging.getLogger(__name__)


class SimulationController:
    """Entry point for admin actions on the simulation."""

    def __init__(self, day_control: DayControlService, scheduler: AutoDayScheduler):
        self.day_control = day_control
        self.scheduler = scheduler

    def status(self) -> DayStatus:
        return self.day_control.status()

    def start(self) -> DayAdvanceResult:
        result = self.day_control.start()
        self.scheduler.reset_timer()
        return result

    def advance(self) -> DayAdvanceResult:
        result = self.day_control.advance()
        self.scheduler.reset_timer()
        return result

    def pause(self) -> None:
        """Pause the simulation and freeze the countdown."""
        # Record the countdown before freezing so a failed pause leaves it running
        self.day_control.pause(self.scheduler.remaining_ms())
        self.scheduler.pause()

    def resume(self) -> None:
        """Resume the simulation and the countdown where it stopped."""
        remaining_ms = self.day_control.resume()
        self.scheduler.resume(remaining_ms)

    def end(self) -> None:
        self.day_control.end()
        if self.scheduler.status().enabled or self.scheduler.load_config().enabled:
            self.scheduler.configure(enabled=False)

    def reset(self, confirmation: str) -> None:
        """Reset everything; the token must be ``"RESET"``."""
        self.day_control.reset(confirmation)
        self.scheduler.configure(enabled=False)

    def scheduler_status(self) -> SchedulerStatus:
        return self.scheduler.status()

    def configure_scheduler(
        self, enabled: bool, interval_minutes: int | None = None
    ) -> SchedulerStatus:
        """Change auto-advance; enabling also starts an idle simulation."""
        self.scheduler.configure(enabled, interval_minutes)
        if enabled:
            self._ensure_started()
        return self.scheduler.status()

    def _ensure_started(self) -> None:
        control = self.day_control.get_control()
        if control is not None and control.is_active and control.current_day > 0:
            return
        try:
            self.day_control.start()
        except DaySimulationError as e:
            if e.code != ErrorCode.ALREADY_STARTED:
                raise
            logger.info("Simulation was started concurrently")

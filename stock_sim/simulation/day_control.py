"""Day-control state machine.

The single :class:`DayControl` row moves through
``NOT_STARTED -> RUNNING <-> PAUSED -> ENDED`` and back to ``NOT_STARTED``
only through :meth:`DayControlService.reset`. Every transition re-reads the
row inside its own transaction and writes it back with a version check, so
two callers racing on the same day produce one success and one coded error.
Notifications are sent only after the transaction has committed.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from stock_sim.cache import CURRENT_DAY_KEY, SnapshotCache
from stock_sim.errors import DaySimulationError, ErrorCode
from stock_sim.ledger.models import (
    RESET_CONFIRMATION,
    DayAdvanceResult,
    DayControl,
    DayStatus,
)
from stock_sim.ledger.storage import Connection, LedgerStorage
from stock_sim.notifications import NotificationKind, Notifier, safe_notify
from stock_sim.simulation.activation import PriceActivator
from stock_sim.simulation.interest import InterestEngine

logger = logging.getLogger(__name__)


class DayControlService:
    """Owns the day-control record and its transitions.

    Construct once per process and share it between request handlers and the
    auto-advance scheduler.

    Attributes:
        storage: Ledger store.
        total_days: Day count applied when the record is created or reset.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        *,
        total_days: int = 15,
        notifier: Notifier | None = None,
        cache: SnapshotCache | None = None,
        cache_ttl_seconds: int = 60,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.total_days = total_days
        self.notifier = notifier
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.clock = clock
        self.activator = PriceActivator(storage)
        self.interest = InterestEngine(storage)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_control(self) -> DayControl | None:
        """Read the record straight from storage."""
        return self.storage.get_day_control()

    def status(self) -> DayStatus:
        """Current day status, served from the cache when fresh."""
        if self.cache is not None:
            cached = self.cache.get(CURRENT_DAY_KEY)
            if cached is not None:
                return cached

        status = DayStatus.from_control(self.get_control(), self.total_days)
        if self.cache is not None:
            self.cache.set(CURRENT_DAY_KEY, status, self.cache_ttl_seconds)
        return status

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> DayAdvanceResult:
        """Start the simulation at day 1.

        Returns:
            The new day with activation counts.

        Raises:
            DaySimulationError: ALREADY_STARTED if a run is in progress.
        """
        now = self.clock()
        with self.storage.transaction() as conn:
            control = self.storage.get_day_control(conn)
            if control is not None and control.is_active and control.current_day > 0:
                raise DaySimulationError(
                    ErrorCode.ALREADY_STARTED,
                    f"Simulation already running on day {control.current_day}",
                )

            fields: dict[str, Any] = {
                "current_day": 1,
                "is_active": True,
                "is_paused": False,
                "paused_remaining_ms": None,
                "paused_at": None,
                "simulation_started_at": now,
                "last_day_change_at": now,
            }
            if control is None:
                self.storage.insert_day_control(
                    conn, DayControl(total_days=self.total_days, **fields)
                )
            else:
                self._write(conn, control, **fields)

            activation = self.activator.activate(conn, 1)

        logger.info("Simulation started on day 1")
        self._invalidate(all_views=True)
        safe_notify(
            self.notifier,
            NotificationKind.SIMULATION_STARTED,
            "Simulation started",
            "Day 1 is now open for trading.",
        )
        return DayAdvanceResult(
            day=1,
            prices_activated=activation.prices_activated,
            reports_activated=activation.reports_activated,
        )

    def advance(self) -> DayAdvanceResult:
        """Move to the next day, activate its prices and credit interest.

        Returns:
            The new day with activation and interest counts.

        Raises:
            DaySimulationError: NOT_CONFIGURED, NOT_ACTIVE or LIMIT_REACHED.
            ConcurrentModificationError: If another advance won the race.
        """
        now = self.clock()
        with self.storage.transaction() as conn:
            control = self._require_active(conn)
            if control.current_day >= control.total_days:
                raise DaySimulationError(
                    ErrorCode.LIMIT_REACHED,
                    f"Day {control.current_day} is the last of {control.total_days}",
                )

            new_day = control.current_day + 1
            self._write(conn, control, current_day=new_day, last_day_change_at=now)
            activation = self.activator.activate(conn, new_day)
            payments = self.interest.credit(conn, new_day, now)

        logger.info(
            f"Advanced to day {new_day}",
            extra={"extra_fields": {"day": new_day, "interest_payments": len(payments)}},
        )
        self._invalidate(all_views=True)
        safe_notify(
            self.notifier,
            NotificationKind.DAY_CHANGED,
            f"Day {new_day}",
            f"Day {new_day} of {control.total_days} is now open for trading.",
        )
        if payments:
            safe_notify(
                self.notifier,
                NotificationKind.INTEREST_CREDITED,
                "Interest credited",
                f"Interest paid to {len(payments)} participants.",
            )
        return DayAdvanceResult(
            day=new_day,
            prices_activated=activation.prices_activated,
            reports_activated=activation.reports_activated,
            interest_payments=len(payments),
        )

    def pause(self, remaining_ms: int | None = None) -> DayControl:
        """Freeze the simulation.

        Args:
            remaining_ms: Countdown left on the auto-advance timer, kept so
                it can be restored on resume.

        Raises:
            DaySimulationError: NOT_CONFIGURED, NOT_ACTIVE or ALREADY_PAUSED.
        """
        now = self.clock()
        with self.storage.transaction() as conn:
            control = self._require_active(conn)
            if control.is_paused:
                raise DaySimulationError(ErrorCode.ALREADY_PAUSED, "Simulation is already paused")
            updated = self._write(
                conn,
                control,
                is_paused=True,
                paused_remaining_ms=remaining_ms,
                paused_at=now,
            )

        logger.info(f"Simulation paused on day {updated.current_day}")
        self._invalidate()
        safe_notify(
            self.notifier,
            NotificationKind.SIMULATION_PAUSED,
            "Simulation paused",
            f"Day {updated.current_day} is on hold.",
        )
        return updated

    def resume(self) -> int | None:
        """Unfreeze the simulation.

        Returns:
            The countdown stored by :meth:`pause`, if any.

        Raises:
            DaySimulationError: NOT_CONFIGURED, NOT_ACTIVE or NOT_PAUSED.
        """
        with self.storage.transaction() as conn:
            control = self._require_active(conn)
            if not control.is_paused:
                raise DaySimulationError(ErrorCode.NOT_PAUSED, "Simulation is not paused")
            remaining_ms = control.paused_remaining_ms
            self._write(
                conn, control, is_paused=False, paused_remaining_ms=None, paused_at=None
            )

        logger.info(f"Simulation resumed on day {control.current_day}")
        self._invalidate()
        safe_notify(
            self.notifier,
            NotificationKind.SIMULATION_RESUMED,
            "Simulation resumed",
            f"Day {control.current_day} continues.",
        )
        return remaining_ms

    def end(self) -> DayControl:
        """Stop the simulation, keeping the current day.

        Raises:
            DaySimulationError: NOT_CONFIGURED or NOT_ACTIVE.
        """
        with self.storage.transaction() as conn:
            control = self._require_active(conn)
            updated = self._write(
                conn,
                control,
                is_active=False,
                is_paused=False,
                paused_remaining_ms=None,
                paused_at=None,
            )

        logger.info(f"Simulation ended on day {updated.current_day}")
        self._invalidate(all_views=True)
        safe_notify(
            self.notifier,
            NotificationKind.SIMULATION_ENDED,
            "Simulation ended",
            f"The simulation was stopped on day {updated.current_day}.",
        )
        return updated

    def reset(self, confirmation: str) -> None:
        """Wipe trading history and return to NOT_STARTED.

        Args:
            confirmation: Must be exactly ``"RESET"``.

        Raises:
            DaySimulationError: BAD_CONFIRMATION for any other token.
        """
        if confirmation != RESET_CONFIRMATION:
            raise DaySimulationError(
                ErrorCode.BAD_CONFIRMATION,
                f"Type {RESET_CONFIRMATION} to confirm the reset",
            )

        with self.storage.transaction() as conn:
            self.storage.wipe_competition_data(conn)
            control = self.storage.get_day_control(conn)
            if control is not None:
                self._write(
                    conn,
                    control,
                    current_day=0,
                    total_days=self.total_days,
                    is_active=False,
                    is_paused=False,
                    paused_remaining_ms=None,
                    paused_at=None,
                    simulation_started_at=None,
                    last_day_change_at=None,
                )

        logger.warning("Simulation reset: transactions, holdings and interest deleted")
        if self.cache is not None:
            self.cache.clear()
        safe_notify(
            self.notifier,
            NotificationKind.SIMULATION_RESET,
            "Simulation reset",
            "All balances were restored and the simulation is back to day 0.",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_active(self, conn: Connection) -> DayControl:
        control = self.storage.get_day_control(conn)
        if control is None:
            raise DaySimulationError(
                ErrorCode.NOT_CONFIGURED, "Simulation has never been started"
            )
        if not control.is_active:
            raise DaySimulationError(ErrorCode.NOT_ACTIVE, "Simulation is not active")
        return control

    def _write(self, conn: Connection, control: DayControl, **changes: Any) -> DayControl:
        # Re-validate so every transition keeps the record's invariants
        updated = DayControl.model_validate({**control.model_dump(), **changes})
        return self.storage.update_day_control(conn, updated, control.version)

    def _invalidate(self, all_views: bool = False) -> None:
        if self.cache is None:
            return
        self.cache.delete(CURRENT_DAY_KEY)
        if all_views:
            self.cache.clear()

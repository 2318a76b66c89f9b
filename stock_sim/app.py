"""Process-level wiring.

:func:`build_simulator` constructs every service once and hands them out
through a :class:`Simulator` container. Handlers and the scheduler timer
share these instances; nothing is kept in module globals.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from stock_sim.cache import SnapshotCache
from stock_sim.config.settings import Settings, load_settings
from stock_sim.ledger.storage import LedgerStorage
from stock_sim.notifications import CompositeNotifier, EventBus, LoggingNotifier
from stock_sim.simulation.controller import SimulationController
from stock_sim.simulation.day_control import DayControlService
from stock_sim.simulation.scheduler import AutoDayScheduler, TimerFactory
from stock_sim.trading.executor import TradeExecutionEngine
from stock_sim.trading.portfolio import PortfolioService

logger = logging.getLogger(__name__)


@dataclass
class Simulator:
    """All services of one simulator process."""

    settings: Settings
    storage: LedgerStorage
    cache: SnapshotCache
    events: EventBus
    day_control: DayControlService
    scheduler: AutoDayScheduler
    controller: SimulationController
    trading: TradeExecutionEngine
    portfolio: PortfolioService


def build_simulator(
    settings: Settings | None = None,
    *,
    timer_factory: TimerFactory = threading.Timer,
    clock: Callable[[], datetime] = datetime.now,
) -> Simulator:
    """Construct the service graph for ``settings``.

    Args:
        settings: Runtime settings; loaded from the environment when omitted.
        timer_factory: One-shot timer constructor for the scheduler.
        clock: Wall clock shared by every service.

    Returns:
        A ready-to-use simulator. The scheduler is not armed until
        ``scheduler.initialize()`` is called.
    """
    settings = settings or load_settings()
    storage = LedgerStorage(settings.db_path)
    cache = SnapshotCache()
    events = EventBus()
    notifier = CompositeNotifier(LoggingNotifier(), events)

    day_control = DayControlService(
        storage,
        total_days=settings.total_days,
        notifier=notifier,
        cache=cache,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        clock=clock,
    )
    scheduler = AutoDayScheduler(
        storage,
        day_control,
        default_interval_minutes=settings.default_interval_minutes,
        timer_factory=timer_factory,
        clock=clock,
    )
    logger.debug(f"Simulator built on {settings.db_path}")
    return Simulator(
        settings=settings,
        storage=storage,
        cache=cache,
        events=events,
        day_control=day_control,
        scheduler=scheduler,
        controller=SimulationController(day_control, scheduler),
        trading=TradeExecutionEngine(storage, notifier=notifier, cache=cache, clock=clock),
        portfolio=PortfolioService(
            storage,
            cache=cache,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            leaderboard_ttl_seconds=settings.leaderboard_ttl_seconds,
        ),
    )

"""Day control, interest, price activation and the auto-advance scheduler.

Key components:
- DayControlService: start/advance/pause/resume/end/reset transitions
- AutoDayScheduler: restart-safe timer that advances one day per interval
- SimulationController: admin facade keeping both in step
"""

from stock_sim.simulation.activation import PriceActivator
from stock_sim.simulation.controller import SimulationController
from stock_sim.simulation.day_control import DayControlService
from stock_sim.simulation.interest import InterestEngine
from stock_sim.simulation.scheduler import AutoDayScheduler, TickOutcome

__all__ = [
    "AutoDayScheduler",
    "DayControlService",
    "InterestEngine",
    "PriceActivator",
    "SimulationController",
    "TickOutcome",
]

"""CLI commands for the stock competition simulator."""

from stock_sim.cli.commands.scheduler import scheduler_app
from stock_sim.cli.commands.seed import seed_demo
from stock_sim.cli.commands.simulation import (
    advance,
    end,
    pause,
    reset,
    resume,
    start,
    status,
)
from stock_sim.cli.commands.trading import (
    assign_broker,
    history,
    leaderboard,
    portfolio,
    trade,
)

__all__ = [
    "advance",
    "assign_broker",
    "end",
    "history",
    "leaderboard",
    "pause",
    "portfolio",
    "reset",
    "resume",
    "scheduler_app",
    "seed_demo",
    "start",
    "status",
    "trade",
]

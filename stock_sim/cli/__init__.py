"""Command-line interface for the stock competition simulator.

Commands:
    seed-demo: Fill an empty ledger with demo data
    status / start / advance / pause / resume / end / reset: Day control
    scheduler: Configure and run automatic day advances
    assign-broker / trade / portfolio / leaderboard / history: Participants
"""

from stock_sim.cli.main import app

__all__ = ["app"]

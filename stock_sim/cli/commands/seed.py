"""Seed command for demo data."""

import logging

import typer
from rich.table import Table

from stock_sim.cli.state import console, fail, get_simulator
from stock_sim.ledger.seed import seed_demo as seed_ledger

logger = logging.getLogger(__name__)


def seed_demo(
    ctx: typer.Context,
    participants: int = typer.Option(
        3, "--participants", "-p", min=1, help="Number of demo teams."
    ),
    seed: int = typer.Option(42, "--seed", help="Random seed for the price path."),
) -> None:
    """Fill an empty database with demo brokers, companies, prices and teams.

    Example:
        stock-sim --database data/demo.duckdb seed-demo --participants 5
    """
    sim = get_simulator(ctx)
    try:
        result = seed_ledger(
            sim.storage,
            total_days=sim.settings.total_days,
            starting_balance=sim.settings.starting_balance,
            participants=participants,
            seed=seed,
        )
    except ValueError as e:
        fail(e)

    table = Table(title="Demo data", show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Created")
    table.add_row("Brokers", ", ".join(b.code for b in result.brokers))
    table.add_row("Companies", ", ".join(c.stock_code for c in result.companies))
    table.add_row("Prices", str(result.prices))
    table.add_row("Reports", str(result.reports))
    table.add_row("Participants", ", ".join(p.username for p in result.participants))
    console.print(table)

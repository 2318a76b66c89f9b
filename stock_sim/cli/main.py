"""Main CLI entry point for the stock competition simulator.

This module defines the main Typer application and registers all subcommands.
It provides logging and database options shared by every command.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from stock_sim.cli.state import CLIState
from stock_sim.config.logging import setup_logging

app = typer.Typer(
    name="stock-sim",
    help="Stock competition simulator - run trading days, trades and the auto-advance scheduler.",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output (DEBUG level logging).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-essential output (WARNING level logging).",
    ),
    log_file: Optional[str] = typer.Option(
        None,
        "--log-file",
        help="Path to a JSON log file.",
    ),
    database: Optional[str] = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to the DuckDB ledger (default: STOCK_SIM_DB_PATH or data/competition.duckdb).",
    ),
) -> None:
    """Stock competition simulator.

    Administers a multi-day trading competition: day transitions, interest,
    participant trade batches and automatic day advances.
    """
    if verbose and quiet:
        console.print(
            "[yellow]Warning:[/yellow] Both --verbose and --quiet specified. "
            "Using --verbose."
        )
        log_level = "DEBUG"
    elif verbose:
        log_level = "DEBUG"
    elif quiet:
        log_level = "WARNING"
    else:
        log_level = None

    setup_logging(level=log_level, log_file=Path(log_file) if log_file else None)
    ctx.obj = CLIState(db_path=Path(database) if database else None)


# Registered after the callback so commands can import the shared state
from stock_sim.cli.commands.scheduler import scheduler_app  # noqa: E402
from stock_sim.cli.commands.seed import seed_demo  # noqa: E402
from stock_sim.cli.commands.simulation import (  # noqa: E402
    advance,
    end,
    pause,
    reset,
    resume,
    start,
    status,
)
from stock_sim.cli.commands.trading import (  # noqa: E402
    assign_broker,
    history,
    leaderboard,
    portfolio,
    trade,
)

app.command(name="seed-demo")(seed_demo)
app.command(name="status")(status)
app.command(name="start")(start)
app.command(name="advance")(advance)
app.command(name="pause")(pause)
app.command(name="resume")(resume)
app.command(name="end")(end)
app.command(name="reset")(reset)
app.command(name="assign-broker")(assign_broker)
app.command(name="trade")(trade)
app.command(name="portfolio")(portfolio)
app.command(name="leaderboard")(leaderboard)
app.command(name="history")(history)
app.add_typer(scheduler_app, name="scheduler")


def cli_main() -> None:
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user.[/yellow]")
        raise typer.Exit(code=130) from None
    except Exception as e:
        logger = logging.getLogger(__name__)
        logger.exception("Unexpected error occurred")
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    cli_main()

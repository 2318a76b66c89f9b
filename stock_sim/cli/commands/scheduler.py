"""Auto-advance scheduler commands."""

import logging
import time
from typing import Optional

import typer
from rich.table import Table

from stock_sim.cli.state import console, fail, get_simulator
from stock_sim.errors import SimulationError
from stock_sim.ledger.models import SchedulerStatus

logger = logging.getLogger(__name__)

scheduler_app = typer.Typer(
    help="Configure and run the auto-advance scheduler.",
    no_args_is_help=True,
)


def _print_status(status: SchedulerStatus) -> None:
    table = Table(title="Auto-advance", show_header=True)
    table.add_column("Enabled", justify="center")
    table.add_column("Interval", justify="right")
    table.add_column("Next run")
    table.add_column("Paused", justify="center")
    table.add_row(
        "[green]yes[/green]" if status.enabled else "[dim]no[/dim]",
        f"{status.interval_minutes} min" if status.interval_minutes else "-",
        status.next_run_at.strftime("%H:%M:%S") if status.next_run_at else "-",
        "yes" if status.paused else "no",
    )
    console.print(table)


@scheduler_app.command(name="status")
def scheduler_status(ctx: typer.Context) -> None:
    """Show the persisted scheduler configuration."""
    config = get_simulator(ctx).scheduler.load_config()
    _print_status(
        SchedulerStatus(
            enabled=config.enabled,
            interval_minutes=config.interval_minutes,
        )
    )


@scheduler_app.command(name="configure")
def configure(
    ctx: typer.Context,
    enable: bool = typer.Option(
        ...,
        "--enable/--disable",
        help="Turn auto-advance on or off.",
    ),
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        "-i",
        min=1,
        help="Minutes between automatic day changes.",
    ),
) -> None:
    """Enable or disable automatic day advances.

    Enabling also starts the simulation if it is not running yet.

    Example:
        stock-sim scheduler configure --enable --interval 6
    """
    try:
        status = get_simulator(ctx).controller.configure_scheduler(enable, interval)
    except SimulationError as e:
        fail(e)
    _print_status(status)


@scheduler_app.command(name="run")
def run(
    ctx: typer.Context,
    poll_seconds: float = typer.Option(
        1.0,
        "--poll",
        help="Seconds between status checks while waiting.",
    ),
) -> None:
    """Run the scheduler in the foreground until interrupted."""
    sim = get_simulator(ctx)
    status = sim.scheduler.initialize()
    if not status.enabled:
        console.print(
            "[yellow]Auto-advance is disabled.[/yellow] "
            "Enable it with 'stock-sim scheduler configure --enable'."
        )
        raise typer.Exit(code=1)

    _print_status(status)
    console.print("Press Ctrl+C to stop.")
    try:
        while sim.scheduler.status().enabled:
            time.sleep(poll_seconds)
        console.print("[green]Final day reached, scheduler stopped.[/green]")
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped.[/yellow]")
    finally:
        sim.scheduler.shutdown()

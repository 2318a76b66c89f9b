"""Day-control commands: status, start, advance, pause, resume, end, reset."""

import json
import logging

import typer
from rich.panel import Panel
from rich.table import Table

from stock_sim.cli.state import console, fail, get_simulator
from stock_sim.errors import SimulationError
from stock_sim.ledger.models import RESET_CONFIRMATION, DayAdvanceResult, SimulationState

logger = logging.getLogger(__name__)

STATE_STYLES = {
    SimulationState.NOT_STARTED: "dim",
    SimulationState.RUNNING: "green",
    SimulationState.PAUSED: "yellow",
    SimulationState.ENDED: "red",
}


def status(
    ctx: typer.Context,
    output_format: str = typer.Option(
        "rich",
        "--format",
        "-f",
        help="Output format: 'rich' (default) or 'json'.",
    ),
) -> None:
    """Show the simulation day and scheduler state.

    Example:
        stock-sim status
        stock-sim status --format json
    """
    try:
        sim = get_simulator(ctx)
        day = sim.controller.status()
        config = sim.scheduler.load_config()
    except SimulationError as e:
        fail(e)

    if output_format == "json":
        payload = {
            "day": day.model_dump(mode="json"),
            "scheduler": config.model_dump(mode="json"),
        }
        console.print(json.dumps(payload, indent=2))
        return

    style = STATE_STYLES[day.state]
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State", f"[{style}]{day.state.value}[/{style}]")
    table.add_row("Day", f"{day.current_day} / {day.total_days}")
    table.add_row("Started", str(day.simulation_started_at or "-"))
    table.add_row("Last change", str(day.last_day_change_at or "-"))
    table.add_row(
        "Auto-advance",
        f"every {config.interval_minutes} min" if config.enabled else "off",
    )
    console.print(Panel(table, title="Simulation", expand=False))


def _print_day(result: DayAdvanceResult, verb: str) -> None:
    console.print(
        f"[green]{verb} day {result.day}[/green] "
        f"({result.prices_activated} prices, {result.reports_activated} reports"
        + (f", {result.interest_payments} interest payments)" if result.interest_payments else ")")
    )


def start(ctx: typer.Context) -> None:
    """Start the simulation on day 1."""
    try:
        result = get_simulator(ctx).controller.start()
    except SimulationError as e:
        fail(e)
    _print_day(result, "Started")


def advance(ctx: typer.Context) -> None:
    """Advance to the next day and credit interest."""
    try:
        result = get_simulator(ctx).controller.advance()
    except SimulationError as e:
        fail(e)
    _print_day(result, "Advanced to")


def pause(ctx: typer.Context) -> None:
    """Pause the simulation."""
    try:
        get_simulator(ctx).controller.pause()
    except SimulationError as e:
        fail(e)
    console.print("[yellow]Simulation paused[/yellow]")


def resume(ctx: typer.Context) -> None:
    """Resume a paused simulation."""
    try:
        get_simulator(ctx).controller.resume()
    except SimulationError as e:
        fail(e)
    console.print("[green]Simulation resumed[/green]")


def end(ctx: typer.Context) -> None:
    """End the simulation, keeping the current day."""
    try:
        get_simulator(ctx).controller.end()
    except SimulationError as e:
        fail(e)
    console.print("[red]Simulation ended[/red]")


def reset(
    ctx: typer.Context,
    confirm: str = typer.Option(
        ...,
        "--confirm",
        help=f"Type {RESET_CONFIRMATION} to delete all trades, holdings and interest.",
    ),
) -> None:
    """Reset the competition to day 0.

    Example:
        stock-sim reset --confirm RESET
    """
    try:
        get_simulator(ctx).controller.reset(confirm)
    except SimulationError as e:
        fail(e)
    console.print("[bold red]Simulation reset.[/bold red] Balances restored to starting values.")

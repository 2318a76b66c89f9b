"""Participant commands: broker choice, trading and portfolio views."""

import json
import logging
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from stock_sim.cli.state import (
    console,
    fail,
    get_simulator,
    resolve_broker,
    resolve_participant,
)
from stock_sim.errors import ErrorCode, SimulationError, TradeRejectedError
from stock_sim.ledger.models import BatchSummary

logger = logging.getLogger(__name__)


def parse_order(text: str) -> dict[str, object]:
    """Parse ``CODE:SIDE:QTY`` (e.g. ``AKNA:BUY:100``).

    Raises:
        TradeRejectedError: INVALID_ORDER if the text is malformed.
    """
    parts = text.split(":")
    if len(parts) != 3 or not parts[2].strip().isdigit():
        raise TradeRejectedError(
            ErrorCode.INVALID_ORDER, f"Expected CODE:BUY|SELL:QTY, got '{text}'"
        )
    code, side, quantity = parts
    return {"stock_code": code, "type": side.strip().upper(), "quantity": int(quantity)}


def assign_broker(
    ctx: typer.Context,
    participant: str = typer.Argument(..., help="Participant id or username."),
    broker: str = typer.Argument(..., help="Broker id or code."),
) -> None:
    """Assign a broker to a participant.

    Example:
        stock-sim assign-broker team01 AV
    """
    try:
        sim = get_simulator(ctx)
        person = resolve_participant(sim, participant)
        chosen = resolve_broker(sim, broker)
        sim.portfolio.assign_broker(person.id, chosen.id)
    except SimulationError as e:
        fail(e)
    console.print(
        f"[green]{person.display_name}[/green] now trades through "
        f"{chosen.name} ({chosen.fee_percentage}% fee)"
    )


def trade(
    ctx: typer.Context,
    participant: str = typer.Argument(..., help="Participant id or username."),
    orders: list[str] = typer.Argument(..., help="Orders as CODE:BUY|SELL:QTY."),
) -> None:
    """Submit today's batch of orders.

    Example:
        stock-sim trade team01 AKNA:BUY:100 KJNL:SELL:20
    """
    try:
        sim = get_simulator(ctx)
        person = resolve_participant(sim, participant)
        summary = sim.trading.execute_trades(person.id, [parse_order(o) for o in orders])
    except TradeRejectedError as e:
        if e.shortfall is not None:
            console.print(f"[yellow]Short by {e.shortfall}[/yellow]")
        fail(e)
    except SimulationError as e:
        fail(e)
    _print_summary(summary)


def _print_summary(summary: BatchSummary) -> None:
    table = Table(title=f"Day {summary.day} batch", show_header=True)
    table.add_column("Side", style="cyan")
    table.add_column("Stock")
    table.add_column("Qty", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total", justify="right")
    for side, lines in (("BUY", summary.buys), ("SELL", summary.sells)):
        for line in lines:
            table.add_row(
                side, line.stock_code, str(line.quantity), f"{line.price:,.2f}", f"{line.total:,.2f}"
            )
    console.print(table)
    console.print(
        f"Fee: {summary.broker_fee:,.2f}  "
        f"Balance: {summary.starting_balance:,.2f} -> [bold]{summary.ending_balance:,.2f}[/bold]"
    )


def portfolio(
    ctx: typer.Context,
    participant: str = typer.Argument(..., help="Participant id or username."),
    output_format: str = typer.Option(
        "rich",
        "--format",
        "-f",
        help="Output format: 'rich' (default) or 'json'.",
    ),
) -> None:
    """Show a participant's holdings and total value."""
    try:
        sim = get_simulator(ctx)
        person = resolve_participant(sim, participant)
        view = sim.portfolio.get_portfolio(person.id)
    except SimulationError as e:
        fail(e)

    if output_format == "json":
        console.print(json.dumps(view.model_dump(mode="json"), indent=2))
        return

    table = Table(title=f"{person.display_name} - day {view.day}", show_header=True)
    table.add_column("Stock", style="cyan")
    table.add_column("Qty", justify="right")
    table.add_column("Avg cost", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("P&L", justify="right")
    for h in view.holdings:
        pnl_style = "green" if h.unrealized_pnl >= 0 else "red"
        table.add_row(
            h.stock_code,
            str(h.quantity),
            f"{h.average_buy_price:,.2f}",
            f"{h.current_price:,.2f}",
            f"{h.market_value:,.2f}",
            f"[{pnl_style}]{h.unrealized_pnl:+,.2f}[/{pnl_style}]",
        )
    console.print(table)
    console.print(
        Panel(
            f"Cash: {view.cash_balance:,.2f}\n"
            f"Stocks: {view.investment_value:,.2f}\n"
            f"Total: [bold]{view.total_value:,.2f}[/bold] ({view.return_percentage:+.2f}%)",
            expand=False,
        )
    )


def leaderboard(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of teams to show."),
    output_format: str = typer.Option(
        "rich",
        "--format",
        "-f",
        help="Output format: 'rich' (default) or 'json'.",
    ),
) -> None:
    """Rank participants by total portfolio value."""
    try:
        board = get_simulator(ctx).portfolio.get_leaderboard(limit)
    except SimulationError as e:
        fail(e)

    if output_format == "json":
        console.print(json.dumps([e.model_dump(mode="json") for e in board], indent=2))
        return

    table = Table(title="Leaderboard", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Team", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Return", justify="right")
    for entry in board:
        table.add_row(
            str(entry.rank),
            entry.team_name,
            f"{entry.portfolio_value:,.2f}",
            f"{entry.return_percentage:+.2f}%",
        )
    console.print(table)


def history(
    ctx: typer.Context,
    participant: str = typer.Argument(..., help="Participant id or username."),
    day: Optional[int] = typer.Option(None, "--day", help="Only this day."),
    limit: int = typer.Option(50, "--limit", "-n", help="Rows per page (1-200)."),
    offset: int = typer.Option(0, "--offset", help="Rows to skip."),
) -> None:
    """List a participant's transactions, newest first."""
    try:
        sim = get_simulator(ctx)
        person = resolve_participant(sim, participant)
        rows = sim.portfolio.get_transaction_history(person.id, day, limit, offset)
        codes = {c.id: c.stock_code for c in sim.storage.list_companies()}
    except SimulationError as e:
        fail(e)

    if not rows:
        console.print("[dim]No transactions.[/dim]")
        return

    table = Table(title=f"{person.display_name} transactions", show_header=True)
    table.add_column("Day", justify="right")
    table.add_column("Side", style="cyan")
    table.add_column("Stock")
    table.add_column("Qty", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Batch fee", justify="right")
    for r in rows:
        table.add_row(
            str(r.day_number),
            r.transaction_type.value,
            codes.get(r.company_id, r.company_id),
            str(r.quantity),
            f"{r.price_per_share:,.2f}",
            f"{r.total_amount:,.2f}",
            f"{r.broker_fee:,.2f}",
        )
    console.print(table)

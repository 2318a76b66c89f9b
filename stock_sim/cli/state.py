"""Shared CLI state: lazily built simulator and error reporting."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console

from stock_sim.app import Simulator, build_simulator
from stock_sim.config.settings import load_settings
from stock_sim.errors import ErrorCode, ParticipantError, SimulationError
from stock_sim.ledger.models import Broker, Participant

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Options collected by the root callback."""

    db_path: Optional[Path] = None
    _simulator: Optional[Simulator] = field(default=None, repr=False)

    def simulator(self) -> Simulator:
        if self._simulator is None:
            settings = load_settings(db_path=self.db_path)
            self._simulator = build_simulator(settings)
        return self._simulator


def get_simulator(ctx: typer.Context) -> Simulator:
    """Simulator for the current invocation."""
    state = ctx.find_object(CLIState)
    if state is None:
        state = ctx.ensure_object(CLIState)
    return state.simulator()


def fail(error: Exception) -> NoReturn:
    """Print a domain error and exit with status 1."""
    if isinstance(error, SimulationError):
        console.print(f"[red]Error:[/red] {error.code.value}: {error.message}")
    else:
        logger.exception("Command failed")
        console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(code=1) from error


def resolve_participant(sim: Simulator, ref: str) -> Participant:
    """Find a participant by id or username."""
    participant = sim.storage.get_participant(ref) or sim.storage.get_participant_by_username(ref)
    if participant is None:
        raise ParticipantError(ErrorCode.PARTICIPANT_NOT_FOUND, f"No participant '{ref}'")
    return participant


def resolve_broker(sim: Simulator, ref: str) -> Broker:
    """Find a broker by id or code."""
    broker = sim.storage.get_broker(ref) or sim.storage.get_broker_by_code(ref)
    if broker is None:
        raise ParticipantError(ErrorCode.BROKER_NOT_FOUND, f"No broker '{ref}'")
    return broker

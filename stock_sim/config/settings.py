"""Runtime settings for the simulator.

Values come from the process environment, optionally primed from a ``.env``
file in the working directory.
"""

import logging
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/competition.duckdb"


class Settings(BaseModel):
    """Simulator configuration.

    Attributes:
        db_path: DuckDB ledger file.
        total_days: Number of simulated days, applied when the day-control
            record is first created.
        starting_balance: Cash given to participants created by the seeder.
        default_interval_minutes: Auto-advance interval used when the
            scheduler is enabled without an explicit interval.
        cache_ttl_seconds: Lifetime of cached day status and portfolio views.
        leaderboard_ttl_seconds: Lifetime of the cached leaderboard.
    """

    db_path: Path = Field(default=Path(DEFAULT_DB_PATH))
    total_days: int = Field(default=15, gt=0, le=365)
    starting_balance: Decimal = Field(default=Decimal("10000000.00"), gt=Decimal("0"))
    default_interval_minutes: int = Field(default=6, gt=0, le=24 * 60)
    cache_ttl_seconds: int = Field(default=60, ge=0)
    leaderboard_ttl_seconds: int = Field(default=300, ge=0)


_ENV_FIELDS = {
    "STOCK_SIM_DB_PATH": "db_path",
    "SIMULATION_TOTAL_DAYS": "total_days",
    "SIMULATION_STARTING_BALANCE": "starting_balance",
    "AUTO_DAY_INTERVAL_MINUTES": "default_interval_minutes",
    "CACHE_TTL_SECONDS": "cache_ttl_seconds",
    "LEADERBOARD_TTL_SECONDS": "leaderboard_ttl_seconds",
}


def load_settings(env_file: str | Path | None = None, **overrides: object) -> Settings:
    """Build settings from ``.env``, the environment and explicit overrides.

    Explicit keyword overrides win over environment variables.

    Args:
        env_file: Optional dotenv file. Defaults to ``.env`` lookup.
        **overrides: Field values that take precedence over the environment.

    Returns:
        Validated settings.

    Raises:
        pydantic.ValidationError: If a value is out of range.
    """
    load_dotenv(dotenv_path=env_file)

    values: dict[str, object] = {}
    for env_name, field_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = raw

    values.update({k: v for k, v in overrides.items() if v is not None})
    settings = Settings.model_validate(values)
    logger.debug(f"Settings loaded: db_path={settings.db_path}")
    return settings

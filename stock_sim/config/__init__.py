"""Configuration: logging setup and runtime settings."""

from stock_sim.config.logging import get_logger, setup_logging
from stock_sim.config.settings import Settings, load_settings

__all__ = ["Settings", "get_logger", "load_settings", "setup_logging"]

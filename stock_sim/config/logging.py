"""Centralized logging configuration for the stock competition simulator.

Console output is colourised for operators watching the admin console; file
output is always JSON so day transitions, interest runs and trade batches can
be audited after the event.
"""

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        payload = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Populated via logger.info(..., extra={"extra_fields": {...}})
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)

        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored console formatter for interactive sessions."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
            )
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the root logger for the application.

    Call once at process start (the CLI callback does this). Calling it again
    replaces the previously installed handlers.

    Args:
        level: Log level name. Falls back to the LOG_LEVEL environment
            variable, then INFO.
        log_file: Optional path for a rotating JSON log file. Falls back to
            the LOG_FILE environment variable.
        use_json: Use the JSON formatter on the console. LOG_FORMAT=json or
            LOG_FORMAT=console overrides this.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.

    Raises:
        ValueError: If the level name is not a valid logging level.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.upper()

    numeric_level = getattr(logging, level, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format == "json":
        use_json = True
    elif log_format == "console":
        use_json = False

    if log_file is None and os.getenv("LOG_FILE"):
        log_file = Path(os.environ["LOG_FILE"])

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            ConsoleFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        )
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger(__name__).debug(
        "Logging initialized",
        extra={
            "extra_fields": {
                "level": level,
                "format": "json" if use_json else "console",
                "log_file": str(log_file) if log_file else None,
            }
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger for ``name`` (normally ``__name__``)."""
    return logging.getLogger(name)

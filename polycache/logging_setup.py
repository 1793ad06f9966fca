"""
Polycache - Logging Setup

Configures the ``polycache`` logger: a console handler with the plain
format, plus an optional daily-rotated file handler writing one JSON object
per line so the structured ``extra`` fields survive.
"""

import json
import logging
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .config import LogLevel, PolycacheConfig, get_config

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes that are not user-supplied extras
_RESERVED = frozenset(
    (
        "args",
        "msg",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "name",
        "message",
        "asctime",
    )
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add any extra fields from record.__dict__
        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in _RESERVED:
                log_data[key] = value

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str | LogLevel = LogLevel.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """
    Configure the ``polycache`` logger.

    Args:
        level: Log level name
        log_file: Path of a log file rotated at midnight (7 days kept)

    Returns:
        The configured logger
    """
    logger = logging.getLogger("polycache")
    level_name = level.value if isinstance(level, LogLevel) else str(level).upper()

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(path, when="midnight", backupCount=7, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    logger.setLevel(level_name)
    logger.propagate = False
    return logger


def configure_logging(config: PolycacheConfig | None = None) -> logging.Logger:
    """Configure the ``polycache`` logger from ``log_level`` and ``log_file`` of ``config``.

    Falls back to the loaded configuration when ``config`` is omitted.
    """
    config = config or get_config()
    return setup_logging(config.log_level, config.log_file)

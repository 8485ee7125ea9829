"""
Structured logging for the self-update tool.

Every line the orchestrator writes to its run log is echoed to the operator
in real time through the ``selfupdate.runlog`` logger. Its level is pinned to
INFO so a stricter ``--log-level`` never hides the run log. Warnings and
errors go to stderr, everything else to stdout.

Features:
- JSON-formatted log output for machine-readable logs (cron, journald)
- Plain text output for interactive use
- Consistent field structure across all log entries
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from selfupdate.config import LoggingConfig

ROOT_LOGGER_NAME = "selfupdate"
RUN_LOG_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.runlog"

# Plain text output keeps run log lines readable on a terminal
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    Renders each record as one JSON line.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``, ``message``,
    ``exception`` when exc_info is set, and any ``extra`` values such as the
    mutex name or the command being run.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS and value is not None
        )
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = False,
) -> logging.Logger:
    """
    Configure the ``selfupdate`` logger.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides the keyword parameters.
        level: Log level if no config is provided.
        json_format: Whether to emit JSON lines instead of plain text.

    Returns:
        The root logger of the selfupdate package.

    Example:
        >>> from selfupdate.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Checking for updates...")
    """
    if config is not None:
        level = config.level
        json_format = config.json_format

    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    logger.propagate = False

    logging.getLogger(RUN_LOG_LOGGER_NAME).setLevel(logging.INFO)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "selfupdate." prefix is added automatically if not present.

    Returns:
        A logger that is a child of the ``selfupdate`` logger.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)

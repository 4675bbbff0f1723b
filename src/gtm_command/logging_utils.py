# logging_utils.py
"""Logging setup for GTM Command Center.

Modules log through ``get_logger(__name__)`` and pass context with
``extra={...}`` (action ids, lead ids, tables). Outside ``dev`` each record
is written as one JSON object per line; in ``dev`` a coloured one-line
format is used that still shows the most useful context keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import config as default_config

SERVICE_NAME = "gtm-command"
ROOT_LOGGER_NAME = "gtm_command"

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}

# Context keys shown inline by the development formatter, in this order
CONTEXT_KEYS = (
    "action_id",
    "reason",
    "retry_after_ms",
    "lead_id",
    "startup_id",
    "table",
    "operation",
    "model",
    "tool",
)

HTTP_CLIENT_LOGGERS = ("urllib3", "requests")


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the ``extra`` fields attached to a record."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """Renders each record as a single JSON object.

    The timestamp is the record's creation time in UTC. Extras that cannot
    be serialised are stringified rather than dropped.
    """

    def __init__(
        self,
        service_name: str = SERVICE_NAME,
        include_timestamp: bool = True,
        include_extra: bool = True,
    ):
        super().__init__()
        self.service_name = service_name
        self.include_timestamp = include_timestamp
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if self.include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extras = {key: _json_safe(value) for key, value in record_extras(record).items()}
            if extras:
                entry["extra"] = extras

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """One-line development format: time, level, logger, message, context."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        label = f"{record.levelname:8}"
        if not self.use_colors:
            return label
        return f"{self.LEVEL_COLORS.get(record.levelno, '')}{label}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line = (
            f"[{created:%Y-%m-%d %H:%M:%S}] {self._level(record)} "
            f"[{record.name}] {record.getMessage()}"
        )

        extras = record_extras(record)
        context = " ".join(f"{key}={extras[key]}" for key in CONTEXT_KEYS if key in extras)
        if context:
            line = f"{line} ({context})"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = SERVICE_NAME,
    settings=None,
) -> logging.Logger:
    """Install a single stdout handler on the root logger.

    Args:
        level: Level name. Defaults to the configured level.
        structured: JSON output. Defaults to on outside the ``dev`` environment.
        service_name: Service name written into JSON records.
        settings: Configuration object. Defaults to the global config.

    Returns:
        The ``gtm_command`` package logger.
    """
    settings = settings or default_config

    if level is None:
        log_level = settings.get_log_level()
    else:
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    if structured is None:
        structured = settings.APP_ENV != "dev"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        StructuredFormatter(service_name=service_name)
        if structured
        else HumanReadableFormatter()
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # HTTP client chatter only shows up when debugging
    http_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in HTTP_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(http_level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.info(
        "Logging initialized",
        extra={
            "log_level": logging.getLevelName(log_level),
            "structured": structured,
            "service": service_name,
        },
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``gtm_command`` namespace."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)

"""
Logging configuration for Arbie.

Supports:
- Local: Human-readable lines on stdout plus a rotating file
- Cloud (ARBIE_ENV != local): one JSON object per line for log shippers

Cycle and execution loggers attach context through ``extra=``
(cycle_id, venue, token, tx_hash); JsonFormatter lifts those keys
into the JSON record.
"""

import json
import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any, Optional

import yaml

HUMAN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Context keys copied from LogRecord.__dict__ when a caller passes them via extra=
CONTEXT_FIELDS = ("cycle_id", "venue", "token", "tx_hash", "attempt_id")

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("web3", "httpx", "apscheduler")


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def __init__(self, datefmt: Optional[str] = None):
        super().__init__(datefmt=datefmt or DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = record.__dict__.get(field)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(
    config_path: Optional[str] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        config_path: Path to logging.yaml. Auto-detected if not provided.
        log_level: Override log level from environment.
    """
    env = os.getenv("ARBIE_ENV", "local")
    level = log_level or os.getenv("LOG_LEVEL", "INFO")

    if config_path is None:
        current = Path(__file__).resolve()
        for parent in current.parents:
            if (parent / "pyproject.toml").exists():
                config_path = str(parent / "config" / "logging.yaml")
                break

    if config_path and Path(config_path).exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        for handler in config.get("handlers", {}).values():
            if "filename" in handler:
                Path(handler["filename"]).parent.mkdir(parents=True, exist_ok=True)
            if env != "local" and "json" in config.get("formatters", {}):
                handler["formatter"] = "json"

        logging.config.dictConfig(config)
    else:
        _setup_basic_logging(env, level)

    logging.getLogger("arbie").setLevel(getattr(logging, level.upper()))


def _setup_basic_logging(env: str, level: str) -> None:
    """Setup basic logging when YAML config is not available."""
    handler = logging.StreamHandler(sys.stdout)
    if env == "local":
        handler.setFormatter(logging.Formatter(HUMAN_FORMAT, datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler])
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name. Will be prefixed with 'arbie.' if not already.

    Returns:
        Logger instance
    """
    if not name.startswith("arbie"):
        name = f"arbie.{name}"
    return logging.getLogger(name)


class LoggerMixin:
    """Mixin giving engine components a logger named after their class."""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger

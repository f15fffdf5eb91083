"""
Core module - Engineering foundation

Contains configuration, logging, errors, HTTP client, caching, and utilities.
"""

from arbie.core.config import (
    PRICE_SCALE,
    EngineConfig,
    Settings,
    build_engine_config,
    get_settings,
    load_engine_config,
    load_yaml_config,
)
from arbie.core.errors import (
    ArbieError,
    ConfigurationError,
    ConnectionFailure,
    ExecutionRejected,
    ExecutionTimeout,
    QuoteUnavailable,
)
from arbie.core.logging import setup_logging, get_logger

__all__ = [
    "PRICE_SCALE",
    "EngineConfig",
    "Settings",
    "build_engine_config",
    "get_settings",
    "load_engine_config",
    "load_yaml_config",
    "ArbieError",
    "ConfigurationError",
    "ConnectionFailure",
    "ExecutionRejected",
    "ExecutionTimeout",
    "QuoteUnavailable",
    "setup_logging",
    "get_logger",
]

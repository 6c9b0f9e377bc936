"""
================================================================================
Harness Tools Common Utilities
================================================================================

This module provides the shared logging setup and small helpers used across
the harness.

Exports:
    - init_logger: Initialize the loguru logger with standard settings
    - add_file_sink: Extra rotating file sink for one component
    - reset_logger: Forget the initialization so init_logger runs again
    - ensure_directory: Create a directory if missing
    - safe_json_serialize: json.dumps `default` hook for odd types

Usage:
    from harness_tools.common import init_logger

    init_logger(level="DEBUG", log_file="logs/api.log")

================================================================================
"""

import dataclasses
import os
import sys
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from loguru import logger


DEFAULT_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"


# ============================================================
# Logging Setup
# ============================================================

_logger_initialized = False


def init_logger(
    level: str = None,
    format_string: str = None,
    log_file: str = None
) -> None:
    """
    Initializes the loguru logger with standard settings.

    Only the first call has an effect until `reset_logger` is called.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env or INFO.
        format_string: Log format string. Uses default if not provided.
        log_file: Optional file path to write logs to. Defaults to LOG_FILE env.

    Example:
        init_logger()  # Use defaults
        init_logger(level="DEBUG", log_file="logs/api.log")
    """
    global _logger_initialized

    if _logger_initialized:
        return

    # Remove default handler
    logger.remove()

    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    format_string = format_string or DEFAULT_LOG_FORMAT

    # Add console handler
    logger.add(
        sys.stderr,
        format=format_string,
        level=level,
        colorize=True,
    )

    # Add file handler if specified
    log_file = log_file or os.environ.get("LOG_FILE")
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            ensure_directory(log_dir)

        logger.add(
            log_file,
            format=format_string,
            level=level,
            rotation=os.environ.get("LOG_ROTATION", DEFAULT_LOG_ROTATION),
            retention=os.environ.get("LOG_RETENTION", DEFAULT_LOG_RETENTION),
        )

    _logger_initialized = True
    logger.debug("Logger initialized successfully")


def add_file_sink(log_file: str, level: str = "INFO", component: str = None) -> int:
    """
    Add a rotating file sink, optionally limited to one bound component.

    Args:
        log_file: File path; parent directories are created
        level: Minimum level for the sink
        component: Only records bound with this `component` are written

    Returns:
        Sink id for `logger.remove`
    """
    log_dir = os.path.dirname(log_file)
    if log_dir:
        ensure_directory(log_dir)

    record_filter = None
    if component:
        record_filter = lambda record: record["extra"].get("component") == component

    return logger.add(
        log_file,
        format=DEFAULT_LOG_FORMAT,
        level=level.upper(),
        filter=record_filter,
        rotation=os.environ.get("LOG_ROTATION", DEFAULT_LOG_ROTATION),
        retention=os.environ.get("LOG_RETENTION", DEFAULT_LOG_RETENTION),
    )


def reset_logger() -> None:
    """Allow `init_logger` to configure the sinks again."""
    global _logger_initialized
    _logger_initialized = False


# ============================================================
# Common Utilities
# ============================================================

def ensure_directory(path: str) -> str:
    """
    Ensures a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        The path (for chaining)
    """
    os.makedirs(path, exist_ok=True)
    return path


def safe_json_serialize(obj: Any) -> Any:
    """
    Safely serializes an object to JSON-compatible format.

    Handles common non-serializable types like datetime, bytes, dataclasses.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    elif isinstance(obj, (UUID, Decimal)):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    elif hasattr(obj, "__dict__"):
        return obj.__dict__
    else:
        return str(obj)


# Export public API
__all__ = [
    "DEFAULT_LOG_FORMAT",
    "add_file_sink",
    "ensure_directory",
    "init_logger",
    "reset_logger",
    "safe_json_serialize",
]

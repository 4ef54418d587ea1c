"""
bootstrap/logging_setup.py - Logging configuration for host applications.

The library itself only creates module loggers; hosts call setup_logging()
once at startup.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

from bidcascade.bootstrap.config import LoggingConfig


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
        fmt: Format string for plain-text logs

    Returns:
        The root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = JSONFormatter() if json_format else logging.Formatter(fmt)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    return root_logger


def setup_logging_from_config(config: LoggingConfig) -> logging.Logger:
    """Configure logging from a LoggingConfig section."""
    return setup_logging(
        level=config.level,
        log_file=config.log_file,
        json_format=config.json_logs,
        fmt=config.format,
    )

"""
bootstrap/__init__.py - Configuration and logging setup.
"""

from .config import (
    BidCascadeConfig,
    CascadeConfig,
    LoggingConfig,
    get_config,
    load_config,
    reset_config,
)
from .logging_setup import (
    JSONFormatter,
    setup_logging,
    setup_logging_from_config,
)

__all__ = [
    "BidCascadeConfig",
    "CascadeConfig",
    "LoggingConfig",
    "get_config",
    "load_config",
    "reset_config",
    "JSONFormatter",
    "setup_logging",
    "setup_logging_from_config",
]

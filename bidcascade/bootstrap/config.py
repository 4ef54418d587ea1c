"""
bootstrap/config.py - Cascade configuration

Provides configuration loading from files, environment variables, and defaults.
All delays are in milliseconds.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path
import os
import json
import logging

logger = logging.getLogger(__name__)


@dataclass
class CascadeConfig:
    """Loop guard ceilings and debounce delays of the recompute cascade."""

    # Loop guard
    max_events: int = 25
    bid_max_events: int = 15
    guard_reset_delay_ms: float = 500

    # Debounce windows
    line_item_self_delay_ms: float = 5
    component_delay_ms: float = 5
    bid_line_item_delay_ms: float = 15
    bid_completion_delay_ms: float = 500
    project_self_delay_ms: float = 5
    project_bid_assessing_delay_ms: float = 10
    project_bid_delay_ms: float = 200

    # Auto-save
    auto_save_delay_ms: float = 5000
    auto_save_min_delay_ms: float = 1000

    # Scheduler safety ceiling for settle()
    settle_max_tasks: int = 10000

    @classmethod
    def from_env(cls) -> "CascadeConfig":
        return cls(
            max_events=int(os.getenv("BIDCASCADE_MAX_EVENTS", "25")),
            bid_max_events=int(os.getenv("BIDCASCADE_BID_MAX_EVENTS", "15")),
            guard_reset_delay_ms=float(os.getenv("BIDCASCADE_GUARD_RESET_MS", "500")),
            line_item_self_delay_ms=float(os.getenv("BIDCASCADE_LINE_ITEM_DELAY_MS", "5")),
            component_delay_ms=float(os.getenv("BIDCASCADE_COMPONENT_DELAY_MS", "5")),
            bid_line_item_delay_ms=float(os.getenv("BIDCASCADE_BID_LINE_ITEM_DELAY_MS", "15")),
            bid_completion_delay_ms=float(os.getenv("BIDCASCADE_BID_COMPLETION_DELAY_MS", "500")),
            project_self_delay_ms=float(os.getenv("BIDCASCADE_PROJECT_DELAY_MS", "5")),
            project_bid_assessing_delay_ms=float(os.getenv("BIDCASCADE_PROJECT_BID_ASSESSING_DELAY_MS", "10")),
            project_bid_delay_ms=float(os.getenv("BIDCASCADE_PROJECT_BID_DELAY_MS", "200")),
            auto_save_delay_ms=float(os.getenv("BIDCASCADE_AUTO_SAVE_DELAY_MS", "5000")),
            auto_save_min_delay_ms=float(os.getenv("BIDCASCADE_AUTO_SAVE_MIN_DELAY_MS", "1000")),
            settle_max_tasks=int(os.getenv("BIDCASCADE_SETTLE_MAX_TASKS", "10000")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("BIDCASCADE_LOG_LEVEL", "INFO"),
            format=os.getenv("BIDCASCADE_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=os.getenv("BIDCASCADE_LOG_FILE"),
            json_logs=os.getenv("BIDCASCADE_JSON_LOGS", "false").lower() == "true",
        )


@dataclass
class BidCascadeConfig:
    """Root configuration."""

    environment: str = "development"
    debug: bool = False
    version: str = "1.0.0"

    cascade: CascadeConfig = field(default_factory=CascadeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Additional settings
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "BidCascadeConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("BIDCASCADE_ENVIRONMENT", "development"),
            debug=os.getenv("BIDCASCADE_DEBUG", "false").lower() == "true",
            cascade=CascadeConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "BidCascadeConfig":
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "BidCascadeConfig":
        """Create config from dictionary; file values override the environment."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]
        if "debug" in data:
            config.debug = data["debug"]

        for section in ("cascade", "logging"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Unknown {section} setting ignored: {key}")

        if "settings" in data:
            config.settings.update(data["settings"])

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize config to dictionary."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "version": self.version,
            "cascade": asdict(self.cascade),
            "logging": asdict(self.logging),
            "settings": dict(self.settings),
        }


# Global config instance
_config: Optional[BidCascadeConfig] = None


def load_config(filepath: str = None) -> BidCascadeConfig:
    """
    Load configuration from file or environment.

    Args:
        filepath: Optional path to JSON config file

    Returns:
        BidCascadeConfig instance
    """
    global _config

    if filepath:
        _config = BidCascadeConfig.from_file(filepath)
    else:
        default_paths = [
            "./bidcascade.json",
            "./config/bidcascade.json",
        ]

        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                _config = BidCascadeConfig.from_file(path)
                return _config

        _config = BidCascadeConfig.from_env()

    logger.info(f"Configuration loaded: environment={_config.environment}")
    return _config


def get_config() -> BidCascadeConfig:
    """Get current configuration, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded configuration (next get_config() reloads)."""
    global _config
    _config = None

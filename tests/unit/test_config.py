"""
Unit tests for bootstrap/config.py
"""

import json
import logging

from bidcascade.bootstrap.config import (
    BidCascadeConfig,
    CascadeConfig,
    LoggingConfig,
    get_config,
    load_config,
    reset_config,
)
from bidcascade.domain.bid import Bid


class TestDefaults:
    """Test default cascade timings."""

    def test_cascade_defaults(self):
        cascade = CascadeConfig()
        assert cascade.max_events == 25
        assert cascade.bid_max_events == 15
        assert cascade.line_item_self_delay_ms == 5
        assert cascade.component_delay_ms == 5
        assert cascade.bid_line_item_delay_ms == 15
        assert cascade.bid_completion_delay_ms == 500
        assert cascade.project_bid_delay_ms == 200
        assert cascade.auto_save_delay_ms == 5000
        assert cascade.auto_save_min_delay_ms == 1000

    def test_logging_defaults(self):
        assert LoggingConfig().level == "INFO"
        assert LoggingConfig().json_logs is False


class TestEnvironment:
    """Test loading from environment variables."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BIDCASCADE_MAX_EVENTS", "40")
        monkeypatch.setenv("BIDCASCADE_PROJECT_BID_DELAY_MS", "50")
        monkeypatch.setenv("BIDCASCADE_ENVIRONMENT", "test")
        monkeypatch.setenv("BIDCASCADE_JSON_LOGS", "TRUE")

        config = BidCascadeConfig.from_env()

        assert config.environment == "test"
        assert config.cascade.max_events == 40
        assert config.cascade.project_bid_delay_ms == 50.0
        assert config.logging.json_logs is True

    def test_debug_flag(self, monkeypatch):
        monkeypatch.setenv("BIDCASCADE_DEBUG", "true")
        assert BidCascadeConfig.from_env().debug is True


class TestFile:
    """Test loading from JSON files."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "bidcascade.json"
        path.write_text(json.dumps({
            "environment": "staging",
            "cascade": {"bid_completion_delay_ms": 250},
            "logging": {"level": "DEBUG"},
            "settings": {"region": "west"},
        }))

        config = BidCascadeConfig.from_file(str(path))

        assert config.environment == "staging"
        assert config.cascade.bid_completion_delay_ms == 250
        assert config.cascade.max_events == 25
        assert config.logging.level == "DEBUG"
        assert config.settings == {"region": "west"}

    def test_unknown_key_warns(self, tmp_path, caplog):
        path = tmp_path / "bidcascade.json"
        path.write_text(json.dumps({"cascade": {"warp_factor": 9}}))

        with caplog.at_level(logging.WARNING, logger="bidcascade.bootstrap.config"):
            config = BidCascadeConfig.from_file(str(path))

        assert not hasattr(config.cascade, "warp_factor")
        assert "warp_factor" in caplog.text

    def test_missing_file_falls_back(self, tmp_path):
        config = BidCascadeConfig.from_file(str(tmp_path / "missing.json"))
        assert config.cascade.max_events == 25

    def test_to_dict(self):
        data = BidCascadeConfig().to_dict()
        assert data["cascade"]["bid_line_item_delay_ms"] == 15
        assert data["logging"]["level"] == "INFO"
        assert json.loads(json.dumps(data)) == data


class TestGlobalConfig:
    """Test the process-wide configuration."""

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reset_config(self):
        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_load_config_from_path(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"cascade": {"max_events": 7}}))

        loaded = load_config(str(path))

        assert get_config() is loaded
        assert get_config().cascade.max_events == 7

    def test_load_config_default_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "bidcascade.json").write_text(json.dumps({"environment": "local"}))

        assert load_config().environment == "local"

    def test_entities_use_loaded_config(self, tmp_path, scheduler):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"cascade": {"bid_max_events": 3}}))
        load_config(str(path))

        bid = Bid({"id": 1}, scheduler=scheduler)
        assert bid.settings.bid_max_events == 3

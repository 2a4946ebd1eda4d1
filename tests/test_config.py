"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for monitor configs.
"""

import os
import tempfile
from decimal import Decimal

import pytest
import yaml

from cost_impact_monitor.config.loader import (
    AppConfig,
    LogFormat,
    load_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_full_config_loads_correctly(self):
        """Test that a complete configuration loads correctly."""
        config_data = {
            "confighub": {"url": "https://hub.example.com/api", "token_env": "HUB_TOKEN", "timeout": 5},
            "runtime": {
                "url": "https://k8s:6443",
                "namespace": "shop",
                "selector_label": "app.kubernetes.io/name",
                "verify_tls": False,
            },
            "monitor": {
                "interval_seconds": 120,
                "trigger_poll_seconds": 15,
                "max_workers": 4,
                "prune_stale_spaces": False,
                "warning_threshold": 250,
            },
            "pricing": {"cpu_hourly": 0.05, "baseline_monthly": 20},
            "risk": {"production_labels": {"tier": ["live", "Critical"]}},
            "ai": {"enabled": True, "model": "gpt-4o", "timeout": 3},
            "storage": {"db_path": "/var/lib/cim/history.db"},
            "logging": {"level": "DEBUG", "format": "json"},
        }

        config = load_config(self._write_config(config_data))

        assert isinstance(config, AppConfig)
        assert config.confighub.url == "https://hub.example.com/api"
        assert config.confighub.timeout == 5.0
        assert config.runtime.namespace == "shop"
        assert config.runtime.verify_tls is False
        assert config.monitor.interval_seconds == 120.0
        assert config.monitor.max_workers == 4
        assert config.monitor.prune_stale_spaces is False
        assert config.monitor.warning_threshold == 250.0
        assert config.pricing.cpu_hourly == Decimal("0.05")
        assert config.pricing.memory_gib_hourly == Decimal("0.006")
        assert config.pricing.baseline_monthly == Decimal("20.0")
        assert config.production_labels == {"tier": frozenset({"live", "critical"})}
        assert config.ai.enabled is True
        assert config.ai.model == "gpt-4o"
        assert config.db_path == "/var/lib/cim/history.db"
        assert config.logging.level == "debug"
        assert config.logging.format == LogFormat.JSON

    def test_minimal_config_uses_defaults(self):
        """Test that only the backend URL is required."""
        config = load_config(self._write_config({"confighub": {"url": "https://hub"}}))

        assert config.runtime is None
        assert config.monitor.interval_seconds == 60.0
        assert config.monitor.trigger_poll_seconds == 30.0
        assert config.monitor.max_workers == 8
        assert config.monitor.prune_stale_spaces is True
        assert config.monitor.warning_threshold == 100.0
        assert config.pricing.cpu_hourly == Decimal("0.024")
        assert config.production_labels["env"] == frozenset({"production", "prod"})
        assert config.ai.enabled is False
        assert config.db_path == "cost_impact_monitor.db"
        assert config.logging.format == LogFormat.CONSOLE

    def test_token_read_from_environment(self, monkeypatch):
        """Test that tokens come from the named environment variable."""
        monkeypatch.setenv("HUB_TOKEN", "secret")
        config = load_config(self._write_config(
            {"confighub": {"url": "https://hub", "token_env": "HUB_TOKEN"}}
        ))
        assert config.confighub.token == "secret"

    def test_missing_token_is_none(self, monkeypatch):
        """Test that an unset token variable means no token."""
        monkeypatch.delenv("CONFIGHUB_TOKEN", raising=False)
        config = load_config(self._write_config({"confighub": {"url": "https://hub"}}))
        assert config.confighub.token is None

    def test_missing_file_raises_error(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file_raises_error(self):
        """Test that empty config file raises ValueError."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")
        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("confighub: [unclosed")
        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_config(config_path)

    def test_missing_confighub_section(self):
        """Test that the confighub section is required."""
        with pytest.raises(ValueError, match="Missing required 'confighub' section"):
            load_config(self._write_config({"monitor": {"interval_seconds": 30}}))

    def test_missing_confighub_url(self):
        """Test that the confighub URL is required."""
        with pytest.raises(ValueError, match="Missing required 'url' in confighub"):
            load_config(self._write_config({"confighub": {"timeout": 5}}))

    def test_unknown_top_level_key_rejected(self):
        """Test that unknown top-level keys are rejected."""
        with pytest.raises(ValueError, match="Unknown keys in configuration"):
            load_config(self._write_config({"confighub": {"url": "https://hub"}, "budget": {}}))

    def test_unknown_section_key_rejected(self):
        """Test that unknown keys inside a section are rejected."""
        with pytest.raises(ValueError, match="Unknown keys in monitor"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "monitor": {"interval": 30},
            }))

    def test_non_positive_interval_rejected(self):
        """Test that scheduling intervals must be positive."""
        with pytest.raises(ValueError, match="interval_seconds must be > 0"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "monitor": {"interval_seconds": 0},
            }))

    def test_non_integer_workers_rejected(self):
        """Test that max_workers must be an integer."""
        with pytest.raises(ValueError, match="'max_workers' in monitor must be an integer"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "monitor": {"max_workers": 2.5},
            }))

    def test_negative_price_rejected(self):
        """Test that negative prices are rejected."""
        with pytest.raises(ValueError, match="cpu_hourly cannot be negative"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "pricing": {"cpu_hourly": -1},
            }))

    def test_string_number_rejected(self):
        """Test that numbers given as strings are rejected."""
        with pytest.raises(ValueError, match="'timeout' in confighub must be a number"):
            load_config(self._write_config({"confighub": {"url": "https://hub", "timeout": "10"}}))

    def test_invalid_log_format_rejected(self):
        """Test that unknown log formats are rejected."""
        with pytest.raises(ValueError, match="'format' in logging must be one of"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "logging": {"format": "xml"},
            }))

    def test_empty_production_labels_rejected(self):
        """Test that production labels can't be emptied out."""
        with pytest.raises(ValueError, match="non-empty dictionary"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "risk": {"production_labels": {}},
            }))

    def test_runtime_requires_url(self):
        """Test that a runtime section needs a URL."""
        with pytest.raises(ValueError, match="Missing required 'url' in runtime"):
            load_config(self._write_config({
                "confighub": {"url": "https://hub"},
                "runtime": {"namespace": "shop"},
            }))

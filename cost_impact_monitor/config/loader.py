"""
Configuration management and loading.

Loads the monitor's YAML configuration with strict validation: unknown
keys are rejected and every value is checked before the monitor starts.
Secrets are never stored in the file; the file names the environment
variables that hold them.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

from cost_impact_monitor.core.pricing import PricingTable
from cost_impact_monitor.core.risk import DEFAULT_PRODUCTION_LABELS


class LogFormat(Enum):
    """Log renderers."""
    CONSOLE = "console"
    JSON = "json"


@dataclass(frozen=True)
class ConfigHubConfig:
    """Configuration backend connection."""
    url: str
    token_env: str = "CONFIGHUB_TOKEN"
    timeout: float = 10.0

    def __post_init__(self):
        """Validate connection settings."""
        if not self.url or not self.url.strip():
            raise ValueError("confighub.url is required")
        if self.timeout <= 0:
            raise ValueError("confighub.timeout must be > 0")

    @property
    def token(self) -> Optional[str]:
        return os.environ.get(self.token_env) or None


@dataclass(frozen=True)
class RuntimeConfig:
    """Orchestration runtime (Kubernetes API) connection."""
    url: str
    token_env: str = "KUBE_TOKEN"
    namespace: str = "default"
    selector_label: str = "app"
    timeout: float = 10.0
    verify_tls: bool = True

    def __post_init__(self):
        """Validate connection settings."""
        if not self.url or not self.url.strip():
            raise ValueError("runtime.url is required")
        if self.timeout <= 0:
            raise ValueError("runtime.timeout must be > 0")

    @property
    def token(self) -> Optional[str]:
        return os.environ.get(self.token_env) or None


@dataclass(frozen=True)
class MonitorConfig:
    """Scheduling and concurrency settings."""
    interval_seconds: float = 60.0
    trigger_poll_seconds: float = 30.0
    max_workers: int = 8
    prune_stale_spaces: bool = True
    warning_threshold: float = 100.0

    def __post_init__(self):
        """Validate scheduling values are positive."""
        if self.interval_seconds <= 0:
            raise ValueError("monitor.interval_seconds must be > 0")
        if self.trigger_poll_seconds <= 0:
            raise ValueError("monitor.trigger_poll_seconds must be > 0")
        if self.max_workers <= 0:
            raise ValueError("monitor.max_workers must be > 0")
        if self.warning_threshold < 0:
            raise ValueError("monitor.warning_threshold cannot be negative")


@dataclass(frozen=True)
class AIConfig:
    """Optional AI narration."""
    enabled: bool = False
    model: str = "gpt-4o-mini"
    timeout: float = 10.0

    def __post_init__(self):
        """Validate AI settings."""
        if self.enabled and not self.model.strip():
            raise ValueError("ai.model is required when ai.enabled is true")
        if self.timeout <= 0:
            raise ValueError("ai.timeout must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and renderer."""
    level: str = "info"
    format: LogFormat = LogFormat.CONSOLE


@dataclass(frozen=True)
class AppConfig:
    """Complete monitor configuration."""
    confighub: ConfigHubConfig
    runtime: Optional[RuntimeConfig] = None
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    pricing: PricingTable = field(default_factory=PricingTable)
    production_labels: Dict[str, FrozenSet[str]] = field(
        default_factory=lambda: dict(DEFAULT_PRODUCTION_LABELS)
    )
    ai: AIConfig = field(default_factory=AIConfig)
    db_path: str = "cost_impact_monitor.db"
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


def load_config(path: str) -> AppConfig:
    """Load and validate monitor configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    return parse_config(raw_config)


def parse_config(raw_config: Dict[str, Any]) -> AppConfig:
    """Validate an already-loaded configuration dictionary."""
    _check_keys(raw_config, {
        'confighub', 'runtime', 'monitor', 'pricing', 'risk', 'ai', 'storage', 'logging',
    }, "configuration")

    if 'confighub' not in raw_config:
        raise ValueError("Missing required 'confighub' section")
    confighub_data = _section(raw_config, 'confighub')
    _check_keys(confighub_data, {'url', 'token_env', 'timeout'}, 'confighub')
    if 'url' not in confighub_data:
        raise ValueError("Missing required 'url' in confighub")
    confighub = ConfigHubConfig(
        url=str(confighub_data['url']),
        token_env=str(confighub_data.get('token_env', 'CONFIGHUB_TOKEN')),
        timeout=_number(confighub_data, 'timeout', 10.0, 'confighub'),
    )

    runtime = None
    if raw_config.get('runtime') is not None:
        runtime_data = _section(raw_config, 'runtime')
        _check_keys(runtime_data, {
            'url', 'token_env', 'namespace', 'selector_label', 'timeout', 'verify_tls',
        }, 'runtime')
        if 'url' not in runtime_data:
            raise ValueError("Missing required 'url' in runtime")
        runtime = RuntimeConfig(
            url=str(runtime_data['url']),
            token_env=str(runtime_data.get('token_env', 'KUBE_TOKEN')),
            namespace=str(runtime_data.get('namespace', 'default')),
            selector_label=str(runtime_data.get('selector_label', 'app')),
            timeout=_number(runtime_data, 'timeout', 10.0, 'runtime'),
            verify_tls=_bool(runtime_data, 'verify_tls', True, 'runtime'),
        )

    monitor_data = _section(raw_config, 'monitor')
    _check_keys(monitor_data, {
        'interval_seconds', 'trigger_poll_seconds', 'max_workers',
        'prune_stale_spaces', 'warning_threshold',
    }, 'monitor')
    max_workers = monitor_data.get('max_workers', 8)
    if isinstance(max_workers, bool) or not isinstance(max_workers, int):
        raise ValueError("'max_workers' in monitor must be an integer")
    monitor = MonitorConfig(
        interval_seconds=_number(monitor_data, 'interval_seconds', 60.0, 'monitor'),
        trigger_poll_seconds=_number(monitor_data, 'trigger_poll_seconds', 30.0, 'monitor'),
        max_workers=max_workers,
        prune_stale_spaces=_bool(monitor_data, 'prune_stale_spaces', True, 'monitor'),
        warning_threshold=_number(monitor_data, 'warning_threshold', 100.0, 'monitor'),
    )

    pricing_data = _section(raw_config, 'pricing')
    _check_keys(pricing_data, {
        'cpu_hourly', 'memory_gib_hourly', 'pod_overhead_monthly', 'baseline_monthly',
    }, 'pricing')
    defaults = PricingTable()
    pricing = PricingTable(**{
        key: Decimal(str(_number(pricing_data, key, float(getattr(defaults, key)), 'pricing')))
        for key in ('cpu_hourly', 'memory_gib_hourly', 'pod_overhead_monthly', 'baseline_monthly')
    })

    risk_data = _section(raw_config, 'risk')
    _check_keys(risk_data, {'production_labels'}, 'risk')
    production_labels = dict(DEFAULT_PRODUCTION_LABELS)
    if 'production_labels' in risk_data:
        production_labels = _parse_production_labels(risk_data['production_labels'])

    ai_data = _section(raw_config, 'ai')
    _check_keys(ai_data, {'enabled', 'model', 'timeout'}, 'ai')
    ai = AIConfig(
        enabled=_bool(ai_data, 'enabled', False, 'ai'),
        model=str(ai_data.get('model', 'gpt-4o-mini')),
        timeout=_number(ai_data, 'timeout', 10.0, 'ai'),
    )

    storage_data = _section(raw_config, 'storage')
    _check_keys(storage_data, {'db_path'}, 'storage')
    db_path = str(storage_data.get('db_path', 'cost_impact_monitor.db'))

    logging_data = _section(raw_config, 'logging')
    _check_keys(logging_data, {'level', 'format'}, 'logging')
    level = str(logging_data.get('level', 'info')).lower()
    if level not in _LOG_LEVELS:
        raise ValueError(f"'level' in logging must be one of: {sorted(_LOG_LEVELS)}")
    try:
        log_format = LogFormat(str(logging_data.get('format', 'console')).lower())
    except ValueError:
        valid_formats = [f.value for f in LogFormat]
        raise ValueError(f"'format' in logging must be one of: {valid_formats}")

    return AppConfig(
        confighub=confighub,
        runtime=runtime,
        monitor=monitor,
        pricing=pricing,
        production_labels=production_labels,
        ai=ai,
        db_path=db_path,
        logging=LoggingConfig(level=level, format=log_format),
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict[str, Any], key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _bool(data: Dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _parse_production_labels(data: Any) -> Dict[str, FrozenSet[str]]:
    if not isinstance(data, dict) or not data:
        raise ValueError("'production_labels' in risk must be a non-empty dictionary")

    labels = {}
    for key, values in data.items():
        if isinstance(values, str):
            values = [values]
        if not isinstance(values, list) or not values:
            raise ValueError(f"Values for production label '{key}' must be a non-empty list")
        labels[str(key)] = frozenset(str(v).strip().lower() for v in values)
    return labels

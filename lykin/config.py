"""Configuration loading for lykin."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


@dataclass
class GatewayConfig:
    host: str = "127.0.0.1"
    port: int = 8021
    timeout_seconds: float = 30.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class StoreConfig:
    """Configuration for the key-value store."""

    db_path: str = "~/.config/lykin/database.db"


@dataclass
class WorkerConfig:
    """Configuration for the background task loop."""

    max_queue_size: int = 0  # 0 means unbounded


@dataclass
class Config:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with LYKIN_ prefix."""
    return os.environ.get(f"LYKIN_{key}", default)


def _to_number(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # The gateway port keeps the variable name used by go-sbot deployments
    if port := os.environ.get("GO_SBOT_PORT"):
        config.gateway.port = _to_number("GO_SBOT_PORT", port, int)
    if host := _get_env("GATEWAY_HOST"):
        config.gateway.host = host
    if timeout := _get_env("GATEWAY_TIMEOUT"):
        config.gateway.timeout_seconds = _to_number(
            "LYKIN_GATEWAY_TIMEOUT", timeout, float
        )

    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    if queue_size := _get_env("QUEUE_SIZE"):
        config.worker.max_queue_size = _to_number("LYKIN_QUEUE_SIZE", queue_size, int)

    return config


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a config file section; an empty section counts as empty."""
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Failed to parse {path}: {e}") from e

            if not isinstance(data, dict):
                raise ConfigurationError(f"Expected a mapping at the top of {path}")

            if "gateway" in data:
                gateway_data = _section(data, "gateway")
                config.gateway = GatewayConfig(
                    host=gateway_data.get("host", config.gateway.host),
                    port=_to_number(
                        "gateway.port",
                        gateway_data.get("port", config.gateway.port),
                        int,
                    ),
                    timeout_seconds=_to_number(
                        "gateway.timeout_seconds",
                        gateway_data.get(
                            "timeout_seconds", config.gateway.timeout_seconds
                        ),
                        float,
                    ),
                )

            if "store" in data:
                config.store = StoreConfig(
                    db_path=_section(data, "store").get("db_path", config.store.db_path)
                )

            if "worker" in data:
                config.worker = WorkerConfig(
                    max_queue_size=_to_number(
                        "worker.max_queue_size",
                        _section(data, "worker").get(
                            "max_queue_size", config.worker.max_queue_size
                        ),
                        int,
                    )
                )

    return _apply_env_overrides(config)

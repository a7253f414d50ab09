"""Config loading utilities for the quote cache service and dashboard."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_CONFIG_PATH = "config/settings.yaml"


class ConfigError(ValueError):
    """Raised when the configuration file contains invalid values."""


@dataclass
class QuoteSourceConfig:
    base_url: str = "https://query1.finance.yahoo.com"
    timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (quotecache)"


@dataclass
class PollingConfig:
    symbols: List[str] = field(default_factory=list)
    interval_seconds: int = 60
    shutdown_timeout_seconds: float = 5.0


@dataclass
class DashboardConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    enable: bool = True


@dataclass
class MetricsConfig:
    emit_textfile: bool = False
    metrics_file: str = "var/metrics.prom"


@dataclass
class AppConfig:
    quote_source: QuoteSourceConfig = field(default_factory=QuoteSourceConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log_level: str = "INFO"


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """Load configuration from YAML, defaulting every missing key.

    ``path`` falls back to the ``CONFIG_PATH`` environment variable and then to
    ``config/settings.yaml``. A missing file yields the defaults.
    """

    resolved = Path(path or env_or_default("CONFIG_PATH", DEFAULT_CONFIG_PATH)).expanduser().resolve()
    if not resolved.exists():
        logging.getLogger(__name__).warning("Config file %s not found, using defaults", resolved)
        raw: Dict[str, Any] = {}
    else:
        with resolved.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{resolved}: expected a mapping at the top level")
    return parse_config(raw)


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    """Build an :class:`AppConfig` from an already-parsed mapping."""

    source = raw.get("quote_source") or {}
    polling = raw.get("polling") or {}
    dashboard = raw.get("dashboard") or {}
    metrics = raw.get("metrics") or {}

    config = AppConfig(
        quote_source=QuoteSourceConfig(
            base_url=str(source.get("base_url", QuoteSourceConfig.base_url)).rstrip("/"),
            timeout_seconds=float(source.get("timeout_seconds", QuoteSourceConfig.timeout_seconds)),
            user_agent=str(source.get("user_agent", QuoteSourceConfig.user_agent)),
        ),
        polling=PollingConfig(
            symbols=_parse_symbols(polling.get("symbols")),
            interval_seconds=polling.get("interval_seconds", PollingConfig.interval_seconds),
            shutdown_timeout_seconds=float(
                polling.get("shutdown_timeout_seconds", PollingConfig.shutdown_timeout_seconds)
            ),
        ),
        dashboard=DashboardConfig(
            host=dashboard.get("host", DashboardConfig.host),
            port=dashboard.get("port", DashboardConfig.port),
            enable=bool(dashboard.get("enable", DashboardConfig.enable)),
        ),
        metrics=MetricsConfig(
            emit_textfile=bool(metrics.get("emit_textfile", MetricsConfig.emit_textfile)),
            metrics_file=str(metrics.get("metrics_file", MetricsConfig.metrics_file)),
        ),
        log_level=env_or_default("LOG_LEVEL", str(raw.get("log_level", "INFO"))),
    )
    _validate(config)
    return config


def _parse_symbols(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    elif not isinstance(raw, list):
        raise ConfigError(f"polling.symbols must be a list of ticker symbols, got {raw!r}")
    return [str(symbol).strip() for symbol in raw if str(symbol).strip()]


def _validate(config: AppConfig) -> None:
    interval = config.polling.interval_seconds
    if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
        raise ConfigError(f"polling.interval_seconds must be a positive integer, got {interval!r}")
    if config.quote_source.timeout_seconds <= 0:
        raise ConfigError("quote_source.timeout_seconds must be positive")
    port = config.dashboard.port
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"dashboard.port must be between 1 and 65535, got {port!r}")


def env_or_default(key: str, default: str) -> str:
    return os.getenv(key, default)


__all__ = [
    "load_config",
    "parse_config",
    "AppConfig",
    "ConfigError",
    "DashboardConfig",
    "MetricsConfig",
    "PollingConfig",
    "QuoteSourceConfig",
]

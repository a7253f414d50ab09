"""Infrastructure utilities for configuration, logging, and metrics."""

from .config import AppConfig, ConfigError, load_config
from .logging import configure_logging
from .metrics import MetricsSink

__all__ = [
    "AppConfig",
    "ConfigError",
    "load_config",
    "configure_logging",
    "MetricsSink",
]

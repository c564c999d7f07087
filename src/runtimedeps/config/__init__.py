"""Configuration loading for runtimedeps."""

from runtimedeps.config.loader import ConfigError, load_config
from runtimedeps.config.models import InstallerConfig, NetworkConfig, TelemetryConfig

__all__ = [
    "ConfigError",
    "load_config",
    "InstallerConfig",
    "NetworkConfig",
    "TelemetryConfig",
]

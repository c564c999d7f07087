"""Configuration file loading and merging.

Handles loading configuration from YAML files with:
- Global config (~/.runtimedeps/config/config.yml)
- Project config (runtimedeps.yml) or a custom --config file
- Environment variable expansion (${VAR})
- Config merging with proper precedence
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from runtimedeps.bootstrap.manifest import ExperimentSettings
from runtimedeps.bootstrap.paths import get_runtimedeps_home
from runtimedeps.config.models import InstallerConfig, NetworkConfig, TelemetryConfig
from runtimedeps.config.validation import validate_config
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import InstallMode

LOGGER = get_logger(__name__)

# Config file names
PROJECT_CONFIG_NAMES = [".runtimedeps.yml", ".runtimedeps.yaml", "runtimedeps.yml", "runtimedeps.yaml"]
GLOBAL_CONFIG_NAME = "config.yml"

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or parsing error."""

    pass


def load_config(
    project_root: Path,
    cli_config_path: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> InstallerConfig:
    """Load configuration with proper precedence.

    Precedence (highest to lowest):
    1. CLI flags (cli_overrides)
    2. Custom config file (cli_config_path) OR project config (runtimedeps.yml)
    3. Global config (~/.runtimedeps/config/config.yml)
    4. Built-in defaults

    Relative paths inside a config file are resolved against that file's
    directory.

    Raises:
        ConfigError: If a config file is missing, unparsable or has
            invalid values.
    """
    sources: List[str] = []
    merged: Dict[str, Any] = {}

    # Layer 1: Global config
    global_path = find_global_config()
    if global_path and global_path.exists():
        try:
            global_dict = _load_layer(global_path)
            merged = merge_configs(merged, global_dict)
            sources.append(f"global:{global_path}")
            LOGGER.debug(f"Loaded global config from {global_path}")
        except (yaml.YAMLError, ConfigError) as e:
            LOGGER.warning(f"Failed to load global config: {e}")

    # Layer 2: Project or custom config
    if cli_config_path:
        if not cli_config_path.exists():
            raise ConfigError(f"Config file not found: {cli_config_path}")
        layer_path: Optional[Path] = cli_config_path
        label = "custom"
    else:
        layer_path = find_project_config(project_root)
        label = "project"

    if layer_path is not None:
        try:
            layer = _load_layer(layer_path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {layer_path}: {e}") from e
        merged = merge_configs(merged, layer)
        sources.append(f"{label}:{layer_path}")
        LOGGER.debug(f"Loaded {label} config from {layer_path}")

    # Layer 3: CLI overrides
    if cli_overrides:
        merged = merge_configs(merged, cli_overrides)
        sources.append("cli")
        LOGGER.debug("Applied CLI overrides")

    config = dict_to_config(merged)
    config._config_sources = sources

    LOGGER.debug(f"Config loaded from sources: {sources}")
    return config


def _load_layer(path: Path) -> Dict[str, Any]:
    data = load_yaml_file(path)
    errors = [w for w in validate_config(data, source=str(path)) if w.is_error]
    if errors:
        raise ConfigError("; ".join(f"{w.message} in {w.source}" for w in errors))
    return _resolve_relative_paths(data, path.parent)


def _resolve_relative_paths(data: Dict[str, Any], base: Path) -> Dict[str, Any]:
    resolved = dict(data)
    for key in ("install_root", "catalog", "manifest"):
        value = resolved.get(key)
        if isinstance(value, str) and value and not Path(value).expanduser().is_absolute():
            resolved[key] = str(base / value)
    return resolved


def find_project_config(project_root: Path) -> Optional[Path]:
    """Find config file in project root.

    Args:
        project_root: Directory to search in.

    Returns:
        Path to config file if found, None otherwise.
    """
    for name in PROJECT_CONFIG_NAMES:
        config_path = project_root / name
        if config_path.exists():
            return config_path
    return None


def find_global_config() -> Optional[Path]:
    """Find global config at ~/.runtimedeps/config/config.yml.

    Returns:
        Path to global config if it exists, None otherwise.
    """
    home = get_runtimedeps_home()
    config_path = home / "config" / GLOBAL_CONFIG_NAME
    if config_path.exists():
        return config_path
    return None


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML config file.

    Performs environment variable expansion on string values.

    Raises:
        yaml.YAMLError: If YAML parsing fails.
        ConfigError: If the document is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    data = yaml.safe_load(content)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(data).__name__}")

    return expand_env_vars(data)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports ${VAR} and ${VAR:-default} syntax.
    """
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return ENV_VAR_PATTERN.sub(_env_var_replacer, data)
    else:
        return data


def _env_var_replacer(match: re.Match[str]) -> str:
    """Replace environment variable reference with its value."""
    var_name = match.group(1)
    default_value = match.group(2)

    value = os.environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two config dicts, with overlay taking precedence.

    Rules:
    - Scalar values: overlay replaces base
    - Lists: overlay replaces base (no merging)
    - Dicts: recursive merge
    """
    result = base.copy()

    for key, overlay_value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(overlay_value, dict):
            result[key] = merge_configs(result[key], overlay_value)
        else:
            result[key] = overlay_value

    return result


def _optional_path(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(str(value)).expanduser()


def dict_to_config(data: Dict[str, Any]) -> InstallerConfig:
    """Convert a merged dict to a typed InstallerConfig.

    Raises:
        ConfigError: If a value cannot be converted.
    """
    try:
        mode = InstallMode(str(data.get("mode", InstallMode.AUTO.value)).lower())
    except ValueError as e:
        raise ConfigError(f"Invalid install mode: {data.get('mode')}") from e

    network_data = data.get("network", {}) or {}
    defaults = NetworkConfig()
    try:
        network = NetworkConfig(
            timeout=float(network_data.get("timeout", defaults.timeout)),
            retries=max(1, int(network_data.get("retries", defaults.retries))),
            backoff=float(network_data.get("backoff", defaults.backoff)),
            max_workers=max(1, int(network_data.get("max_workers", defaults.max_workers))),
            allow_insecure=bool(network_data.get("allow_insecure", defaults.allow_insecure)),
            sequential=bool(network_data.get("sequential", defaults.sequential)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid network configuration: {e}") from e

    experiments_data = data.get("experiments", {}) or {}
    experiments = ExperimentSettings(
        use_default_engine=bool(experiments_data.get("use_default_engine", True)),
        use_enhanced_colorization=bool(experiments_data.get("use_enhanced_colorization", True)),
    )

    telemetry_data = data.get("telemetry", {}) or {}

    return InstallerConfig(
        install_root=_optional_path(data.get("install_root")),
        catalog=_optional_path(data.get("catalog")),
        manifest=_optional_path(data.get("manifest")),
        mode=mode,
        network=network,
        experiments=experiments,
        telemetry=TelemetryConfig(enabled=bool(telemetry_data.get("enabled", True))),
        extra_binaries=list(data.get("extra_binaries", []) or []),
        unused_files=list(data.get("unused_files", []) or []),
        engine_setting=str(data.get("engine_setting", "Default")),
    )

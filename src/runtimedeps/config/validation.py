"""Configuration validation for runtimedeps.

Validates configuration keys and value types, warning on unknown keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from typing import Any, Dict, List, Optional, Set, Tuple, Type, Union

from runtimedeps.core.logging import get_logger

LOGGER = get_logger(__name__)

# Valid top-level keys
VALID_TOP_LEVEL_KEYS: Set[str] = {
    "version",
    "install_root",
    "catalog",
    "manifest",
    "mode",
    "network",
    "experiments",
    "telemetry",
    "extra_binaries",
    "unused_files",
    "engine_setting",
}

VALID_MODES: Set[str] = {"auto", "online", "offline"}

_Types = Union[Type, Tuple[Type, ...]]

# Expected value types per nested section
SECTION_KEYS: Dict[str, Dict[str, _Types]] = {
    "network": {
        "timeout": (int, float),
        "retries": int,
        "backoff": (int, float),
        "max_workers": int,
        "allow_insecure": bool,
        "sequential": bool,
    },
    "experiments": {
        "use_default_engine": bool,
        "use_enhanced_colorization": bool,
    },
    "telemetry": {
        "enabled": bool,
    },
}

_TYPE_NAMES = {
    int: "an integer",
    bool: "a boolean",
    str: "a string",
    list: "a list",
}


@dataclass
class ConfigValidationWarning:
    """A validation warning for configuration."""

    message: str
    source: str
    key: Optional[str] = None
    suggestion: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """Type mismatches and invalid values would fail at runtime."""
        return any(phrase in self.message for phrase in ("must be", "Invalid value"))


def validate_config(
    data: Dict[str, Any],
    source: str,
) -> List[ConfigValidationWarning]:
    """Validate configuration dictionary.

    Does not raise exceptions - returns warnings instead.

    Args:
        data: Config dictionary to validate.
        source: Source file path for warning messages.

    Returns:
        List of validation warnings.
    """
    warnings: List[ConfigValidationWarning] = []

    if not isinstance(data, dict):  # type: ignore[unreachable]
        warnings.append(ConfigValidationWarning(
            message=f"Config must be a mapping, got {type(data).__name__}",
            source=source,
        ))
        return warnings  # type: ignore[unreachable]

    # Check top-level keys
    for key in data.keys():
        if key not in VALID_TOP_LEVEL_KEYS:
            _add(warnings, ConfigValidationWarning(
                message=f"Unknown top-level key '{key}'",
                source=source,
                key=key,
                suggestion=_suggest_key(key, VALID_TOP_LEVEL_KEYS),
            ))

    for key in ("install_root", "catalog", "manifest", "engine_setting"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            _add(warnings, ConfigValidationWarning(
                message=f"'{key}' must be a string, got {type(value).__name__}",
                source=source,
                key=key,
            ))

    mode = data.get("mode")
    if mode is not None:
        if not isinstance(mode, str) or mode.lower() not in VALID_MODES:
            _add(warnings, ConfigValidationWarning(
                message=f"Invalid value '{mode}' for 'mode'. "
                        f"Valid values: {', '.join(sorted(VALID_MODES))}",
                source=source,
                key="mode",
                suggestion=_suggest_key(str(mode).lower(), VALID_MODES),
            ))

    for key in ("extra_binaries", "unused_files"):
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            _add(warnings, ConfigValidationWarning(
                message=f"'{key}' must be a list of strings",
                source=source,
                key=key,
            ))

    for section, expected in SECTION_KEYS.items():
        section_data = data.get(section)
        if section_data is None:
            continue
        if not isinstance(section_data, dict):
            _add(warnings, ConfigValidationWarning(
                message=f"'{section}' must be a mapping, got {type(section_data).__name__}",
                source=source,
                key=section,
            ))
            continue
        for key, value in section_data.items():
            if key not in expected:
                _add(warnings, ConfigValidationWarning(
                    message=f"Unknown key '{section}.{key}'",
                    source=source,
                    key=f"{section}.{key}",
                    suggestion=_suggest_key(key, set(expected)),
                ))
            elif not _type_matches(value, expected[key]):
                _add(warnings, ConfigValidationWarning(
                    message=f"'{section}.{key}' must be {_describe(expected[key])}",
                    source=source,
                    key=f"{section}.{key}",
                ))

    network = data.get("network")
    if isinstance(network, dict):
        for key in ("retries", "max_workers"):
            value = network.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value < 1:
                _add(warnings, ConfigValidationWarning(
                    message=f"Invalid value '{value}' for 'network.{key}'. Must be at least 1",
                    source=source,
                    key=f"network.{key}",
                ))

    return warnings


def _type_matches(value: Any, expected: _Types) -> bool:
    # bool is an int subclass; only accept it where a bool is expected.
    if isinstance(value, bool):
        return expected is bool
    return isinstance(value, expected)


def _describe(expected: _Types) -> str:
    if isinstance(expected, tuple):
        return "a number"
    return _TYPE_NAMES.get(expected, expected.__name__)


def _add(warnings: List[ConfigValidationWarning], warning: ConfigValidationWarning) -> None:
    warnings.append(warning)
    _log_warning(warning)


def _suggest_key(invalid_key: str, valid_keys: Set[str]) -> Optional[str]:
    """Suggest a valid key for a potential typo.

    Args:
        invalid_key: The invalid key entered.
        valid_keys: Set of valid keys.

    Returns:
        Closest matching valid key, or None if no good match.
    """
    matches = get_close_matches(invalid_key, list(valid_keys), n=1, cutoff=0.6)
    return matches[0] if matches else None


def _log_warning(warning: ConfigValidationWarning) -> None:
    """Log a validation warning."""
    msg = f"{warning.message} in {warning.source}"
    if warning.suggestion:
        msg += f" (did you mean '{warning.suggestion}'?)"
    LOGGER.warning(msg)

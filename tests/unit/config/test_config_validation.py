"""Tests for configuration validation."""

from __future__ import annotations

from runtimedeps.config.validation import ConfigValidationWarning, validate_config


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid_config_has_no_warnings(self) -> None:
        data = {
            "mode": "online",
            "catalog": "deps.yml",
            "network": {"timeout": 30, "retries": 5, "backoff": 0.5, "max_workers": 2},
            "experiments": {"use_default_engine": False},
            "telemetry": {"enabled": False},
            "extra_binaries": ["bin/tool"],
        }
        assert validate_config(data, source="runtimedeps.yml") == []

    def test_unknown_top_level_key_suggests(self) -> None:
        warnings = validate_config({"catalgo": "deps.yml"}, source="runtimedeps.yml")
        assert len(warnings) == 1
        assert warnings[0].suggestion == "catalog"
        assert not warnings[0].is_error

    def test_unknown_section_key(self) -> None:
        warnings = validate_config({"network": {"timout": 5}}, source="x")
        assert warnings[0].key == "network.timout"
        assert warnings[0].suggestion == "timeout"

    def test_invalid_mode_is_error(self) -> None:
        warnings = validate_config({"mode": "sometimes"}, source="x")
        assert len(warnings) == 1
        assert warnings[0].is_error

    def test_bool_is_not_a_number(self) -> None:
        warnings = validate_config({"network": {"timeout": True}}, source="x")
        assert warnings[0].message == "'network.timeout' must be a number"
        assert warnings[0].is_error

    def test_int_is_not_a_bool(self) -> None:
        warnings = validate_config({"telemetry": {"enabled": 1}}, source="x")
        assert warnings[0].message == "'telemetry.enabled' must be a boolean"

    def test_non_positive_workers(self) -> None:
        warnings = validate_config({"network": {"max_workers": 0}}, source="x")
        assert warnings[0].is_error
        assert warnings[0].key == "network.max_workers"

    def test_list_of_strings_required(self) -> None:
        warnings = validate_config({"unused_files": "bin/old"}, source="x")
        assert warnings[0].message == "'unused_files' must be a list of strings"

    def test_section_must_be_mapping(self) -> None:
        warnings = validate_config({"network": "fast"}, source="x")
        assert warnings[0].is_error


class TestConfigValidationWarning:
    """Tests for ConfigValidationWarning."""

    def test_unknown_key_is_not_error(self) -> None:
        warning = ConfigValidationWarning(message="Unknown top-level key 'x'", source="s")
        assert warning.is_error is False

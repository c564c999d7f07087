"""Tests for manifest rewrites."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any, Dict
from unittest.mock import patch

import pytest

from runtimedeps.bootstrap.manifest import (
    COLORIZATION_SETTING,
    ENGINE_SETTING,
    FINAL_ACTIVATION_EVENTS,
    UPDATE_CHANNEL_SETTING,
    ExperimentSettings,
    ManifestDocument,
    is_prerelease_install,
    validate_manifest,
)
from runtimedeps.core.errors import ManifestRewriteFailed


def _manifest_data() -> Dict[str, Any]:
    return {
        "name": "tool",
        "activationEvents": ["*"],
        "contributes": {
            "configuration": {
                "properties": {
                    ENGINE_SETTING: {"type": "string", "default": "Default"},
                    COLORIZATION_SETTING: {"type": "string", "default": "Enabled"},
                    UPDATE_CHANNEL_SETTING: {"type": "string", "default": "Default"},
                }
            }
        },
    }


def _write(directory: Path, data: Dict[str, Any]) -> ManifestDocument:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(data, indent=2))
    return ManifestDocument(path)


class TestActivationEvents:
    """Tests for activation event rewriting."""

    def test_rewrite_replaces_wildcard(self, tmp_path: Path) -> None:
        document = _write(tmp_path, _manifest_data())
        assert document.is_finalized() is False

        assert document.rewrite_activation_events() is True

        assert document.activation_events() == FINAL_ACTIVATION_EVENTS
        assert document.is_finalized() is True
        assert json.loads(document.path.read_text())["name"] == "tool"

    def test_rewrite_is_idempotent(self, tmp_path: Path) -> None:
        document = _write(tmp_path, _manifest_data())
        document.rewrite_activation_events()
        assert document.rewrite_activation_events() is False

    def test_missing_manifest_not_finalized(self, tmp_path: Path) -> None:
        assert ManifestDocument(tmp_path / "package.json").is_finalized() is False

    def test_missing_manifest_rewrite_fails(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestRewriteFailed, match="Cannot read manifest"):
            ManifestDocument(tmp_path / "package.json").rewrite_activation_events()

    def test_non_object_manifest_fails(self, tmp_path: Path) -> None:
        path = tmp_path / "package.json"
        path.write_text("[1, 2]")
        with pytest.raises(ManifestRewriteFailed, match="JSON object"):
            ManifestDocument(path).load()

    def test_write_failure_leaves_file_intact(self, tmp_path: Path) -> None:
        document = _write(tmp_path, _manifest_data())
        before = document.path.read_text()

        with patch("runtimedeps.bootstrap.manifest.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(ManifestRewriteFailed, match="Cannot write manifest"):
                document.rewrite_activation_events()

        assert document.path.read_text() == before
        assert [p.name for p in tmp_path.iterdir()] == ["package.json"]

    @pytest.mark.skipif(os.name != "posix", reason="file modes are POSIX-only")
    def test_rewrite_preserves_file_mode(self, tmp_path: Path) -> None:
        document = _write(tmp_path, _manifest_data())
        document.path.chmod(0o644)

        document.rewrite_activation_events()

        assert stat.S_IMODE(document.path.stat().st_mode) == 0o644

    def test_invalid_transform_result_not_written(self, tmp_path: Path) -> None:
        document = _write(tmp_path, _manifest_data())
        before = document.path.read_text()

        def _clear(data: Dict[str, Any]) -> bool:
            data["activationEvents"] = []
            return True

        with pytest.raises(ManifestRewriteFailed, match="non-empty list"):
            document.update(_clear)
        assert document.path.read_text() == before


class TestExperimentDefaults:
    """Tests for A/B setting defaults."""

    def _properties(self, document: ManifestDocument) -> Dict[str, Any]:
        return document.load()["contributes"]["configuration"]["properties"]

    def test_tag_parser_when_flag_off(self, tmp_path: Path) -> None:
        document = _write(tmp_path / "tool-1.0", _manifest_data())
        settings = ExperimentSettings(use_default_engine=False, use_enhanced_colorization=False)

        assert document.apply_experiment_defaults(settings) is True

        properties = self._properties(document)
        assert properties[ENGINE_SETTING]["default"] == "Tag Parser"
        assert properties[COLORIZATION_SETTING]["default"] == "Disabled"

    def test_defaults_unchanged_returns_false(self, tmp_path: Path) -> None:
        document = _write(tmp_path / "tool-1.0", _manifest_data())
        assert document.apply_experiment_defaults(ExperimentSettings()) is False

    def test_prerelease_switches_update_channel(self, tmp_path: Path) -> None:
        document = _write(tmp_path / "tool-insiders", _manifest_data())
        settings = ExperimentSettings(use_default_engine=False)

        document.apply_experiment_defaults(settings)

        properties = self._properties(document)
        assert properties[UPDATE_CHANNEL_SETTING]["default"] == "Insiders"
        assert properties[ENGINE_SETTING]["default"] == "Default"

    def test_missing_setting_fails(self, tmp_path: Path) -> None:
        data = _manifest_data()
        del data["contributes"]["configuration"]["properties"][ENGINE_SETTING]
        document = _write(tmp_path / "tool-1.0", data)
        with pytest.raises(ManifestRewriteFailed, match="Cannot transform"):
            document.apply_experiment_defaults(ExperimentSettings())


class TestHelpers:
    """Tests for module helpers."""

    def test_is_prerelease_install(self) -> None:
        assert is_prerelease_install(Path("/ext/tool-insiders/package.json"))
        assert is_prerelease_install(Path("/ext/tool-exploration/package.json"))
        assert not is_prerelease_install(Path("/ext/tool-1.2.0/package.json"))

    def test_validate_rejects_non_string_events(self) -> None:
        with pytest.raises(ManifestRewriteFailed, match="non-empty strings"):
            validate_manifest({"activationEvents": ["onDebug", 3]})

    def test_validate_rejects_bad_contributes(self) -> None:
        with pytest.raises(ManifestRewriteFailed, match="contributes"):
            validate_manifest({"activationEvents": ["onDebug"], "contributes": []})

"""Tests for installed binary validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from fakes import make_package
from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.bootstrap.validation import (
    PackageValidationResult,
    ToolStatus,
    validate_binary,
    validate_packages,
)


class TestValidateBinary:
    """Tests for validate_binary."""

    def test_missing(self, tmp_path: Path) -> None:
        assert validate_binary(tmp_path / "nope") == ToolStatus.MISSING

    def test_directory_is_missing(self, tmp_path: Path) -> None:
        assert validate_binary(tmp_path) == ToolStatus.MISSING

    @pytest.mark.skipif(os.name != "posix", reason="execute bits are POSIX-only")
    def test_not_executable(self, tmp_path: Path) -> None:
        tool = tmp_path / "tool"
        tool.write_text("x")
        tool.chmod(0o644)
        assert validate_binary(tool) == ToolStatus.NOT_EXECUTABLE

    def test_present_without_posix_check(self, tmp_path: Path) -> None:
        tool = tmp_path / "tool.exe"
        tool.write_text("x")
        assert validate_binary(tool, posix=False) == ToolStatus.PRESENT


class TestValidatePackages:
    """Tests for validate_packages."""

    def test_reports_each_binary(self, paths: RuntimedepsPaths) -> None:
        tool = paths.install_root / "bin" / "tool"
        tool.parent.mkdir(parents=True)
        tool.write_text("x")
        tool.chmod(0o755)
        package = make_package(binaries=["bin/tool", "bin/missing", "../escape"])

        result = validate_packages(paths, [package])

        assert result.statuses["bin/tool"] == ToolStatus.PRESENT
        assert result.statuses["bin/missing"] == ToolStatus.MISSING
        assert result.statuses["../escape"] == ToolStatus.MISSING
        assert result.invalid_binaries() == ["bin/missing", "../escape"]
        assert not result.all_valid()

    def test_empty_result_is_valid(self) -> None:
        result = PackageValidationResult()
        assert result.all_valid()
        assert result.to_dict() == {}

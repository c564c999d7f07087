"""Shared fixtures for unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from runtimedeps.bootstrap.paths import RuntimedepsPaths


@pytest.fixture
def runtimedeps_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point RUNTIMEDEPS_HOME at a temporary directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("RUNTIMEDEPS_HOME", str(home))
    return home


@pytest.fixture
def paths(tmp_path: Path) -> RuntimedepsPaths:
    """Paths rooted in a temporary directory, with directories created."""
    result = RuntimedepsPaths(install_root=tmp_path / "root", home=tmp_path / "home")
    result.ensure_directories()
    return result

"""Path management for runtimedeps.

Handles the ~/.runtimedeps state directory and the install root layout.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional

# Default directory name under user home
DEFAULT_HOME_DIR_NAME = ".runtimedeps"

# Environment variable to override home directory
RUNTIMEDEPS_HOME_ENV = "RUNTIMEDEPS_HOME"

# Existence-only flag meaning "acquisition already completed"
INSTALL_LOCK_NAME = "install.lock"

# Shipped inside offline packages: dependencies are already bundled
BUNDLE_MARKER_NAME = ".bundled"


def get_runtimedeps_home() -> Path:
    """Get the runtimedeps home directory path.

    Resolution order:
    1. RUNTIMEDEPS_HOME environment variable (if set)
    2. ~/.runtimedeps (default)

    Returns:
        Path to the runtimedeps home directory.
    """
    env_home = os.environ.get(RUNTIMEDEPS_HOME_ENV)
    if env_home:
        return Path(env_home)
    return Path.home() / DEFAULT_HOME_DIR_NAME


@dataclass
class RuntimedepsPaths:
    """Manages paths for one install root.

    Directory structure:
        <install_root>/
            install.lock            - Lock marker
            .bundled                - Offline bundle marker (optional)
            <package install paths>
        ~/.runtimedeps/
            staging/                - Partially downloaded archives
            state/installed.json    - Per-package completion ledger
            config/                 - Configuration files
            logs/install.log        - Persistent install log
            logs/telemetry.jsonl    - Telemetry events
    """

    install_root: Path
    home: Path

    # Subdirectory names
    _STAGING_DIR: ClassVar[str] = "staging"
    _STATE_DIR: ClassVar[str] = "state"
    _CONFIG_DIR: ClassVar[str] = "config"
    _LOGS_DIR: ClassVar[str] = "logs"

    @classmethod
    def default(cls, install_root: Optional[Path] = None) -> "RuntimedepsPaths":
        """Create paths from the default runtimedeps home.

        The install root defaults to ``<home>/runtime``.
        """
        home = get_runtimedeps_home()
        return cls(install_root=install_root or home / "runtime", home=home)

    @property
    def staging_dir(self) -> Path:
        """Directory for in-flight downloads."""
        return self.home / self._STAGING_DIR

    @property
    def state_dir(self) -> Path:
        """Directory for the installed-packages ledger."""
        return self.home / self._STATE_DIR

    @property
    def config_dir(self) -> Path:
        """Directory for configuration files."""
        return self.home / self._CONFIG_DIR

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        return self.home / self._LOGS_DIR

    @property
    def install_lock(self) -> Path:
        return self.install_root / INSTALL_LOCK_NAME

    @property
    def bundle_marker(self) -> Path:
        return self.install_root / BUNDLE_MARKER_NAME

    @property
    def installed_ledger(self) -> Path:
        return self.state_dir / "installed.json"

    @property
    def install_log(self) -> Path:
        return self.logs_dir / "install.log"

    @property
    def telemetry_log(self) -> Path:
        return self.logs_dir / "telemetry.jsonl"

    def resolve(self, relative: str) -> Path:
        """Resolve a catalog-relative path against the install root.

        Raises:
            ValueError: If the path escapes the install root.
        """
        root = self.install_root.resolve()
        target = (root / relative).resolve()
        if not target.is_relative_to(root):
            raise ValueError(f"Path escapes install root: {relative}")
        return target

    def ensure_directories(self) -> None:
        """Create all required directories if they don't exist."""
        directories = [
            self.install_root,
            self.home,
            self.staging_dir,
            self.state_dir,
            self.config_dir,
            self.logs_dir,
        ]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def is_installed(self) -> bool:
        """Check whether the lock marker exists."""
        return self.install_lock.exists()

    def is_bundled(self) -> bool:
        """Check whether dependencies were shipped pre-bundled."""
        return self.bundle_marker.exists()

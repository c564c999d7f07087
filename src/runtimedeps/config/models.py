"""Typed configuration for installation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from runtimedeps.bootstrap.download import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
)
from runtimedeps.bootstrap.manifest import ExperimentSettings
from runtimedeps.core.models import InstallMode

DEFAULT_MAX_WORKERS = 4

# Value of engine_setting that turns the language service off.
ENGINE_DISABLED = "Disabled"


@dataclass
class NetworkConfig:
    """Download behaviour."""

    timeout: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_MAX_ATTEMPTS
    backoff: float = DEFAULT_BACKOFF_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS
    allow_insecure: bool = False
    # Process packages one at a time (for debugging).
    sequential: bool = False


@dataclass
class TelemetryConfig:
    enabled: bool = True


@dataclass
class InstallerConfig:
    """Complete runtimedeps configuration.

    Attributes:
        install_root: Directory packages are installed under. None means
            the default under the runtimedeps home.
        catalog: Catalog file (YAML, or JSON manifest with runtimeDependencies).
            None means the manifest's own runtimeDependencies.
        manifest: Package manifest to rewrite after installation.
        mode: Installation path selector.
        extra_binaries: Install-root-relative files marked executable on
            every run, in addition to each package's binaries.
        unused_files: Install-root-relative files renamed to ``*.unused``
            on non-Windows hosts.
        engine_setting: Current value of the engine setting; "Disabled"
            keeps the language service off after install.
    """

    install_root: Optional[Path] = None
    catalog: Optional[Path] = None
    manifest: Optional[Path] = None
    mode: InstallMode = InstallMode.AUTO
    network: NetworkConfig = field(default_factory=NetworkConfig)
    experiments: ExperimentSettings = field(default_factory=ExperimentSettings)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    extra_binaries: List[str] = field(default_factory=list)
    unused_files: List[str] = field(default_factory=list)
    engine_setting: str = "Default"

    # Set by the loader for diagnostics.
    _config_sources: List[str] = field(default_factory=list, repr=False)

    @property
    def language_service_disabled(self) -> bool:
        return self.engine_setting == ENGINE_DISABLED

    def get_config_sources(self) -> List[str]:
        return list(self._config_sources)

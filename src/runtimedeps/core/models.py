from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class OperatingSystem(str, Enum):
    """Host operating systems a package can target."""

    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"


class Architecture(str, Enum):
    """Normalized CPU architectures."""

    X86 = "x86"
    X64 = "x64"
    ARM = "arm"
    ARM64 = "arm64"
    UNKNOWN = "unknown"


class InstallType(str, Enum):
    """How the runtime dependencies reach the install root."""

    ONLINE = "online"
    OFFLINE = "offline"


class InstallMode(str, Enum):
    """Explicit selector for the installation path.

    AUTO resolves to OFFLINE when the bundle marker is present.
    """

    AUTO = "auto"
    ONLINE = "online"
    OFFLINE = "offline"


class InstallStage(str, Enum):
    """Named steps of an installation run."""

    NOT_STARTED = "not_started"
    PROBING_PLATFORM = "probing_platform"
    OFFLINE_PATH = "offline_path"
    ONLINE_PATH = "online_path"
    MAKING_EXECUTABLE = "making_executable"
    REMOVING_UNNECESSARY_FILES = "removing_unnecessary_files"
    REWRITING_MANIFEST = "rewriting_manifest"
    POST_INSTALL = "post_install"
    COMPLETED = "completed"
    FAILED = "failed"


# Aliases accepted for platform names in catalog documents.
_OS_ALIASES = {
    "win32": OperatingSystem.WINDOWS,
    "windows": OperatingSystem.WINDOWS,
    "linux": OperatingSystem.LINUX,
    "darwin": OperatingSystem.MACOS,
    "macos": OperatingSystem.MACOS,
    "osx": OperatingSystem.MACOS,
}

_ARCH_ALIASES = {
    "x86": Architecture.X86,
    "ia32": Architecture.X86,
    "x64": Architecture.X64,
    "x86_64": Architecture.X64,
    "amd64": Architecture.X64,
    "arm": Architecture.ARM,
    "arm64": Architecture.ARM64,
    "aarch64": Architecture.ARM64,
}


def parse_os(value: str) -> OperatingSystem:
    """Parse an operating system name, accepting common aliases.

    Raises:
        ValueError: If the name is not recognized.
    """
    try:
        return _OS_ALIASES[value.lower()]
    except KeyError:
        raise ValueError(f"Unknown platform: {value}") from None


def parse_arch(value: str) -> Architecture:
    """Parse an architecture name, accepting common aliases.

    Raises:
        ValueError: If the name is not recognized.
    """
    try:
        return _ARCH_ALIASES[value.lower()]
    except KeyError:
        raise ValueError(f"Unknown architecture: {value}") from None


@dataclass(frozen=True)
class LinuxDistribution:
    """Linux distribution name and version from /etc/os-release."""

    name: str
    version: str


@dataclass(frozen=True)
class PlatformInfo:
    """Information about the current platform.

    Attributes:
        operating_system: Host operating system.
        architecture: Normalized CPU architecture.
        distribution: Linux distribution, None on other systems.
    """

    operating_system: OperatingSystem
    architecture: Architecture
    distribution: Optional[LinuxDistribution] = None

    @property
    def name(self) -> str:
        """Return a display name such as "linux-x64"."""
        return f"{self.operating_system.value}-{self.architecture.value}"


@dataclass(frozen=True)
class Package:
    """A runtime dependency archive and where it belongs.

    Attributes:
        description: Human readable name, unique within a catalog.
        url: Remote archive location.
        checksum: Expected SHA-256 of the archive, hex encoded.
        install_path: Destination directory relative to the install root.
        platforms: Operating systems the package applies to.
        architectures: Architectures the package applies to, None for all.
        binaries: Files (relative to the install root) to mark executable.
    """

    description: str
    url: str
    checksum: str
    install_path: str
    platforms: FrozenSet[OperatingSystem]
    architectures: Optional[FrozenSet[Architecture]] = None
    binaries: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Package":
        """Create from a catalog entry.

        Accepts both snake_case keys and the camelCase keys used by
        ``runtimeDependencies`` manifest entries.
        """
        checksum = data.get("checksum") or data.get("integrity") or ""
        install_path = data.get("install_path") or data.get("installPath") or ""
        architectures = data.get("architectures")
        return cls(
            description=data["description"],
            url=data["url"],
            checksum=str(checksum).lower(),
            install_path=install_path,
            platforms=frozenset(parse_os(p) for p in data.get("platforms", [])),
            architectures=(
                frozenset(parse_arch(a) for a in architectures)
                if architectures is not None
                else None
            ),
            binaries=tuple(data.get("binaries", [])),
        )

    def applies_to(self, platform_info: PlatformInfo) -> bool:
        """Check whether this package should be installed on a platform."""
        if platform_info.operating_system not in self.platforms:
            return False
        return self.architectures is None or platform_info.architecture in self.architectures


@dataclass(frozen=True)
class DownloadResult:
    """A downloaded archive waiting to be installed."""

    package: Package
    archive_path: Path
    checksum_ok: bool


@dataclass
class InstallationInformation:
    """Run-scoped state of one installation run.

    Written only by the state machine; read by telemetry and error handling.
    """

    stage: InstallStage = InstallStage.NOT_STARTED
    install_type: InstallType = InstallType.ONLINE
    has_error: bool = False
    failed_stage: Optional[InstallStage] = None
    already_installed: bool = False
    telemetry_properties: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    installed_packages: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.stage == InstallStage.COMPLETED and not self.has_error

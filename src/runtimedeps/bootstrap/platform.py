"""Platform detection for runtimedeps.

Detects OS, architecture and Linux distribution to decide which runtime
packages apply to the host, and rejects hosts the binaries cannot run on.
"""

from __future__ import annotations

import platform
from pathlib import Path
from typing import Callable, Dict, Optional

from runtimedeps.core.errors import UnsupportedPlatform
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import (
    Architecture,
    LinuxDistribution,
    OperatingSystem,
    PlatformInfo,
)

LOGGER = get_logger(__name__)

# platform.system() values
_OS_MAP = {
    "windows": OperatingSystem.WINDOWS,
    "linux": OperatingSystem.LINUX,
    "darwin": OperatingSystem.MACOS,
}

# Architecture normalization map
_ARCH_MAP = {
    "x86_64": Architecture.X64,
    "amd64": Architecture.X64,
    "x64": Architecture.X64,
    "i386": Architecture.X86,
    "i486": Architecture.X86,
    "i586": Architecture.X86,
    "i686": Architecture.X86,
    "x86": Architecture.X86,
    "arm64": Architecture.ARM64,
    "aarch64": Architecture.ARM64,
    "arm": Architecture.ARM,
    "armv6l": Architecture.ARM,
    "armv7l": Architecture.ARM,
    "armv8l": Architecture.ARM,
}

# Only the x86 family has runtime binaries.
SUPPORTED_ARCH = frozenset({Architecture.X86, Architecture.X64})

# Distributions the debugger binaries are known to work on.
KNOWN_GOOD_DISTROS = frozenset(
    {"ubuntu", "debian", "fedora", "centos", "rhel", "opensuse", "opensuse-leap", "linuxmint", "arch"}
)

ALPINE_RELEASE_FILE = "etc/alpine-release"
OS_RELEASE_FILE = "etc/os-release"


def normalize_arch(machine: str) -> Architecture:
    """Normalize an architecture string to an Architecture.

    Args:
        machine: Raw architecture string from platform.machine()

    Returns:
        Normalized architecture, Architecture.UNKNOWN if unrecognized.
    """
    return _ARCH_MAP.get(machine.lower(), Architecture.UNKNOWN)


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    values: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


class PlatformProbe:
    """Read-only query of the host platform.

    The OS facilities are injectable so detection can be exercised
    for any host from tests.
    """

    def __init__(
        self,
        system: Optional[Callable[[], str]] = None,
        machine: Optional[Callable[[], str]] = None,
        root: Path = Path("/"),
    ) -> None:
        self._system = system or platform.system
        self._machine = machine or platform.machine
        self._root = root

    def detect_os(self) -> OperatingSystem:
        """Detect the current operating system.

        Raises:
            UnsupportedPlatform: If the OS is not supported.
        """
        system = self._system()
        operating_system = _OS_MAP.get(system.lower())
        if operating_system is None:
            raise UnsupportedPlatform(f"Operating system {system} is not supported.")
        return operating_system

    def detect_arch(self) -> Architecture:
        return normalize_arch(self._machine())

    def detect_distribution(self) -> LinuxDistribution:
        """Read the Linux distribution from os-release."""
        os_release = self._root / OS_RELEASE_FILE
        try:
            values = parse_os_release(os_release.read_text(encoding="utf-8"))
        except OSError:
            LOGGER.debug(f"Could not read {os_release}")
            return LinuxDistribution(name="unknown", version="unknown")
        return LinuxDistribution(
            name=values.get("ID", "unknown"),
            version=values.get("VERSION_ID", "unknown"),
        )

    def detect(self) -> PlatformInfo:
        """Detect and return current platform information.

        Returns:
            PlatformInfo with detected OS, architecture and distribution.

        Raises:
            UnsupportedPlatform: If the architecture is outside the x86
                family or the host is an Alpine (musl) container.
        """
        operating_system = self.detect_os()
        architecture = self.detect_arch()

        if architecture not in SUPPORTED_ARCH:
            raise UnsupportedPlatform(
                f"Architecture {self._machine()} is not supported."
            )

        distribution: Optional[LinuxDistribution] = None
        if operating_system == OperatingSystem.LINUX:
            if (self._root / ALPINE_RELEASE_FILE).exists():
                raise UnsupportedPlatform("Alpine containers are not supported.")
            distribution = self.detect_distribution()

        info = PlatformInfo(
            operating_system=operating_system,
            architecture=architecture,
            distribution=distribution,
        )
        LOGGER.debug(f"Detected platform {info.name}")
        return info


def distro_support_warning(info: PlatformInfo) -> Optional[str]:
    """Return a warning when the Linux distribution is not a known-good one."""
    if info.distribution is None:
        return None
    if info.distribution.name.lower() in KNOWN_GOOD_DISTROS:
        return None
    return (
        f"Linux distribution {info.distribution.name} {info.distribution.version} "
        "has not been verified; some runtime binaries may not work."
    )


def get_platform_info() -> PlatformInfo:
    """Detect the platform of the running host."""
    return PlatformProbe().detect()

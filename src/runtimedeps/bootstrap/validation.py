"""Binary validation for installed runtime packages.

Validates that each package's binaries are present and executable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List

from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import Package

LOGGER = get_logger(__name__)


class ToolStatus(str, Enum):
    """Status of a tool binary."""

    PRESENT = "present"
    MISSING = "missing"
    NOT_EXECUTABLE = "not_executable"


@dataclass
class PackageValidationResult:
    """Result of validating the binaries of a set of packages.

    Attributes:
        statuses: Binary path (catalog-relative) to its status.
    """

    statuses: Dict[str, ToolStatus] = field(default_factory=dict)

    def all_valid(self) -> bool:
        """Check if all binaries are present and executable."""
        return all(status == ToolStatus.PRESENT for status in self.statuses.values())

    def invalid_binaries(self) -> List[str]:
        """Return binaries that are missing or not executable."""
        return [name for name, status in self.statuses.items() if status != ToolStatus.PRESENT]

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {name: status.value for name, status in self.statuses.items()}


def validate_binary(path: Path, posix: bool = os.name == "posix") -> ToolStatus:
    """Validate a single binary.

    Args:
        path: Path to the binary.
        posix: Whether execute permission is meaningful on this host.

    Returns:
        ToolStatus indicating whether the binary is present and executable.
    """
    if not path.is_file():
        return ToolStatus.MISSING

    if posix and not os.access(path, os.X_OK):
        return ToolStatus.NOT_EXECUTABLE

    return ToolStatus.PRESENT


def validate_packages(
    paths: RuntimedepsPaths, packages: Iterable[Package]
) -> PackageValidationResult:
    """Validate the binaries of every given package.

    Args:
        paths: Paths of the install root.
        packages: Packages selected for this platform.

    Returns:
        PackageValidationResult with the status of each binary.
    """
    LOGGER.debug("Validating runtime binaries...")
    result = PackageValidationResult()
    for package in packages:
        for binary in package.binaries:
            try:
                status = validate_binary(paths.resolve(binary))
            except ValueError:
                status = ToolStatus.MISSING
            if status != ToolStatus.PRESENT:
                LOGGER.debug(f"{binary}: {status.value}")
            result.statuses[binary] = status

    if result.all_valid():
        LOGGER.debug("All runtime binaries validated successfully.")
    else:
        LOGGER.debug(f"Missing/invalid binaries: {result.invalid_binaries()}")
    return result

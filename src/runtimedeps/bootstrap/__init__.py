"""
Bootstrap module for runtimedeps.

This module handles:
- Platform detection (OS + architecture + Linux distribution)
- The package catalog and per-platform selection
- Downloading, verifying and atomically installing archives
- Executable permissions, manifest rewrites and binary validation
"""

from runtimedeps.bootstrap.platform import get_platform_info, PlatformProbe
from runtimedeps.bootstrap.paths import get_runtimedeps_home, RuntimedepsPaths
from runtimedeps.bootstrap.catalog import PackageCatalog
from runtimedeps.bootstrap.download import Downloader
from runtimedeps.bootstrap.installer import Installer
from runtimedeps.bootstrap.executable import ExecutableBitSetter
from runtimedeps.bootstrap.validation import validate_packages, PackageValidationResult, ToolStatus

__all__ = [
    "get_platform_info",
    "PlatformProbe",
    "get_runtimedeps_home",
    "RuntimedepsPaths",
    "PackageCatalog",
    "Downloader",
    "Installer",
    "ExecutableBitSetter",
    "validate_packages",
    "PackageValidationResult",
    "ToolStatus",
]

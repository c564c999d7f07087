"""Status command implementation."""

from __future__ import annotations

from argparse import Namespace
from typing import TYPE_CHECKING

from runtimedeps.bootstrap.installer import InstallLedger
from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.bootstrap.platform import get_platform_info
from runtimedeps.bootstrap.validation import ToolStatus, validate_packages
from runtimedeps.cli.commands import Command
from runtimedeps.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from runtimedeps.core.errors import CatalogError, UnsupportedPlatform
from runtimedeps.core.logging import get_logger
from runtimedeps.pipeline.state_machine import load_catalog

if TYPE_CHECKING:
    from runtimedeps.config.models import InstallerConfig

LOGGER = get_logger(__name__)


class StatusCommand(Command):
    """Shows platform, lock marker and installed binary status."""

    def __init__(self, version: str):
        """Initialize StatusCommand.

        Args:
            version: Current runtimedeps version string.
        """
        self._version = version

    @property
    def name(self) -> str:
        """Command identifier."""
        return "status"

    def execute(self, args: Namespace, config: "InstallerConfig | None" = None) -> int:
        """Execute the status command.

        Returns:
            EXIT_SUCCESS, or EXIT_INVALID_USAGE if the catalog is unreadable.
        """
        install_root = config.install_root if config is not None else None
        paths = RuntimedepsPaths.default(install_root)

        print(f"runtimedeps version: {self._version}")
        try:
            platform_info = get_platform_info()
            print(f"Platform: {platform_info.name}")
            if platform_info.distribution is not None:
                distro = platform_info.distribution
                print(f"Distribution: {distro.name} {distro.version}")
        except UnsupportedPlatform as e:
            platform_info = None
            print(f"Platform: unsupported ({e})")

        print(f"Install root: {paths.install_root}")
        print(f"Installed: {'yes' if paths.is_installed() else 'no'}")
        print(f"Bundled: {'yes' if paths.is_bundled() else 'no'}")

        ledger = InstallLedger(paths.installed_ledger).read()
        if ledger:
            print()
            print("Packages:")
            for name, entry in sorted(ledger.items()):
                print(f"  {name}: installed {entry.get('installedAt', 'unknown')}")

        if config is None:
            return EXIT_SUCCESS

        try:
            catalog = load_catalog(config)
        except CatalogError as e:
            LOGGER.error(str(e))
            return EXIT_INVALID_USAGE
        if len(catalog) == 0:
            return EXIT_SUCCESS

        supported = sorted(f"{system.value}-{arch.value}" for system, arch in catalog.support_matrix())
        print()
        print(f"Catalog: {len(catalog)} package(s), platforms: {', '.join(supported) or 'none'}")
        if platform_info is None:
            return EXIT_SUCCESS

        result = validate_packages(paths, catalog.select(platform_info))
        if result.statuses:
            print()
            print("Binaries:")
            for binary, status in result.statuses.items():
                marker = "ok" if status == ToolStatus.PRESENT else status.value
                print(f"  {binary}: {marker}")

        return EXIT_SUCCESS

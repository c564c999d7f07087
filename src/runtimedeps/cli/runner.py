"""CLI runner orchestration.

This module handles command dispatch and execution for the runtimedeps CLI.
"""

from __future__ import annotations

from argparse import Namespace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from runtimedeps.cli.arguments import build_parser
from runtimedeps.cli.commands.install import InstallCommand
from runtimedeps.cli.commands.status import StatusCommand
from runtimedeps.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from runtimedeps.config import load_config
from runtimedeps.config.loader import ConfigError
from runtimedeps.config.models import InstallerConfig
from runtimedeps.core.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)


def get_version() -> str:
    """Get runtimedeps version.

    Returns:
        Version string from package metadata or fallback.
    """
    try:
        return version("runtimedeps")
    except PackageNotFoundError:
        # Fallback for editable installs that have not yet built metadata.
        from runtimedeps import __version__
        return __version__


def args_to_overrides(args: Namespace) -> Dict[str, Any]:
    """Convert CLI arguments to a config override dict.

    Only options given on the command line are included, so config file
    values survive when a flag is omitted.
    """
    overrides: Dict[str, Any] = {}
    for key in ("install_root", "catalog", "manifest"):
        value = getattr(args, key, None)
        if value is not None:
            overrides[key] = str(Path(value).expanduser().resolve())

    mode = getattr(args, "mode", None)
    if mode is not None:
        overrides["mode"] = mode

    network: Dict[str, Any] = {}
    max_workers = getattr(args, "max_workers", None)
    if max_workers is not None:
        network["max_workers"] = max_workers
    if getattr(args, "sequential", False):
        network["sequential"] = True
    if network:
        overrides["network"] = network

    return overrides


class CLIRunner:
    """Orchestrates CLI execution with subcommand dispatch."""

    def __init__(self) -> None:
        self.parser = build_parser()
        self._version = get_version()
        self.install_cmd = InstallCommand(version=self._version)
        self.status_cmd = StatusCommand(version=self._version)

    def run(self, argv: Optional[Iterable[str]] = None) -> int:
        """Run the CLI.

        Args:
            argv: Command-line arguments (defaults to sys.argv).

        Returns:
            Exit code.
        """
        # Handle --help specially to return 0
        if argv is not None:
            argv_list = list(argv)
            if "--help" in argv_list or "-h" in argv_list:
                self.parser.print_help()
                return EXIT_SUCCESS
        else:
            argv_list = None

        try:
            args = self.parser.parse_args(argv_list)
        except SystemExit as e:
            # argparse exits with 2 on bad usage
            return EXIT_INVALID_USAGE if e.code else EXIT_SUCCESS

        # Configure logging as early as possible
        configure_logging(
            debug=args.debug,
            verbose=args.verbose,
            quiet=args.quiet,
        )

        if args.version:
            print(self._version)
            return EXIT_SUCCESS

        command = getattr(args, "command", None)

        if command == "install":
            return self._handle_install(args)
        elif command == "status":
            return self._handle_status(args)
        else:
            # No command specified - show help
            self.parser.print_help()
            return EXIT_SUCCESS

    def _load_config(self, args: Namespace) -> Optional[InstallerConfig]:
        try:
            return load_config(
                project_root=Path.cwd(),
                cli_config_path=getattr(args, "config", None),
                cli_overrides=args_to_overrides(args),
            )
        except ConfigError as e:
            LOGGER.error(str(e))
            return None

    def _handle_install(self, args: Namespace) -> int:
        """Handle the install command."""
        config = self._load_config(args)
        if config is None:
            return EXIT_INVALID_USAGE
        return self.install_cmd.execute(args, config)

    def _handle_status(self, args: Namespace) -> int:
        """Handle the status command."""
        config = self._load_config(args)
        if config is None:
            return EXIT_INVALID_USAGE
        return self.status_cmd.execute(args, config)

"""Argument parser construction for the runtimedeps CLI.

This module builds the argument parser with subcommands:
- runtimedeps install - Acquire and install runtime dependencies
- runtimedeps status  - Show platform, lock marker and binary status
"""

from __future__ import annotations

import argparse
from pathlib import Path

from runtimedeps.core.models import InstallMode


def _add_global_options(parser: argparse.ArgumentParser) -> None:
    """Add global options available to all commands."""
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show runtimedeps version and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (info-level) logging.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging output to errors only.",
    )


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _add_root_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--root",
        type=Path,
        dest="install_root",
        help="Install root (default: ~/.runtimedeps/runtime).",
    )


def _build_install_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'install' subcommand parser."""
    install_parser = subparsers.add_parser(
        "install",
        help="Install runtime dependencies for this platform.",
        description=(
            "Detect the platform, download and verify the matching packages, "
            "and finalize the manifest. Does nothing if already installed."
        ),
    )
    install_parser.add_argument(
        "--config",
        type=Path,
        help="Path to a custom config file (default: runtimedeps.yml in the current directory).",
    )
    _add_root_option(install_parser)
    install_parser.add_argument(
        "--catalog",
        type=Path,
        help="Package catalog (YAML, or JSON manifest with runtimeDependencies).",
    )
    install_parser.add_argument(
        "--manifest",
        type=Path,
        help="Package manifest to rewrite after installation.",
    )
    install_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in InstallMode],
        help="Installation path (default: auto, offline when a bundle is present).",
    )
    install_parser.add_argument(
        "--max-workers",
        type=_positive_int,
        help="Maximum number of concurrent downloads (default: 4).",
    )
    install_parser.add_argument(
        "--sequential",
        action="store_true",
        help="Download and install packages one at a time (for debugging).",
    )


def _build_status_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'status' subcommand parser."""
    status_parser = subparsers.add_parser(
        "status",
        help="Show installation status.",
        description=(
            "Display runtimedeps version, platform info, lock marker state "
            "and the status of installed binaries."
        ),
    )
    status_parser.add_argument(
        "--config",
        type=Path,
        help="Path to a custom config file.",
    )
    _add_root_option(status_parser)
    status_parser.add_argument(
        "--catalog",
        type=Path,
        help="Package catalog used to list expected binaries.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser for the runtimedeps CLI.

    Returns:
        Configured ArgumentParser instance with subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="runtimedeps",
        description="runtimedeps - Platform-specific runtime dependency installer.",
        epilog=(
            "Examples:\n"
            "  runtimedeps install --catalog deps.yml    # Install dependencies\n"
            "  runtimedeps install --mode offline        # Finalize a bundled install\n"
            "  runtimedeps status                        # Show installation status\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    _add_global_options(parser)

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands:",
        metavar="COMMAND",
    )

    _build_install_parser(subparsers)
    _build_status_parser(subparsers)

    return parser

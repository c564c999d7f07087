"""Install command implementation."""

from __future__ import annotations

import sys
from argparse import Namespace
from typing import TYPE_CHECKING, Optional

from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.cli.commands import Command
from runtimedeps.cli.exit_codes import (
    EXIT_BOOTSTRAP_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SUCCESS,
)
from runtimedeps.core.errors import CatalogError
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import InstallStage
from runtimedeps.pipeline.context import RunCallbacks, RunContext
from runtimedeps.pipeline.state_machine import InstallationStateMachine

if TYPE_CHECKING:
    from runtimedeps.config.models import InstallerConfig

LOGGER = get_logger(__name__)


class InstallCommand(Command):
    """Runs the installation state machine for one install root."""

    def __init__(self, version: str):
        self._version = version

    @property
    def name(self) -> str:
        """Command identifier."""
        return "install"

    def execute(self, args: Namespace, config: "InstallerConfig | None" = None) -> int:
        """Execute the install command.

        Args:
            args: Parsed command-line arguments.
            config: Loaded configuration; required.

        Returns:
            EXIT_SUCCESS when dependencies are usable, EXIT_BOOTSTRAP_FAILURE
            when the run failed, EXIT_INVALID_USAGE for a bad catalog.
        """
        if config is None:
            LOGGER.error("Install requires a configuration")
            return EXIT_INVALID_USAGE

        paths = RuntimedepsPaths.default(config.install_root)
        quiet = getattr(args, "quiet", False)
        callbacks = RunCallbacks(
            on_stage_changed=None if quiet else _print_stage,
        )

        with RunContext.create(paths, config, callbacks=callbacks) as context:
            try:
                machine = InstallationStateMachine.from_context(context)
            except CatalogError as e:
                LOGGER.error(str(e))
                return EXIT_INVALID_USAGE

            try:
                info = machine.run()
            except KeyboardInterrupt:
                context.cancellation.cancel()
                LOGGER.error("Installation interrupted")
                return EXIT_BOOTSTRAP_FAILURE

        if not info.succeeded:
            print(
                f"Installation failed at stage: {_stage_name(info.failed_stage)}. "
                f"See {paths.install_log} for details.",
                file=sys.stderr,
            )
            return EXIT_BOOTSTRAP_FAILURE

        if not quiet:
            if info.already_installed:
                print(f"Runtime dependencies already installed in {paths.install_root}")
            else:
                count = len(info.installed_packages)
                print(f"Installed {count} package(s) into {paths.install_root}")
            for warning in info.warnings:
                print(f"Warning: {warning}", file=sys.stderr)
        return EXIT_SUCCESS


def _print_stage(stage: InstallStage) -> None:
    print(f"[{stage.value}]", file=sys.stderr)


def _stage_name(stage: Optional[InstallStage]) -> str:
    return stage.value if stage is not None else "unknown"

"""Process-scoped state shared by the components of one installation run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.config.models import ENGINE_DISABLED, InstallerConfig
from runtimedeps.core.cancellation import CancellationToken
from runtimedeps.core.logging import attach_file_handler, detach_handler, get_logger
from runtimedeps.core.models import InstallStage

LOGGER = get_logger(__name__)


@dataclass
class RunCallbacks:
    """Observer hooks for the host surface.

    Attributes:
        on_stage_changed: Called with the new stage on every transition.
        on_progress: Called with (phase, done, total); phase is
            "download" or "install".
        on_error: Called once with the terminal error of a failed run.
    """

    on_stage_changed: Optional[Callable[[InstallStage], None]] = None
    on_progress: Optional[Callable[[str, int, int], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


@dataclass
class RunContext:
    """Everything a run needs that is not owned by a single component.

    Created with ``create()`` at pipeline start and released with
    ``close()`` at pipeline end (or used as a context manager).
    """

    paths: RuntimedepsPaths
    config: InstallerConfig
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    callbacks: RunCallbacks = field(default_factory=RunCallbacks)
    language_service_disabled: bool = False
    reload_message_shown: bool = False
    _log_handler: Optional[logging.Handler] = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        paths: RuntimedepsPaths,
        config: InstallerConfig,
        callbacks: Optional[RunCallbacks] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> "RunContext":
        """Prepare directories and the persistent install log."""
        paths.ensure_directories()
        context = cls(
            paths=paths,
            config=config,
            cancellation=cancellation or CancellationToken(),
            callbacks=callbacks or RunCallbacks(),
        )
        context._log_handler = attach_file_handler(paths.install_log)
        return context

    def close(self) -> None:
        if self._log_handler is not None:
            detach_handler(self._log_handler)
            self._log_handler = None

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def engine_setting_changed(self, engine_setting: str) -> bool:
        """Report whether a settings change needs a reload to take effect.

        Returns True at most once per context, when the engine setting flips
        across "Disabled" relative to the state at activation.
        """
        if self.reload_message_shown:
            return False
        now_disabled = engine_setting == ENGINE_DISABLED
        if now_disabled != self.language_service_disabled:
            self.reload_message_shown = True
            LOGGER.info("Engine setting changed; reload required to apply it")
            return True
        return False

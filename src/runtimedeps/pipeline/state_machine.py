"""Installation state machine.

Sequences one run:

    not_started -> probing_platform -> {offline_path | online_path}
        -> making_executable -> removing_unnecessary_files
        -> rewriting_manifest -> post_install -> completed

with ``failed`` reachable from every state. The machine is the only writer
of the run's InstallationInformation and of the install lock marker.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from runtimedeps.bootstrap.catalog import PackageCatalog
from runtimedeps.bootstrap.download import Downloader
from runtimedeps.bootstrap.executable import ExecutableBitSetter
from runtimedeps.bootstrap.installer import Installer
from runtimedeps.bootstrap.manifest import ManifestDocument
from runtimedeps.bootstrap.platform import PlatformProbe, distro_support_warning
from runtimedeps.config.models import InstallerConfig
from runtimedeps.core.errors import Cancelled, ExtractionFailed, InstallError
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import (
    InstallationInformation,
    InstallMode,
    InstallStage,
    InstallType,
    OperatingSystem,
    Package,
    PlatformInfo,
)
from runtimedeps.core.sanitize import remove_potential_pii
from runtimedeps.pipeline.context import RunContext
from runtimedeps.pipeline.parallel import ParallelAcquirer
from runtimedeps.pipeline.telemetry import JsonLinesSink, NullSink, TelemetryReporter

LOGGER = get_logger(__name__)

RELEASES_HINT = (
    "If you work in an offline environment or repeatedly see this error, try "
    "downloading a version with all dependencies pre-included from the releases "
    "page, then install it manually."
)

UNUSED_SUFFIX = ".unused"

# One lock per install-lock path so concurrent runs are serialized.
_RUN_LOCKS: Dict[Path, threading.Lock] = {}
_RUN_LOCKS_GUARD = threading.Lock()


def _run_lock(lock_path: Path) -> threading.Lock:
    key = lock_path.resolve()
    with _RUN_LOCKS_GUARD:
        return _RUN_LOCKS.setdefault(key, threading.Lock())


def load_catalog(config: InstallerConfig) -> PackageCatalog:
    """Load the catalog named by the config.

    Falls back to the manifest's runtimeDependencies, then to an empty
    catalog.

    Raises:
        CatalogError: If the catalog or manifest cannot be parsed.
    """
    if config.catalog is not None:
        return PackageCatalog.from_file(config.catalog)
    if config.manifest is not None and config.manifest.exists():
        return PackageCatalog.from_file(config.manifest)
    return PackageCatalog([])


class InstallationStateMachine:
    """Supervises one installation run."""

    def __init__(
        self,
        context: RunContext,
        catalog: PackageCatalog,
        *,
        probe: Optional[PlatformProbe] = None,
        downloader: Optional[Downloader] = None,
        installer: Optional[Installer] = None,
        executable_setter: Optional[ExecutableBitSetter] = None,
        manifest: Optional[ManifestDocument] = None,
        telemetry: Optional[TelemetryReporter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._context = context
        self._catalog = catalog
        self._probe = probe or PlatformProbe()
        network = context.config.network
        self._downloader = downloader or Downloader(
            context.paths.staging_dir,
            max_attempts=network.retries,
            backoff=network.backoff,
            timeout=network.timeout,
            allow_insecure=network.allow_insecure,
        )
        self._installer = installer or Installer(context.paths)
        self._executable_setter = executable_setter or ExecutableBitSetter()
        if manifest is None and context.config.manifest is not None:
            manifest = ManifestDocument(context.config.manifest)
        self._manifest = manifest
        if telemetry is None:
            sink = (
                JsonLinesSink(context.paths.telemetry_log)
                if context.config.telemetry.enabled
                else NullSink()
            )
            telemetry = TelemetryReporter(sink)
        self._telemetry = telemetry
        self._clock = clock
        self._info = InstallationInformation()
        self._platform: Optional[PlatformInfo] = None

    @classmethod
    def from_context(cls, context: RunContext, **kwargs: Any) -> "InstallationStateMachine":
        """Build a machine with components configured from the context."""
        return cls(context, load_catalog(context.config), **kwargs)

    @property
    def stage(self) -> InstallStage:
        """Current stage, for diagnostics and crash reports."""
        return self._info.stage

    @property
    def information(self) -> InstallationInformation:
        return self._info

    @property
    def telemetry(self) -> TelemetryReporter:
        return self._telemetry

    @property
    def platform(self) -> Optional[PlatformInfo]:
        return self._platform

    def run(self) -> InstallationInformation:
        """Run the installation, or skip it if already installed.

        Returns:
            The run's InstallationInformation; ``succeeded`` tells whether
            the dependencies are usable.
        """
        paths = self._context.paths
        with _run_lock(paths.install_lock):
            if paths.is_installed():
                LOGGER.info("Runtime dependencies already installed")
                return self._already_installed()

            mode = self._resolve_mode()
            if mode == InstallMode.OFFLINE and self._manifest is not None and self._manifest.is_finalized():
                LOGGER.info("Bundled runtime dependencies already finalized")
                return self._already_installed()

            self._install(mode)

        if self._info.succeeded:
            self._finalize()
        return self._info

    def _resolve_mode(self) -> InstallMode:
        mode = self._context.config.mode
        if mode == InstallMode.AUTO:
            mode = InstallMode.OFFLINE if self._context.paths.is_bundled() else InstallMode.ONLINE
        LOGGER.debug(f"Installation mode: {mode.value}")
        return mode

    def _already_installed(self) -> InstallationInformation:
        self._info.already_installed = True
        self._info.stage = InstallStage.COMPLETED
        self._notify(self._context.callbacks.on_stage_changed, InstallStage.COMPLETED)
        self._finalize()
        return self._info

    def _install(self, mode: InstallMode) -> None:
        self._info.install_type = (
            InstallType.OFFLINE if mode == InstallMode.OFFLINE else InstallType.ONLINE
        )
        started = self._clock()
        try:
            self._transition(InstallStage.PROBING_PLATFORM)
            platform_info = self._probe.detect()
            self._platform = platform_info
            self._telemetry.record_platform(platform_info)
            packages = self._catalog.select(platform_info)

            if mode == InstallMode.ONLINE:
                self._transition(InstallStage.ONLINE_PATH)
                self._acquire(packages)
            else:
                self._transition(InstallStage.OFFLINE_PATH)
                self._check_bundled(packages)

            self._transition(InstallStage.MAKING_EXECUTABLE)
            self._make_executable(packages)

            self._transition(InstallStage.REMOVING_UNNECESSARY_FILES)
            self._remove_unnecessary_files(platform_info)

            self._transition(InstallStage.REWRITING_MANIFEST)
            self._rewrite_manifest()

            self._transition(InstallStage.POST_INSTALL)
            self._post_install(platform_info)

            self._complete(mode)
        except InstallError as e:
            self._fail(e)
        except Exception as e:
            # Anything unexpected still ends the run as a recorded failure.
            LOGGER.exception("Unexpected error during installation")
            self._fail(e)
        except KeyboardInterrupt:
            self._context.cancellation.cancel()
            self._fail(Cancelled("Installation was interrupted."))
            raise
        finally:
            self._telemetry.record("success", not self._info.has_error)
            self._telemetry.record("type", self._info.install_type.value)
            self._telemetry.record("durationMs", int((self._clock() - started) * 1000))
            if self._info.warnings:
                self._telemetry.record("warnings", len(self._info.warnings))
            self._info.telemetry_properties = self._telemetry.properties
            self._telemetry.flush()

    def _transition(self, stage: InstallStage) -> None:
        # Cancellation takes effect between stages.
        self._context.cancellation.raise_if_cancelled()
        LOGGER.debug(f"Stage: {self._info.stage.value} -> {stage.value}")
        self._info.stage = stage
        self._notify(self._context.callbacks.on_stage_changed, stage)

    def _acquire(self, packages: List[Package]) -> None:
        LOGGER.info("Updating runtime dependencies...")
        acquirer = ParallelAcquirer(
            self._downloader,
            self._installer,
            max_workers=self._context.config.network.max_workers,
            sequential=self._context.config.network.sequential,
        )
        outcomes = acquirer.acquire(packages, self._context.cancellation, self._on_progress)
        self._info.installed_packages = [o.package.description for o in outcomes if o.success]

    def _check_bundled(self, packages: List[Package]) -> None:
        for package in packages:
            destination = self._installer.destination_for(package)
            if not destination.exists():
                raise ExtractionFailed(
                    "Bundled package is missing from the offline installation",
                    package=package,
                )
        self._info.installed_packages = [p.description for p in packages]

    def _make_executable(self, packages: List[Package]) -> None:
        paths = self._context.paths
        relative = [binary for package in packages for binary in package.binaries]
        relative.extend(self._context.config.extra_binaries)
        targets = []
        for binary in relative:
            try:
                targets.append(paths.resolve(binary))
            except ValueError as e:
                self._warn(str(e))
        for failure in self._executable_setter.mark_executable(targets):
            self._warn(failure.message)

    def _remove_unnecessary_files(self, platform_info: PlatformInfo) -> None:
        if platform_info.operating_system == OperatingSystem.WINDOWS:
            return
        for relative in self._context.config.unused_files:
            try:
                source = self._context.paths.resolve(relative)
            except ValueError as e:
                self._warn(str(e))
                continue
            if not source.exists():
                continue
            try:
                os.replace(source, source.with_name(source.name + UNUSED_SUFFIX))
            except OSError as e:
                self._warn(f"Rename failed with \"{e.strerror or e}\". Delete {source} manually.")

    def _rewrite_manifest(self) -> None:
        if self._manifest is None:
            LOGGER.debug("No manifest configured; skipping rewrite")
            return
        self._manifest.rewrite_activation_events()

    def _post_install(self, platform_info: PlatformInfo) -> None:
        LOGGER.info("Finished installing dependencies")
        warning = distro_support_warning(platform_info)
        if warning:
            self._warn(warning)

    def _complete(self, mode: InstallMode) -> None:
        if mode == InstallMode.ONLINE:
            # Creating the lock marker must not be interrupted.
            with self._context.cancellation.deferred():
                self._touch_install_lock()
        self._info.stage = InstallStage.COMPLETED
        self._notify(self._context.callbacks.on_stage_changed, InstallStage.COMPLETED)

    def _touch_install_lock(self) -> None:
        lock_path = self._context.paths.install_lock
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_path.touch(exist_ok=True)
        except OSError as e:
            raise InstallError(f"Could not create install lock: {e}", inner=e) from e
        LOGGER.debug(f"Created {lock_path.name}")

    def _fail(self, error: BaseException) -> None:
        failed_stage = self._info.stage
        self._info.has_error = True
        self._info.failed_stage = failed_stage
        if isinstance(error, InstallError) and error.stage is None:
            error.stage = failed_stage

        self._telemetry.record("stage", failed_stage.value)
        self._telemetry.record_error(error)

        # The log shows the actual message, telemetry only the sanitized one.
        LOGGER.error(f"Failed at stage: {failed_stage.value}")
        LOGGER.error(str(error))
        LOGGER.error(RELEASES_HINT)

        self._info.stage = InstallStage.FAILED
        self._notify(self._context.callbacks.on_error, error)
        self._notify(self._context.callbacks.on_stage_changed, InstallStage.FAILED)

    def _finalize(self) -> None:
        """Apply settings-dependent activation once dependencies are usable."""
        config = self._context.config
        self._context.language_service_disabled = config.language_service_disabled
        if config.language_service_disabled:
            LOGGER.info("Language service disabled by settings")
            return
        if self._manifest is None or not self._manifest.path.exists():
            return
        try:
            self._manifest.apply_experiment_defaults(config.experiments)
        except InstallError as e:
            self._warn(f"Could not update setting defaults: {e}")

    def _warn(self, message: str) -> None:
        LOGGER.warning(message)
        self._info.warnings.append(remove_potential_pii(message))

    def _on_progress(self, phase: str, done: int, total: int) -> None:
        self._notify(self._context.callbacks.on_progress, phase, done, total)

    @staticmethod
    def _notify(callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            LOGGER.warning(f"Observer callback failed: {e}")

"""Tests for the installation state machine."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Iterator, List, Optional
from unittest.mock import MagicMock

import pytest

from fakes import FakeOpener, make_package, sha256_hex, zip_bytes
from runtimedeps.bootstrap.catalog import PackageCatalog
from runtimedeps.bootstrap.download import Downloader
from runtimedeps.bootstrap.manifest import (
    ENGINE_SETTING,
    COLORIZATION_SETTING,
    FINAL_ACTIVATION_EVENTS,
    ExperimentSettings,
    ManifestDocument,
)
from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.bootstrap.platform import PlatformProbe
from runtimedeps.config.models import InstallerConfig
from runtimedeps.core.errors import Cancelled
from runtimedeps.core.models import InstallMode, InstallStage, InstallType, OperatingSystem, Package
from runtimedeps.pipeline.context import RunCallbacks, RunContext
from runtimedeps.pipeline.state_machine import InstallationStateMachine, load_catalog
from runtimedeps.pipeline.telemetry import TelemetryReporter

ARCHIVE = zip_bytes({"bin/tool": b"#!/bin/sh\necho ok\n", "bin/old-helper": b"legacy"})


def _manifest_data() -> dict:
    return {
        "name": "tool",
        "activationEvents": ["*"],
        "contributes": {
            "configuration": {
                "properties": {
                    ENGINE_SETTING: {"type": "string", "default": "Default"},
                    COLORIZATION_SETTING: {"type": "string", "default": "Enabled"},
                }
            }
        },
    }


class Harness:
    """Builds state machines over a temporary install root."""

    def __init__(self, tmp_path: Path) -> None:
        self.tmp_path = tmp_path
        self.paths = RuntimedepsPaths(install_root=tmp_path / "root", home=tmp_path / "home")
        self.manifest_path = tmp_path / "ext" / "package.json"
        self.manifest_path.parent.mkdir(parents=True)
        self.manifest_path.write_text(json.dumps(_manifest_data()))
        self.config = InstallerConfig(manifest=self.manifest_path)
        self.opener = FakeOpener()
        self.sink = MagicMock()
        self.stages: List[InstallStage] = []
        self.errors: List[BaseException] = []
        sysroot = tmp_path / "sysroot"
        (sysroot / "etc").mkdir(parents=True)
        (sysroot / "etc" / "os-release").write_text("ID=ubuntu\nVERSION_ID=22.04\n")
        self.sysroot = sysroot
        self.machine_name = "x86_64"
        self.system_name = "Linux"
        self._contexts: List[RunContext] = []

    def package(self, payload: bytes = ARCHIVE, served: Optional[bytes] = None, **kwargs) -> Package:
        package = make_package(payload=payload, install_path="a", binaries=["a/bin/tool"], **kwargs)
        self.opener.payloads[package.url] = served if served is not None else payload
        return package

    def context(self, **callback_overrides) -> RunContext:
        callbacks = RunCallbacks(
            on_stage_changed=self.stages.append,
            on_error=self.errors.append,
        )
        for key, value in callback_overrides.items():
            setattr(callbacks, key, value)
        context = RunContext.create(self.paths, self.config, callbacks=callbacks)
        self._contexts.append(context)
        return context

    def machine(self, packages: List[Package], context: Optional[RunContext] = None, **kwargs) -> InstallationStateMachine:
        context = context or self.context()
        probe = PlatformProbe(
            system=lambda: self.system_name,
            machine=lambda: self.machine_name,
            root=self.sysroot,
        )
        downloader = Downloader(self.paths.staging_dir, backoff=0, opener=self.opener)
        kwargs.setdefault("telemetry", TelemetryReporter(self.sink))
        return InstallationStateMachine(
            context,
            PackageCatalog(packages),
            probe=probe,
            downloader=downloader,
            **kwargs,
        )

    def emitted(self) -> dict:
        event_name, properties = self.sink.emit.call_args.args
        assert event_name == "acquisition"
        return properties

    def close(self) -> None:
        for context in self._contexts:
            context.close()


@pytest.fixture
def harness(tmp_path: Path) -> Iterator[Harness]:
    h = Harness(tmp_path)
    yield h
    h.close()


class TestOnlineInstall:
    """Tests for the online installation path."""

    def test_completes_and_creates_lock(self, harness: Harness) -> None:
        package = harness.package()

        info = harness.machine([package]).run()

        assert info.succeeded
        assert info.stage == InstallStage.COMPLETED
        assert info.install_type == InstallType.ONLINE
        assert info.installed_packages == ["A"]
        assert harness.paths.is_installed()
        assert (harness.paths.install_root / "a" / "bin" / "tool").exists()
        properties = harness.emitted()
        assert properties["success"] == "true"
        assert properties["type"] == "online"
        assert properties["platform"] == "linux"
        assert properties["osArchitecture"] == "x64"
        assert properties["linuxDistroName"] == "ubuntu"

    def test_stage_sequence(self, harness: Harness) -> None:
        harness.machine([harness.package()]).run()
        assert harness.stages == [
            InstallStage.PROBING_PLATFORM,
            InstallStage.ONLINE_PATH,
            InstallStage.MAKING_EXECUTABLE,
            InstallStage.REMOVING_UNNECESSARY_FILES,
            InstallStage.REWRITING_MANIFEST,
            InstallStage.POST_INSTALL,
            InstallStage.COMPLETED,
        ]

    def test_manifest_rewritten(self, harness: Harness) -> None:
        harness.machine([harness.package()]).run()
        assert ManifestDocument(harness.manifest_path).activation_events() == FINAL_ACTIVATION_EVENTS

    @pytest.mark.skipif(os.name != "posix", reason="execute bits are POSIX-only")
    def test_binaries_made_executable(self, harness: Harness) -> None:
        harness.machine([harness.package()]).run()
        assert os.access(harness.paths.install_root / "a" / "bin" / "tool", os.X_OK)

    def test_missing_binary_is_warning_only(self, harness: Harness) -> None:
        harness.config.extra_binaries = ["a/bin/not-there"]
        info = harness.machine([harness.package()]).run()
        assert info.succeeded
        assert len(info.warnings) == 1
        assert "executable" in info.warnings[0]
        # Local paths never reach the stored warnings.
        assert str(harness.tmp_path) not in info.warnings[0]

    def test_unused_files_renamed(self, harness: Harness) -> None:
        harness.config.unused_files = ["a/bin/old-helper"]
        harness.machine([harness.package()]).run()
        bin_dir = harness.paths.install_root / "a" / "bin"
        assert not (bin_dir / "old-helper").exists()
        assert (bin_dir / "old-helper.unused").exists()

    def test_unused_files_kept_on_windows(self, harness: Harness) -> None:
        harness.system_name = "Windows"
        harness.machine_name = "AMD64"
        harness.config.unused_files = ["a/bin/old-helper"]
        package = harness.package(platforms=(OperatingSystem.WINDOWS,))
        harness.machine([package], executable_setter=MagicMock(**{"mark_executable.return_value": []})).run()
        assert (harness.paths.install_root / "a" / "bin" / "old-helper").exists()

    def test_no_packages_for_platform(self, harness: Harness) -> None:
        package = harness.package(platforms=(OperatingSystem.MACOS,))
        info = harness.machine([package]).run()
        assert info.succeeded
        assert harness.opener.calls == []

    def test_duration_recorded(self, harness: Harness) -> None:
        clock = iter([10.0, 10.5]).__next__
        harness.machine([harness.package()], clock=clock).run()
        assert harness.emitted()["durationMs"] == "500"

    def test_sequential_network_setting(self, harness: Harness) -> None:
        harness.config.network.sequential = True
        second = make_package(description="B", payload=ARCHIVE)
        harness.opener.payloads[second.url] = ARCHIVE

        info = harness.machine([harness.package(), second]).run()

        assert info.succeeded
        assert info.installed_packages == ["A", "B"]
        assert (harness.paths.install_root / "b" / "bin" / "tool").exists()

    def test_unknown_distro_warns(self, harness: Harness) -> None:
        (harness.sysroot / "etc" / "os-release").write_text("ID=gentoo\nVERSION_ID=2.14\n")
        info = harness.machine([harness.package()]).run()
        assert info.succeeded
        assert any("gentoo" in w for w in info.warnings)


class TestFailures:
    """Tests for failed runs."""

    def test_checksum_mismatch(self, harness: Harness) -> None:
        package = harness.package(served=b"X" + ARCHIVE[1:])

        info = harness.machine([package]).run()

        assert info.stage == InstallStage.FAILED
        assert info.failed_stage == InstallStage.ONLINE_PATH
        assert not harness.paths.is_installed()
        assert not (harness.paths.install_root / "a").exists()
        properties = harness.emitted()
        assert properties["success"] == "false"
        assert properties["errorKind"] == "ChecksumMismatch"
        assert properties["stage"] == "online_path"
        assert properties["error.packageName"] == "A"
        assert len(harness.errors) == 1
        assert harness.stages[-1] == InstallStage.FAILED

    def test_arm_fails_before_network(self, harness: Harness) -> None:
        harness.machine_name = "aarch64"

        info = harness.machine([harness.package()]).run()

        assert info.failed_stage == InstallStage.PROBING_PLATFORM
        assert harness.opener.calls == []
        assert harness.emitted()["errorKind"] == "UnsupportedPlatform"

    def test_manifest_rewrite_failure(self, harness: Harness) -> None:
        harness.manifest_path.unlink()

        info = harness.machine([harness.package()]).run()

        assert info.failed_stage == InstallStage.REWRITING_MANIFEST
        assert not harness.paths.is_installed()
        assert harness.emitted()["errorKind"] == "ManifestRewriteFailed"

    def test_cancelled_before_start(self, harness: Harness) -> None:
        context = harness.context()
        context.cancellation.cancel()

        info = harness.machine([harness.package()], context=context).run()

        assert info.has_error
        assert harness.emitted()["errorKind"] == "Cancelled"
        assert harness.opener.calls == []

    def test_unexpected_error_recorded(self, harness: Harness) -> None:
        installer = MagicMock()
        installer.install.side_effect = RuntimeError("boom")

        info = harness.machine([harness.package()], installer=installer).run()

        assert info.failed_stage == InstallStage.ONLINE_PATH
        assert harness.emitted()["errorKind"] == "RuntimeError"

    def test_interrupt_recorded_as_failure_and_reraised(self, harness: Harness) -> None:
        def _interrupt(stage: InstallStage) -> None:
            harness.stages.append(stage)
            if stage == InstallStage.ONLINE_PATH:
                raise KeyboardInterrupt

        context = harness.context(on_stage_changed=_interrupt)
        machine = harness.machine([harness.package()], context=context)

        with pytest.raises(KeyboardInterrupt):
            machine.run()

        assert machine.stage == InstallStage.FAILED
        assert machine.information.failed_stage == InstallStage.ONLINE_PATH
        assert isinstance(harness.errors[0], Cancelled)
        assert context.cancellation.cancelled
        assert not harness.paths.is_installed()
        properties = harness.emitted()
        assert properties["success"] == "false"
        assert properties["errorKind"] == "Cancelled"
        assert properties["stage"] == "online_path"

    def test_failing_observer_does_not_break_run(self, harness: Harness) -> None:
        context = harness.context(on_stage_changed=MagicMock(side_effect=RuntimeError("ui")))
        info = harness.machine([harness.package()], context=context).run()
        assert info.succeeded


class _GatedOpener(FakeOpener):
    """Opener that holds every request until released."""

    def __init__(self, payloads) -> None:
        super().__init__(payloads)
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, url: str, timeout: float):
        self.entered.set()
        assert self.release.wait(5)
        return super().__call__(url, timeout)


class TestConcurrentRuns:
    """Tests for runs overlapping on the same install root."""

    def test_overlapping_runs_install_once(self, harness: Harness) -> None:
        package = harness.package()
        opener = _GatedOpener(harness.opener.payloads)
        harness.opener = opener
        first = harness.machine([package])
        second = harness.machine([package], telemetry=TelemetryReporter(MagicMock()))
        results = {}

        def _run(name: str, machine: InstallationStateMachine) -> None:
            results[name] = machine.run()

        first_thread = threading.Thread(target=_run, args=("first", first))
        second_thread = threading.Thread(target=_run, args=("second", second))
        first_thread.start()
        assert opener.entered.wait(5)
        second_thread.start()
        second_thread.join(0.1)
        # Held on the run lock while the first run is downloading.
        assert second_thread.is_alive()

        opener.release.set()
        first_thread.join(5)
        second_thread.join(5)

        assert results["first"].succeeded
        assert not results["first"].already_installed
        assert results["second"].already_installed
        assert len(opener.calls) == 1


class TestIdempotence:
    """Tests for repeated runs."""

    def test_second_run_downloads_nothing(self, harness: Harness) -> None:
        package = harness.package()
        harness.machine([package]).run()
        calls_after_first = len(harness.opener.calls)

        second_sink = MagicMock()
        info = harness.machine([package], telemetry=TelemetryReporter(second_sink)).run()

        assert info.already_installed
        assert info.succeeded
        assert len(harness.opener.calls) == calls_after_first
        second_sink.emit.assert_not_called()


class TestOfflineInstall:
    """Tests for the offline (bundled) installation path."""

    def _bundle(self, harness: Harness) -> None:
        harness.paths.ensure_directories()
        harness.paths.bundle_marker.touch()
        tool = harness.paths.install_root / "a" / "bin" / "tool"
        tool.parent.mkdir(parents=True)
        tool.write_text("#!/bin/sh\n")

    def test_offline_finalizes_without_downloads(self, harness: Harness) -> None:
        self._bundle(harness)

        info = harness.machine([harness.package()]).run()

        assert info.succeeded
        assert info.install_type == InstallType.OFFLINE
        assert harness.opener.calls == []
        assert not harness.paths.is_installed()
        assert InstallStage.OFFLINE_PATH in harness.stages
        assert harness.emitted()["type"] == "offline"

    def test_offline_second_run_skips(self, harness: Harness) -> None:
        self._bundle(harness)
        harness.machine([harness.package()]).run()

        info = harness.machine([harness.package()], telemetry=TelemetryReporter(MagicMock())).run()

        assert info.already_installed

    def test_missing_bundled_package(self, harness: Harness) -> None:
        harness.paths.ensure_directories()
        harness.paths.bundle_marker.touch()

        info = harness.machine([harness.package()]).run()

        assert info.failed_stage == InstallStage.OFFLINE_PATH
        assert harness.emitted()["errorKind"] == "ExtractionFailed"

    def test_explicit_online_mode_ignores_bundle(self, harness: Harness) -> None:
        self._bundle(harness)
        harness.config.mode = InstallMode.ONLINE

        info = harness.machine([harness.package()]).run()

        assert info.install_type == InstallType.ONLINE
        assert len(harness.opener.calls) == 1


class TestFinalize:
    """Tests for post-install activation."""

    def test_experiment_defaults_applied(self, harness: Harness) -> None:
        harness.config.experiments = ExperimentSettings(use_default_engine=False)
        context = harness.context()

        harness.machine([harness.package()], context=context).run()

        properties = ManifestDocument(harness.manifest_path).load()["contributes"]["configuration"]["properties"]
        assert properties[ENGINE_SETTING]["default"] == "Tag Parser"
        assert context.language_service_disabled is False

    def test_disabled_engine_skips_activation(self, harness: Harness) -> None:
        harness.config.engine_setting = "Disabled"
        harness.config.experiments = ExperimentSettings(use_default_engine=False)
        context = harness.context()

        harness.machine([harness.package()], context=context).run()

        properties = ManifestDocument(harness.manifest_path).load()["contributes"]["configuration"]["properties"]
        assert properties[ENGINE_SETTING]["default"] == "Default"
        assert context.language_service_disabled is True
        assert context.engine_setting_changed("Default") is True
        assert context.engine_setting_changed("Disabled") is False


class TestLoadCatalog:
    """Tests for catalog resolution from config."""

    def test_from_manifest_runtime_dependencies(self, harness: Harness) -> None:
        data = _manifest_data()
        data["runtimeDependencies"] = [
            {
                "description": "Debugger",
                "url": "https://example.invalid/dbg.zip",
                "integrity": sha256_hex(ARCHIVE),
                "installPath": "debugAdapters",
                "platforms": ["linux"],
            }
        ]
        harness.manifest_path.write_text(json.dumps(data))

        catalog = load_catalog(harness.config)

        assert [p.description for p in catalog.packages] == ["Debugger"]

    def test_empty_without_sources(self, harness: Harness) -> None:
        harness.config.manifest = None
        assert len(load_catalog(harness.config)) == 0

    def test_from_context_builds_components(self, harness: Harness) -> None:
        machine = InstallationStateMachine.from_context(harness.context())
        assert machine.stage == InstallStage.NOT_STARTED
        assert machine.telemetry.flushed is False

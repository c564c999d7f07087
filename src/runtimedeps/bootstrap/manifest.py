"""All-or-nothing rewrites of the tool's package manifest.

Every change goes load -> transform in memory -> validate -> write to a
temporary file -> atomic rename, so the manifest on disk is either the old
document or the complete new one.
"""

from __future__ import annotations

import copy
import json
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List

from runtimedeps.core.errors import ManifestRewriteFailed
from runtimedeps.core.logging import get_logger

LOGGER = get_logger(__name__)

ACTIVATION_EVENTS_KEY = "activationEvents"

# Activation used before install: activate on everything.
WILDCARD_ACTIVATION_EVENTS = ["*"]

# Activation used once dependencies are installed.
FINAL_ACTIVATION_EVENTS = [
    "onLanguage:c",
    "onLanguage:cpp",
    "onCommand:runtime.pickNativeProcess",
    "onCommand:runtime.pickRemoteNativeProcess",
    "onCommand:runtime.buildAndDebugActiveFile",
    "onCommand:runtime.configurationEditJSON",
    "onCommand:runtime.configurationEditUI",
    "onCommand:runtime.configurationSelect",
    "onCommand:runtime.configurationProviderSelect",
    "onCommand:runtime.switchHeaderSource",
    "onCommand:runtime.navigate",
    "onCommand:runtime.enableErrorSquiggles",
    "onCommand:runtime.disableErrorSquiggles",
    "onCommand:runtime.toggleIncludeFallback",
    "onCommand:runtime.toggleDimInactiveRegions",
    "onCommand:runtime.resetDatabase",
    "onCommand:runtime.logDiagnostics",
    "onCommand:runtime.rescanWorkspace",
    "onDebug",
    "workspaceContains:/.vscode/c_cpp_properties.json",
]

ENGINE_SETTING = "runtime.intelliSenseEngine"
COLORIZATION_SETTING = "runtime.enhancedColorization"
UPDATE_CHANNEL_SETTING = "runtime.updateChannel"

# Pre-release builds install under directories with these suffixes.
PRERELEASE_MARKERS = ("-insiders", "-exploration")


@dataclass(frozen=True)
class ExperimentSettings:
    """A/B flags that pick default values for some settings."""

    use_default_engine: bool = True
    use_enhanced_colorization: bool = True


def is_prerelease_install(path: Path) -> bool:
    """Check whether the manifest lives inside a pre-release build."""
    return any(part.endswith(PRERELEASE_MARKERS) for part in path.parts)


class ManifestDocument:
    """A JSON manifest that is only ever replaced whole."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Dict[str, Any]:
        """Read and parse the manifest.

        Raises:
            ManifestRewriteFailed: If the file is missing or not a JSON object.
        """
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestRewriteFailed(f"Cannot read manifest {self.path.name}: {e}", inner=e) from e
        if not isinstance(data, dict):
            raise ManifestRewriteFailed(
                f"Manifest must be a JSON object, got {type(data).__name__}"
            )
        return data

    def activation_events(self) -> List[str]:
        return list(self.load().get(ACTIVATION_EVENTS_KEY) or [])

    def is_finalized(self) -> bool:
        """Check whether activation events were already rewritten.

        A missing manifest is never finalized.
        """
        if not self.path.exists():
            return False
        try:
            events = self.activation_events()
        except ManifestRewriteFailed:
            return False
        return bool(events) and events != WILDCARD_ACTIVATION_EVENTS

    def update(self, transform: Callable[[Dict[str, Any]], bool]) -> bool:
        """Apply a transform and write the result back atomically.

        Args:
            transform: Mutates the document in place and returns True if it
                changed anything.

        Returns:
            True if the manifest was rewritten.

        Raises:
            ManifestRewriteFailed: On any error; the file on disk is untouched.
        """
        original = self.load()
        document = copy.deepcopy(original)
        try:
            changed = transform(document)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ManifestRewriteFailed(f"Cannot transform manifest: {e}", inner=e) from e
        if not changed:
            return False
        validate_manifest(document)
        self._write_atomic(document)
        return True

    def rewrite_activation_events(self) -> bool:
        """Replace the wildcard activation with the explicit trigger list."""

        def _transform(document: Dict[str, Any]) -> bool:
            if document.get(ACTIVATION_EVENTS_KEY) == FINAL_ACTIVATION_EVENTS:
                return False
            document[ACTIVATION_EVENTS_KEY] = list(FINAL_ACTIVATION_EVENTS)
            return True

        changed = self.update(_transform)
        if changed:
            LOGGER.info("Rewrote manifest activation events")
        return changed

    def apply_experiment_defaults(self, settings: ExperimentSettings) -> bool:
        """Update setting defaults from A/B flags.

        On pre-release builds the engine default is left alone and the
        update channel default switches to "Insiders" instead.
        """
        prerelease = is_prerelease_install(self.path)

        def _transform(document: Dict[str, Any]) -> bool:
            properties = document["contributes"]["configuration"]["properties"]
            changed = False
            if not prerelease:
                engine = "Default" if settings.use_default_engine else "Tag Parser"
                changed |= _set_default(properties, ENGINE_SETTING, engine)
            elif properties.get(UPDATE_CHANNEL_SETTING, {}).get("default") == "Default":
                changed |= _set_default(properties, UPDATE_CHANNEL_SETTING, "Insiders")
            colorization = "Enabled" if settings.use_enhanced_colorization else "Disabled"
            changed |= _set_default(properties, COLORIZATION_SETTING, colorization)
            return changed

        changed = self.update(_transform)
        if changed:
            LOGGER.info("Updated manifest setting defaults")
        return changed

    def _write_atomic(self, document: Dict[str, Any]) -> None:
        text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            # Temporary files are created 0600; keep the manifest's own mode.
            if self.path.exists():
                os.chmod(tmp_name, stat.S_IMODE(self.path.stat().st_mode))
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise ManifestRewriteFailed(f"Cannot write manifest {self.path.name}: {e}", inner=e) from e


def _set_default(properties: Dict[str, Any], key: str, value: str) -> bool:
    setting = properties[key]
    if setting.get("default") == value:
        return False
    setting["default"] = value
    return True


def validate_manifest(document: Dict[str, Any]) -> None:
    """Check invariants a rewritten manifest must hold.

    Raises:
        ManifestRewriteFailed: If an invariant is violated.
    """
    events = document.get(ACTIVATION_EVENTS_KEY)
    if not isinstance(events, list) or not events:
        raise ManifestRewriteFailed("activationEvents must be a non-empty list")
    if not all(isinstance(event, str) and event for event in events):
        raise ManifestRewriteFailed("activationEvents must contain only non-empty strings")
    contributes = document.get("contributes")
    if contributes is not None and not isinstance(contributes, dict):
        raise ManifestRewriteFailed("contributes must be an object")
    try:
        json.dumps(document)
    except (TypeError, ValueError) as e:
        raise ManifestRewriteFailed(f"Manifest is not serializable: {e}", inner=e) from e

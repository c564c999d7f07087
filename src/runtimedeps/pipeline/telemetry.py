"""Structured telemetry for installation runs.

Properties accumulate over a run and are emitted once as an
``acquisition`` event when the run ends.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

from runtimedeps.core.errors import InstallError
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import PlatformInfo
from runtimedeps.core.sanitize import remove_potential_pii

LOGGER = get_logger(__name__)

ACQUISITION_EVENT = "acquisition"


class TelemetrySink(Protocol):
    """Destination for telemetry events."""

    def emit(self, event_name: str, properties: Dict[str, str]) -> None:
        ...


class NullSink:
    """Discards every event."""

    def emit(self, event_name: str, properties: Dict[str, str]) -> None:
        return None


class JsonLinesSink:
    """Appends events as JSON lines to a local file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def emit(self, event_name: str, properties: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "event": event_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "properties": properties,
        }
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True) + "\n")


class TelemetryReporter:
    """Accumulates run properties and flushes them exactly once."""

    def __init__(self, sink: Optional[TelemetrySink] = None) -> None:
        self._sink: TelemetrySink = sink or NullSink()
        self._properties: Dict[str, str] = {}
        self._flushed = False
        self._lock = threading.Lock()

    @property
    def properties(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._properties)

    @property
    def flushed(self) -> bool:
        return self._flushed

    def record(self, key: str, value: object) -> None:
        """Set a property; booleans are stored as "true"/"false"."""
        text = str(value).lower() if isinstance(value, bool) else str(value)
        with self._lock:
            self._properties[key] = text

    def record_platform(self, info: PlatformInfo) -> None:
        self.record("platform", info.operating_system.value)
        self.record("osArchitecture", info.architecture.value)
        if info.distribution is not None:
            self.record("linuxDistroName", info.distribution.name)
            self.record("linuxDistroVersion", info.distribution.version)

    def record_error(self, error: BaseException) -> None:
        """Record a terminal error with user-identifying data removed."""
        if isinstance(error, InstallError):
            self.record("errorKind", error.kind)
            self.record("error.message", remove_potential_pii(error.message))
            if error.inner is not None:
                self.record("error.innerError", remove_potential_pii(str(error.inner)))
            if error.package is not None:
                self.record("error.packageName", error.package.description)
                self.record("error.packageUrl", remove_potential_pii(error.package.url))
            if error.error_code:
                self.record("error.errorCode", remove_potential_pii(error.error_code))
        else:
            self.record("errorKind", type(error).__name__)
            self.record("error.toString", remove_potential_pii(str(error)))

    def flush(self) -> None:
        """Emit the accumulated properties. Later calls are no-ops.

        Sink failures are logged and never propagate.
        """
        with self._lock:
            if self._flushed:
                return
            self._flushed = True
            properties = dict(self._properties)
        try:
            self._sink.emit(ACQUISITION_EVENT, properties)
        except Exception as e:
            LOGGER.warning(f"Failed to send telemetry: {e}")

"""Installation pipeline.

Provides the state machine that sequences a run, bounded parallel package
acquisition, and run telemetry.
"""

from runtimedeps.pipeline.context import RunCallbacks, RunContext
from runtimedeps.pipeline.parallel import PackageOutcome, ParallelAcquirer
from runtimedeps.pipeline.state_machine import InstallationStateMachine, load_catalog
from runtimedeps.pipeline.telemetry import JsonLinesSink, NullSink, TelemetryReporter

__all__ = [
    "RunCallbacks",
    "RunContext",
    "PackageOutcome",
    "ParallelAcquirer",
    "InstallationStateMachine",
    "load_catalog",
    "JsonLinesSink",
    "NullSink",
    "TelemetryReporter",
]

"""runtimedeps - acquisition and provisioning of platform runtime binaries."""

__version__ = "0.3.0"

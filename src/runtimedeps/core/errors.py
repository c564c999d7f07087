"""Error taxonomy for installation runs.

Every error raised while acquiring or placing a package derives from
InstallError so the state machine can attribute it to a package and stage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from runtimedeps.core.models import InstallStage, Package


class InstallError(Exception):
    """Base class for installation failures.

    Attributes:
        package: Package being processed when the error occurred, if any.
        stage: Stage the error was raised in. Filled in by the state machine
            when the raising component does not know it.
        error_code: Short machine-readable code (HTTP status, errno name).
        inner: Underlying exception, if any.
    """

    kind = "InstallError"

    def __init__(
        self,
        message: str,
        *,
        package: Optional["Package"] = None,
        stage: Optional["InstallStage"] = None,
        error_code: Optional[str] = None,
        inner: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.package = package
        self.stage = stage
        self.error_code = error_code
        self.inner = inner

    def __str__(self) -> str:
        if self.package is not None:
            return f"{self.message} (package: {self.package.description}, url: {self.package.url})"
        return self.message


class UnsupportedPlatform(InstallError):
    """Host OS, architecture or distribution cannot run the binaries."""

    kind = "UnsupportedPlatform"


class NetworkFailure(InstallError):
    """Transfer failed. Retryable unless the request itself was invalid."""

    kind = "NetworkFailure"

    def __init__(self, message: str, *, retryable: bool = True, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable


class ChecksumMismatch(InstallError):
    """Downloaded bytes do not hash to the declared checksum."""

    kind = "ChecksumMismatch"


class ExtractionFailed(InstallError):
    """Archive could not be unpacked into its destination."""

    kind = "ExtractionFailed"


class PermissionDenied(InstallError):
    """Execute permission could not be granted. Never fatal to a run."""

    kind = "PermissionDenied"


class ManifestRewriteFailed(InstallError):
    """Manifest could not be transformed or written back."""

    kind = "ManifestRewriteFailed"


class Cancelled(InstallError):
    """The caller cancelled the run."""

    kind = "Cancelled"


class CatalogError(Exception):
    """Package catalog could not be loaded."""

    pass

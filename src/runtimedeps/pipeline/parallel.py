"""Bounded concurrent acquisition of packages using ThreadPoolExecutor."""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from runtimedeps.bootstrap.download import Downloader
from runtimedeps.bootstrap.installer import Installer
from runtimedeps.core.cancellation import CancellationToken
from runtimedeps.core.errors import Cancelled, InstallError
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import DownloadResult, Package

LOGGER = get_logger(__name__)

# Default number of simultaneous transfers
DEFAULT_MAX_WORKERS = 4

# (phase, done, total)
PhaseProgress = Callable[[str, int, int], None]


@dataclass
class PackageOutcome:
    """Result of acquiring a single package."""

    package: Package
    success: bool = True
    error: Optional[BaseException] = None


class ParallelAcquirer:
    """Downloads and installs packages with bounded fan-out.

    Each worker downloads a package and then installs it, so a package's
    atomic move completes before anything else touches its files. On the
    first failure the remaining transfers are cancelled.
    """

    def __init__(
        self,
        downloader: Downloader,
        installer: Installer,
        max_workers: int = DEFAULT_MAX_WORKERS,
        sequential: bool = False,
    ) -> None:
        """Initialize the acquirer.

        Args:
            downloader: Fetches archives.
            installer: Places verified archives.
            max_workers: Maximum number of concurrent transfers.
            sequential: If True, process packages one at a time (for debugging).
        """
        self._downloader = downloader
        self._installer = installer
        self._max_workers = max(1, max_workers)
        self._sequential = sequential
        self._progress_lock = threading.Lock()

    def acquire(
        self,
        packages: Sequence[Package],
        cancellation: CancellationToken,
        on_progress: Optional[PhaseProgress] = None,
    ) -> List[PackageOutcome]:
        """Download and install every package.

        Returns:
            Outcomes in catalog order. Packages never started because of an
            earlier failure are reported as cancelled.

        Raises:
            InstallError: The first failure, after in-flight work settled.
        """
        if not packages:
            return []

        token = cancellation.child()
        if self._sequential:
            outcomes = self._acquire_sequential(packages, token, on_progress)
        else:
            outcomes = self._acquire_parallel(packages, token, on_progress)

        first_error = _first_error(outcomes)
        if first_error is not None:
            raise first_error
        return outcomes

    def _acquire_parallel(
        self,
        packages: Sequence[Package],
        token: CancellationToken,
        on_progress: Optional[PhaseProgress],
    ) -> List[PackageOutcome]:
        outcomes: Dict[str, PackageOutcome] = {}

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="runtimedeps-acquire"
        ) as executor:
            future_to_package: Dict[Future, Package] = {
                executor.submit(self._acquire_one, package, token, on_progress): package
                for package in packages
            }
            try:
                done, pending = wait(future_to_package, return_when=FIRST_EXCEPTION)
            except BaseException:
                # Interrupted while waiting: stop workers before the executor joins them.
                token.cancel()
                for future in future_to_package:
                    future.cancel()
                raise
            if pending and any(f.exception() is not None for f in done):
                token.cancel()
                for future in pending:
                    future.cancel()

            for future, package in future_to_package.items():
                if future.cancelled():
                    outcomes[package.description] = PackageOutcome(
                        package=package,
                        success=False,
                        error=Cancelled("Not started after an earlier failure", package=package),
                    )
                    continue
                error = future.exception()
                outcomes[package.description] = PackageOutcome(
                    package=package, success=error is None, error=error
                )

        return [outcomes[p.description] for p in packages]

    def _acquire_sequential(
        self,
        packages: Sequence[Package],
        token: CancellationToken,
        on_progress: Optional[PhaseProgress],
    ) -> List[PackageOutcome]:
        outcomes: List[PackageOutcome] = []
        for package in packages:
            try:
                self._acquire_one(package, token, on_progress)
                outcomes.append(PackageOutcome(package=package))
            except InstallError as e:
                outcomes.append(PackageOutcome(package=package, success=False, error=e))
                break
        return outcomes

    def _acquire_one(
        self,
        package: Package,
        token: CancellationToken,
        on_progress: Optional[PhaseProgress],
    ) -> None:
        token.raise_if_cancelled()
        LOGGER.info(f"Downloading package '{package.description}'")

        def _report(done: int, total: int) -> None:
            self._report(on_progress, "download", done, total)

        result: DownloadResult = self._downloader.fetch(package, _report, token)
        self._report(on_progress, "install", 0, 1)
        self._installer.install(result, token)
        self._report(on_progress, "install", 1, 1)

    def _report(self, on_progress: Optional[PhaseProgress], phase: str, done: int, total: int) -> None:
        if on_progress is None:
            return
        with self._progress_lock:
            on_progress(phase, done, total)


def _first_error(outcomes: Sequence[PackageOutcome]) -> Optional[BaseException]:
    """Pick the failure to report: a real error before a cancellation."""
    errors = [o.error for o in outcomes if o.error is not None]
    for error in errors:
        if not isinstance(error, Cancelled):
            return error
    return errors[0] if errors else None

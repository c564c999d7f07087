"""Package downloads with retry, checksum verification and progress.

Uses certifi's CA bundle so downloads verify correctly on hosts where
Python cannot reach the system certificate store.
"""

from __future__ import annotations

import errno
import hashlib
import http.client
import re
import socket
import ssl
import time
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

import certifi

from runtimedeps import __version__
from runtimedeps.core.cancellation import CancellationToken
from runtimedeps.core.errors import Cancelled, ChecksumMismatch, InstallError, NetworkFailure
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import DownloadResult, Package

LOGGER = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_PROGRESS_INTERVAL = 0.1
CHUNK_SIZE = 64 * 1024

# 4xx responses that are worth another attempt
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})

ProgressCallback = Callable[[int, int], None]
Opener = Callable[[str, float], Any]


def get_ssl_context() -> ssl.SSLContext:
    """Get an SSL context that uses certifi's CA bundle."""
    return ssl.create_default_context(cafile=certifi.where())


def open_url(url: str, timeout: float) -> Any:
    """Open a URL with certificate verification.

    Returns:
        A file-like HTTP response.
    """
    request = Request(url, headers={"User-Agent": f"runtimedeps/{__version__}"})
    return urlopen(request, timeout=timeout, context=get_ssl_context())  # nosec B310


def validate_url(url: str, allow_insecure: bool = False) -> None:
    """Reject URLs that cannot or must not be fetched.

    Raises:
        ValueError: If the URL is malformed or not HTTPS.
    """
    parsed = urlparse(url)
    allowed = {"https", "http"} if allow_insecure else {"https"}
    if parsed.scheme not in allowed:
        raise ValueError(f"Only HTTPS URLs are supported: {url}")
    if not parsed.netloc:
        raise ValueError(f"Malformed URL: {url}")


def staging_name(package: Package) -> str:
    """File name for a package's archive in the staging directory."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", package.description).strip("._") or "package"
    return f"{slug}.download"


class ProgressThrottle:
    """Rate-limits progress callbacks to one per interval.

    The final update (done == total) always goes through.
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        interval: float = DEFAULT_PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def update(self, done: int, total: int, force: bool = False) -> None:
        if self._callback is None:
            return
        now = self._clock()
        finished = total > 0 and done >= total
        if not (force or finished) and self._last is not None and now - self._last < self._interval:
            return
        self._last = now
        try:
            self._callback(done, total)
        except Exception as e:
            LOGGER.warning(f"Progress callback failed: {e}")


class Downloader:
    """Fetches package archives into a staging directory.

    Transient network failures are retried with exponential backoff;
    the archive is only returned once its SHA-256 matches the package.
    """

    def __init__(
        self,
        staging_dir: Path,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
        allow_insecure: bool = False,
        opener: Opener = open_url,
    ) -> None:
        self._staging_dir = staging_dir
        self._max_attempts = max(1, max_attempts)
        self._backoff = max(0.0, backoff)
        self._timeout = timeout
        self._progress_interval = progress_interval
        self._allow_insecure = allow_insecure
        self._opener = opener

    def backoff_delay(self, attempt: int) -> float:
        """Delay before a 1-based attempt: 0, backoff, 2*backoff, ..."""
        if attempt <= 1:
            return 0.0
        return self._backoff * (2 ** (attempt - 2))

    def fetch(
        self,
        package: Package,
        on_progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> DownloadResult:
        """Download and verify a package archive.

        Args:
            package: Package to download.
            on_progress: Called with (bytes_done, bytes_total); total is 0
                when the server does not report a length.
            cancellation: Token polled between chunks and during backoff.

        Returns:
            DownloadResult pointing at the verified archive.

        Raises:
            NetworkFailure: After the final failed attempt, or immediately
                for non-retryable failures.
            ChecksumMismatch: If the archive does not match its checksum.
            Cancelled: If cancellation was requested.
        """
        token = cancellation or CancellationToken()
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        destination = self._staging_dir / staging_name(package)

        try:
            validate_url(package.url, self._allow_insecure)
        except ValueError as e:
            raise NetworkFailure(str(e), package=package, retryable=False, inner=e) from e

        last_error: Optional[NetworkFailure] = None
        for attempt in range(1, self._max_attempts + 1):
            delay = self.backoff_delay(attempt)
            if delay:
                LOGGER.info(f"Retrying {package.description} in {delay:.0f}s (attempt {attempt})")
                if token.wait(delay):
                    raise Cancelled("Installation was cancelled.", package=package)
            token.raise_if_cancelled()

            try:
                digest = self._download_once(package, destination, on_progress, token)
            except NetworkFailure as e:
                if not e.retryable:
                    raise
                last_error = e
                LOGGER.warning(f"Attempt {attempt}/{self._max_attempts} failed: {e}")
                continue

            if not self._checksum_matches(package, digest):
                destination.unlink(missing_ok=True)
                raise ChecksumMismatch(
                    f"Checksum mismatch: expected {package.checksum or '<none>'}, got {digest}",
                    package=package,
                )
            LOGGER.info(f"Downloaded {package.description}")
            return DownloadResult(package=package, archive_path=destination, checksum_ok=True)

        assert last_error is not None
        raise last_error

    @staticmethod
    def _checksum_matches(package: Package, digest: str) -> bool:
        # A package without a declared checksum is never trusted.
        return bool(package.checksum) and package.checksum.lower() == digest.lower()

    def _download_once(
        self,
        package: Package,
        destination: Path,
        on_progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> str:
        """Run one transfer attempt and return the hex SHA-256 of the bytes."""
        throttle = ProgressThrottle(on_progress, self._progress_interval)
        hasher = hashlib.sha256()
        try:
            with self._opener(package.url, self._timeout) as response:
                total = _content_length(response)
                done = 0
                throttle.update(0, total, force=True)
                with destination.open("wb") as handle:
                    while True:
                        token.raise_if_cancelled()
                        chunk = response.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        handle.write(chunk)
                        hasher.update(chunk)
                        done += len(chunk)
                        throttle.update(done, total)
                if total and done < total:
                    raise NetworkFailure(
                        f"Connection closed after {done} of {total} bytes",
                        package=package,
                        error_code="incomplete",
                    )
                if not total:
                    throttle.update(done, done, force=True)
        except InstallError:
            destination.unlink(missing_ok=True)
            raise
        except HTTPError as e:
            destination.unlink(missing_ok=True)
            retryable = e.code >= 500 or e.code in _RETRYABLE_CLIENT_STATUSES
            raise NetworkFailure(
                f"HTTP {e.code} - {e.reason}",
                package=package,
                retryable=retryable,
                error_code=str(e.code),
                inner=e,
            ) from e
        except URLError as e:
            destination.unlink(missing_ok=True)
            raise NetworkFailure(
                f"{e.reason}. Check your network connection.",
                package=package,
                error_code=_error_code(e.reason),
                inner=e,
            ) from e
        except http.client.HTTPException as e:
            # Truncated bodies and malformed status lines are not wrapped by urlopen.
            destination.unlink(missing_ok=True)
            raise NetworkFailure(
                f"Invalid HTTP response: {e!r}",
                package=package,
                error_code=type(e).__name__,
                inner=e,
            ) from e
        except ValueError as e:
            destination.unlink(missing_ok=True)
            raise NetworkFailure(str(e), package=package, retryable=False, inner=e) from e
        except (socket.timeout, TimeoutError, ConnectionError) as e:
            destination.unlink(missing_ok=True)
            raise NetworkFailure(
                f"Connection failed: {e}",
                package=package,
                error_code=type(e).__name__,
                inner=e,
            ) from e
        except OSError as e:
            # Local write failure or a socket error raised mid-read.
            destination.unlink(missing_ok=True)
            raise NetworkFailure(
                f"Download failed: {e}",
                package=package,
                error_code=_error_code(e),
                inner=e,
            ) from e
        return hasher.hexdigest()


def _content_length(response: Any) -> int:
    headers = getattr(response, "headers", None)
    value = headers.get("Content-Length") if headers is not None else None
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


def _error_code(reason: Any) -> str:
    errno_value = getattr(reason, "errno", None)
    if errno_value is not None:
        return errno.errorcode.get(errno_value, str(errno_value))
    return type(reason).__name__

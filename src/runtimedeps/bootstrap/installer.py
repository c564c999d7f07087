"""Atomic placement of verified package archives.

An archive is unpacked into a temporary sibling of its destination and only
renamed into place once extraction fully succeeded, so the destination is
always either absent, the previous good tree, or the complete new tree.
"""

from __future__ import annotations

import json
import os
import shutil
import tarfile
import tempfile
import threading
import uuid
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from runtimedeps.bootstrap.paths import RuntimedepsPaths
from runtimedeps.core.cancellation import CancellationToken
from runtimedeps.core.errors import ExtractionFailed
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import DownloadResult, Package

LOGGER = get_logger(__name__)

TMP_INFIX = ".tmp-"
OLD_INFIX = ".old-"


class InstallLedger:
    """Per-package completion records in ``state/installed.json``."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def read(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            LOGGER.warning(f"Failed to parse {self._path.name}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def record(self, package: Package) -> None:
        with self._lock:
            entries = self.read()
            entries[package.description] = {
                "checksum": package.checksum,
                "installPath": package.install_path,
                "installedAt": datetime.now(timezone.utc).isoformat(),
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            tmp_path.write_text(json.dumps(entries, indent=2) + "\n", encoding="utf-8")
            os.replace(tmp_path, self._path)

    def is_installed(self, package: Package) -> bool:
        entry = self.read().get(package.description)
        return entry is not None and entry.get("checksum") == package.checksum


class Installer:
    """Extracts verified archives into their install paths."""

    def __init__(self, paths: RuntimedepsPaths, ledger: Optional[InstallLedger] = None) -> None:
        self._paths = paths
        self._ledger = ledger or InstallLedger(paths.installed_ledger)

    @property
    def ledger(self) -> InstallLedger:
        return self._ledger

    def destination_for(self, package: Package) -> Path:
        """Resolve a package's destination directory.

        Raises:
            ExtractionFailed: If the install path is empty or escapes the root.
        """
        try:
            destination = self._paths.resolve(package.install_path)
        except ValueError as e:
            raise ExtractionFailed(str(e), package=package) from e
        if destination == self._paths.install_root.resolve():
            raise ExtractionFailed("Install path must not be the install root", package=package)
        return destination

    def install(
        self, result: DownloadResult, cancellation: Optional[CancellationToken] = None
    ) -> Path:
        """Place a downloaded archive at its package's destination.

        Args:
            result: Verified download to install.
            cancellation: Checked before extraction starts; deferred while
                the destination is being swapped.

        Returns:
            The destination directory.

        Raises:
            ExtractionFailed: If the archive is unverified, corrupt or
                cannot be written.
        """
        package = result.package
        token = cancellation or CancellationToken()
        if not result.checksum_ok:
            result.archive_path.unlink(missing_ok=True)
            raise ExtractionFailed("Refusing to install an unverified archive", package=package)

        destination = self.destination_for(package)
        staging: Optional[Path] = None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            recover_interrupted(destination)
            token.raise_if_cancelled()

            staging = Path(
                tempfile.mkdtemp(prefix=f"{destination.name}{TMP_INFIX}", dir=destination.parent)
            )
            LOGGER.info(f"Installing {package.description} to {destination}")
            extract_archive(result.archive_path, staging)

            staging.chmod(0o755)
            with token.deferred():
                replace_directory(staging, destination)
                staging = None
        except ExtractionFailed as e:
            if e.package is None:
                e.package = package
            raise
        except (OSError, tarfile.TarError, zipfile.BadZipFile, ValueError) as e:
            raise ExtractionFailed(f"Failed to extract archive: {e}", package=package, inner=e) from e
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            result.archive_path.unlink(missing_ok=True)

        try:
            self._ledger.record(package)
        except OSError as e:
            LOGGER.warning(f"Could not record {package.description} in install ledger: {e}")
        LOGGER.info(f"Installed {package.description}")
        return destination


def extract_archive(archive_path: Path, target: Path) -> None:
    """Extract a zip or tar archive, detected by content.

    Raises:
        ExtractionFailed: If the format is unknown or a member is unsafe.
    """
    if zipfile.is_zipfile(archive_path):
        _extract_zip(archive_path, target)
    elif tarfile.is_tarfile(archive_path):
        _extract_tarball(archive_path, target)
    else:
        raise ExtractionFailed(f"Unrecognized archive format: {archive_path.name}")


def _check_member(target: Path, name: str) -> None:
    member_path = (target / name).resolve()
    if not member_path.is_relative_to(target.resolve()):
        raise ExtractionFailed(f"Unsafe path in archive: {name}")


def _extract_zip(archive_path: Path, target: Path) -> None:
    with zipfile.ZipFile(archive_path, "r") as zf:
        # Validate every member before writing anything.
        for name in zf.namelist():
            _check_member(target, name)
        zf.extractall(target)


def _extract_tarball(archive_path: Path, target: Path) -> None:
    with tarfile.open(archive_path, "r:*") as tar:
        members = tar.getmembers()
        for member in members:
            _check_member(target, member.name)
            if member.issym():
                _check_member(target, str(Path(member.name).parent / member.linkname))
            elif member.islnk():
                _check_member(target, member.linkname)
        for member in members:
            if hasattr(tarfile, "data_filter"):
                tar.extract(member, path=target, filter="data")
            else:
                tar.extract(member, path=target)  # nosec B202 - members validated above


def replace_directory(source: Path, destination: Path) -> None:
    """Swap ``source`` into ``destination`` without merging.

    An existing destination is moved aside first and restored if the
    final rename fails.
    """
    backup: Optional[Path] = None
    if destination.exists() or destination.is_symlink():
        backup = destination.with_name(f"{destination.name}{OLD_INFIX}{uuid.uuid4().hex[:8]}")
        os.replace(destination, backup)
    try:
        os.replace(source, destination)
    except OSError:
        if backup is not None:
            os.replace(backup, destination)
        raise
    if backup is not None:
        _remove_path(backup)


def recover_interrupted(destination: Path) -> None:
    """Clean up after a run killed mid-install.

    Leftover extraction directories are removed. If the destination is
    missing but a moved-aside previous tree survives, it is restored.
    """
    parent = destination.parent
    if not parent.exists():
        return
    backups = []
    for sibling in parent.iterdir():
        if sibling.name.startswith(f"{destination.name}{TMP_INFIX}"):
            LOGGER.info(f"Removing interrupted extraction {sibling.name}")
            _remove_path(sibling)
        elif sibling.name.startswith(f"{destination.name}{OLD_INFIX}"):
            backups.append(sibling)
    for backup in backups:
        if not destination.exists():
            LOGGER.info(f"Restoring previous {destination.name} from {backup.name}")
            os.replace(backup, destination)
        else:
            _remove_path(backup)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)

"""Granting execute permission to installed binaries."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Iterable, List

from runtimedeps.core.errors import PermissionDenied
from runtimedeps.core.logging import get_logger

LOGGER = get_logger(__name__)

EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class ExecutableBitSetter:
    """Marks files executable on POSIX hosts; a no-op elsewhere.

    Failures never raise. Each one is returned as a PermissionDenied so the
    caller can record it as a warning and carry on.
    """

    def __init__(self, posix: bool = os.name == "posix") -> None:
        self._posix = posix

    @property
    def applies(self) -> bool:
        return self._posix

    def mark_executable(self, paths: Iterable[Path]) -> List[PermissionDenied]:
        """Add execute permission to each path.

        Args:
            paths: Files to mark, in order.

        Returns:
            One PermissionDenied per file that could not be marked.
        """
        if not self._posix:
            return []

        failures: List[PermissionDenied] = []
        for path in paths:
            try:
                mode = path.stat().st_mode
                if mode & EXECUTE_BITS != EXECUTE_BITS:
                    path.chmod(mode | EXECUTE_BITS)
                LOGGER.debug(f"Marked {path.name} executable")
            except OSError as e:
                LOGGER.warning(f"Could not make {path} executable: {e.strerror or e}")
                failures.append(
                    PermissionDenied(
                        f"Could not make {path} executable: {e.strerror or e}",
                        error_code=type(e).__name__,
                        inner=e,
                    )
                )
        return failures

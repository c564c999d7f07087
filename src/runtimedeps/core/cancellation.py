"""Cooperative cancellation shared between the caller and worker threads."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from runtimedeps.core.errors import Cancelled


class CancellationToken:
    """Thread-safe cancellation flag.

    Workers poll ``raise_if_cancelled()`` at safe points. Sections that must
    not be interrupted (an atomic rename) run inside ``deferred()``; a cancel
    requested meanwhile takes effect once the section exits.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        self._deferred = 0
        self._lock = threading.Lock()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if cancellation was requested and not deferred."""
        with self._lock:
            if self._deferred:
                return
        if self.cancelled:
            raise Cancelled("Installation was cancelled.")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        if self._parent is None:
            return self._event.wait(seconds)
        # Poll so a cancel on the parent is noticed too.
        remaining = seconds
        while remaining > 0:
            step = min(remaining, 0.05)
            if self._event.wait(step) or self._parent.cancelled:
                return True
            remaining -= step
        return self.cancelled

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold off cancellation until the block completes."""
        with self._lock:
            self._deferred += 1
        try:
            yield
        finally:
            with self._lock:
                self._deferred -= 1

    def child(self) -> "CancellationToken":
        """Create a token cancelled whenever this one is."""
        return CancellationToken(parent=self)

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager


class BusyError(RuntimeError):
    """Raised when a single-flight section is already held."""


class SingleFlightLock:
    """Non-blocking, non-queueing mutual exclusion for one event loop.

    A second caller is rejected immediately instead of waiting. Acquisition
    happens before any await, so two coroutines started back to back cannot
    both get in.
    """

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @contextmanager
    def acquire(self) -> Iterator[None]:
        if self._held:
            raise BusyError("Orchestrator is busy")
        self._held = True
        try:
            yield
        finally:
            self._held = False

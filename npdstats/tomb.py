"""Lifecycle control for a background worker thread."""

from __future__ import annotations

import threading


class Tomb:
    """Lets an owner ask a worker to stop and wait until it has."""

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._done = threading.Event()

    def stop(self) -> None:
        """Ask the worker to stop and block until it reports done."""
        if self._stop.is_set():
            raise RuntimeError("tomb is already stopped")
        self._stop.set()
        self._done.wait()

    def stopping(self) -> threading.Event:
        """Return the event the worker waits on to learn it should stop."""
        return self._stop

    def done(self) -> None:
        """Called by the worker once it has stopped."""
        if self._done.is_set():
            raise RuntimeError("tomb is already done")
        self._done.set()
"""Cooperative cancellation passed through the step loop to each worker."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag a caller sets to stop a run at the next safe point."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

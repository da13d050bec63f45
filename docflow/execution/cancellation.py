"""Cooperative cancellation, checked by the executor between steps."""

from __future__ import annotations

import threading
from typing import Callable


class CancellationToken:
    """
    A flag plus an optional probe.

    ``probe`` lets a token observe cancellation requested somewhere else,
    e.g. the job queue's ``cancel_requested`` flag when the run executes on
    a worker.  Once either side reports cancellation the token latches.
    """

    def __init__(self, probe: Callable[[], bool] | None = None) -> None:
        self._event = threading.Event()
        self._probe = probe

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._probe is not None and self._probe():
            self._event.set()
            return True
        return False

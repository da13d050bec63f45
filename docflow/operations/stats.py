"""Historical operation durations: the default cost source for planning."""

from __future__ import annotations

import threading
from collections import defaultdict, deque


class OperationTimings:
    """Rolling average of the last ``window`` durations per operation."""

    def __init__(self, window: int = 50) -> None:
        self.window = window
        self._samples: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=self.window))
        # Worker threads and the event loop may both record
        self._lock = threading.Lock()

    def record(self, operation: str, seconds: float) -> None:
        if seconds < 0:
            return
        with self._lock:
            self._samples[operation].append(seconds)

    def average(self, operation: str, default: float = 1.0) -> float:
        with self._lock:
            samples = self._samples.get(operation)
            if not samples:
                return default
            return sum(samples) / len(samples)

    def snapshot(self) -> dict[str, dict[str, float]]:
        with self._lock:
            return {
                op: {"count": len(s), "average": sum(s) / len(s)}
                for op, s in self._samples.items() if s
            }

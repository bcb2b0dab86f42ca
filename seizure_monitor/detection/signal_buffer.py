"""
signal_buffer.py – Bounded rolling buffer for one physiological signal.

One buffer exists per signal (heart rate, SpO2, movement).  It is a FIFO ring
of fixed capacity backed by ``deque(maxlen=...)``: pushing past capacity
evicts the oldest entry.  An optional ``max_age_seconds`` additionally drops
entries older than the rolling time window on every push.

Ingestion (poll loop) and evaluation (tick thread) touch the same buffer, so
every access goes through an internal lock and evaluation reads a
``snapshot()`` copy.
"""

import threading
import time
from collections import deque
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class SignalBuffer(Generic[T]):
    """
    Usage
    -----
    >>> hr = SignalBuffer(capacity=20)
    >>> hr.push(72.0)
    >>> hr.average()
    72.0
    """

    def __init__(
        self,
        capacity: int,
        max_age_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        # (pushed_at, value) pairs, oldest first
        self._entries: deque[tuple[float, T]] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def push(self, value: T) -> None:
        """Append ``value``; the oldest entry is evicted once capacity is exceeded."""
        now = self._clock()
        with self._lock:
            self._entries.append((now, value))
            if self.max_age_seconds is not None:
                cutoff = now - self.max_age_seconds
                while self._entries and self._entries[0][0] < cutoff:
                    self._entries.popleft()

    def snapshot(self) -> list[T]:
        with self._lock:
            return [value for _, value in self._entries]

    def average(self) -> float:
        """Arithmetic mean of the numeric contents, ``0.0`` when empty."""
        values = self.snapshot()
        if not values:
            return 0.0
        return sum(values) / len(values)  # type: ignore[arg-type]

    def is_ready(self, min_samples: int = 5) -> bool:
        return len(self) >= min_samples

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

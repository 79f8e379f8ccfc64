"""Lookup latency tracking for GeoBlock.

Provides ``LookupLatencyTracker``: a rolling window of the most recent
geo-provider call durations, reported by ``/health`` as ``lookup_avg_ms`` and
``lookup_p99_ms``. Both successful and failed provider calls are recorded; a
provider that times out shows up as a latency spike at the timeout value.
"""

from __future__ import annotations

from collections import deque


class LookupLatencyTracker:
    """Rolling window of provider call latencies (last *window* samples).

    Thread-safety:
        Safe for single-threaded asyncio use (all access from the event loop).

    Usage::

        tracker = LookupLatencyTracker()
        tracker.record(112.5)
        avg = tracker.avg_ms
        p99 = tracker.p99_ms     # 0.0 until 10+ samples
    """

    def __init__(self, window: int = 100) -> None:
        self._times: deque[float] = deque(maxlen=window)

    def record(self, duration_ms: float) -> None:
        """Append a sample; the oldest one is evicted when the window is full."""
        self._times.append(duration_ms)

    @property
    def avg_ms(self) -> float:
        """Arithmetic mean of the window, or 0.0 when empty."""
        if not self._times:
            return 0.0
        return sum(self._times) / len(self._times)

    @property
    def p99_ms(self) -> float:
        """99th percentile of the window.

        Returns 0.0 when fewer than 10 samples are available (a p99 over a
        handful of lookups is noise).
        """
        if len(self._times) < 10:
            return 0.0
        sorted_times = sorted(self._times)
        idx = max(0, int(len(sorted_times) * 0.99) - 1)
        return sorted_times[idx]

    @property
    def count(self) -> int:
        """Number of samples currently in the window."""
        return len(self._times)

"""Cumulative call counters for circuit breakers."""

import threading
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable copy of breaker counters at one point in time."""

    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    rejections: int = 0

    def to_dict(self) -> dict[str, int]:
        """Return counters as a plain mapping."""
        return asdict(self)


class MetricsCounter:
    """Four monotonic counters owned by exactly one breaker.

    Notes:
        There is no reset; counters accumulate for the breaker's lifetime.
        Timeouts are counted in ``timeouts`` in addition to ``failures``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._successes = 0
        self._failures = 0
        self._timeouts = 0
        self._rejections = 0

    def increment_successes(self) -> None:
        with self._lock:
            self._successes += 1

    def increment_failures(self) -> None:
        with self._lock:
            self._failures += 1

    def increment_timeouts(self) -> None:
        with self._lock:
            self._timeouts += 1

    def increment_rejections(self) -> None:
        with self._lock:
            self._rejections += 1

    def snapshot(self) -> MetricsSnapshot:
        """Return all four counters read under one lock."""
        with self._lock:
            return MetricsSnapshot(
                successes=self._successes,
                failures=self._failures,
                timeouts=self._timeouts,
                rejections=self._rejections,
            )
